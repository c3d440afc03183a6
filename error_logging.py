"""Slack alerts for ERROR and CRITICAL log records.

install() hangs a SlackErrorHandler off the root logger. Identical
messages are sent at most once per minute, posting happens on a daemon
thread, and without SLACK_ERROR_WEBHOOK_URL (or SLACK_WEBHOOK_URL) the
handler is never installed.
"""

from __future__ import annotations

import logging
import os
import threading
import time
import traceback

import requests

SLACK_ERROR_WEBHOOK_URL = (
    os.environ.get("SLACK_ERROR_WEBHOOK_URL")
    or os.environ.get("SLACK_WEBHOOK_URL", "")
)

_RATE_LIMIT_SECONDS = 60
_POST_TIMEOUT = 10


def build_payload(record: logging.LogRecord) -> dict:
  """Slack message blocks for one log record."""
  severity = record.levelname
  emoji = ":rotating_light:" if severity == "CRITICAL" else ":warning:"
  where = f"{record.module}.{record.funcName}" if record.funcName else record.module
  message = record.getMessage()

  blocks = [
      {
          "type": "header",
          "text": {"type": "plain_text", "text": f"{emoji} Family Art {severity}"},
      },
      {
          "type": "section",
          "text": {
              "type": "mrkdwn",
              "text": f"*Where:* `{where}` (line {record.lineno})\n*Message:* {message[:1000]}",
          },
      },
  ]
  if record.exc_info and record.exc_info[0]:
    exc_text = "".join(traceback.format_exception(*record.exc_info))
    blocks.append({
        "type": "section",
        "text": {"type": "mrkdwn", "text": f"```{exc_text[-2500:]}```"},
    })

  return {
      "text": f"{severity} in {where}: {message[:200]}",
      "blocks": blocks,
      "unfurl_links": False,
  }


class SlackErrorHandler(logging.Handler):
  """logging.Handler that posts ERROR+ records to a Slack webhook."""

  def __init__(self, webhook_url: str, level: int = logging.ERROR):
    super().__init__(level)
    self.webhook_url = webhook_url
    self._last_sent: dict[str, float] = {}
    self._lock = threading.Lock()

  def should_send(self, record: logging.LogRecord, now: float) -> bool:
    key = f"{record.module}:{record.getMessage()[:120]}"
    with self._lock:
      if now - self._last_sent.get(key, 0) < _RATE_LIMIT_SECONDS:
        return False
      self._last_sent[key] = now
      for stale in [k for k, t in self._last_sent.items() if now - t > _RATE_LIMIT_SECONDS * 5]:
        del self._last_sent[stale]
    return True

  def emit(self, record: logging.LogRecord) -> None:
    if not self.should_send(record, time.time()):
      return
    payload = build_payload(record)
    threading.Thread(target=self._post, args=(payload,), daemon=True).start()

  def _post(self, payload: dict) -> None:
    try:
      requests.post(self.webhook_url, json=payload, timeout=_POST_TIMEOUT)
    except requests.RequestException:
      # Logging from here would re-enter this handler.
      pass


def install(webhook_url: str = "") -> SlackErrorHandler | None:
  """Attach a SlackErrorHandler to the root logger, or return None."""
  url = webhook_url or SLACK_ERROR_WEBHOOK_URL
  if not url:
    return None
  handler = SlackErrorHandler(webhook_url=url)
  logging.getLogger().addHandler(handler)
  return handler
