"""WaveSpeed image-to-video client: submit a job, read its result."""

from __future__ import annotations

import json
import logging
import os

import requests

import config

REQUEST_TIMEOUT = 30

# Provider job states that mean "keep polling".
PENDING_STATES = ("created", "queued", "processing")


class VideoProviderError(Exception):
  """Provider rejected a request. The message is the provider's raw text."""


def _api_key() -> str:
  key = os.environ.get("WAVESPEED_API_KEY", "")
  if not key:
    raise VideoProviderError("WAVESPEED_API_KEY is not configured")
  return key


def _headers() -> dict:
  return {
      "Content-Type": "application/json",
      "Authorization": f"Bearer {_api_key()}",
  }


def build_payload(model: dict, image_url: str, prompt: str) -> dict:
  payload = {
      "duration": model["duration"],
      "image": image_url,
      "prompt": prompt,
  }
  payload.update(model["payload"])
  return payload


def submit_job(model: dict, image_url: str, prompt: str) -> str:
  """Start a generation job and return the provider's request id."""
  payload = build_payload(model, image_url, prompt)
  try:
    resp = requests.post(
        model["api_url"],
        headers=_headers(),
        json=payload,
        timeout=REQUEST_TIMEOUT,
    )
  except requests.RequestException as ex:
    raise VideoProviderError(f"WavespeedAI request error: {ex}") from ex

  if not resp.ok:
    logging.error("WavespeedAI submit failed (%d): %s", resp.status_code, resp.text)
    raise VideoProviderError(resp.text)

  try:
    request_id = resp.json()["data"]["id"]
  except (ValueError, KeyError, TypeError) as ex:
    raise VideoProviderError(f"Unexpected WavespeedAI response: {resp.text}") from ex

  logging.info("WavespeedAI job %s submitted (%s)", request_id, model["name"])
  return request_id


def fetch_result(request_id: str) -> dict:
  """Return the `data` object of a job result: status, outputs, error."""
  try:
    resp = requests.get(
        f"{config.WAVESPEED_BASE_URL}/predictions/{request_id}/result",
        headers={"Authorization": f"Bearer {_api_key()}"},
        timeout=REQUEST_TIMEOUT,
    )
  except requests.RequestException as ex:
    raise VideoProviderError(f"WavespeedAI poll error: {ex}") from ex

  try:
    body = resp.json()
  except ValueError:
    body = {"raw": resp.text}

  logging.debug("WavespeedAI poll response: %s", body)
  if not resp.ok:
    raise VideoProviderError(json.dumps(body))
  return body.get("data") or {}
