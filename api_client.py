#!/usr/bin/env python3
"""
Client for the Family Art App HTTP API.

Wraps each endpoint and applies the retry policy from errors.py: network
and server failures are retried with capped exponential backoff, while
auth, credit and input errors surface immediately as ApiRequestError.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import requests

import errors


class ApiRequestError(Exception):
  """A request that failed for good. `error` holds the classification."""

  def __init__(self, error: errors.ApiError):
    super().__init__(error.message)
    self.error = error


class FamilyArtClient:
  """Thin requests-based client.

  Args:
    base_url: Root URL of the API server.
    session_token: Value of the `session_token` cookie, for signed-in calls.
    timeout: Per-request timeout. Animation calls block until the video is
      ready, so this should exceed the server's poll budget.
  """

  def __init__(
      self,
      base_url: str = "http://localhost:8080",
      session_token: Optional[str] = None,
      timeout: float = 600,
      sleep: Callable[[float], None] = time.sleep,
  ):
    self.base_url = base_url.rstrip("/")
    self.timeout = timeout
    self._sleep = sleep
    self.session = requests.Session()
    if session_token:
      self.session.cookies.set("session_token", session_token)

  def _request(self, method: str, path: str, **kwargs) -> dict:
    attempt = 0
    while True:
      try:
        resp = self.session.request(
            method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs,
        )
      except requests.RequestException:
        error = errors.parse_api_error(0)
      else:
        try:
          body = resp.json()
        except ValueError:
          body = {"error": f"HTTP {resp.status_code}"}
        if resp.ok:
          return body
        error = errors.parse_api_error(resp.status_code, body)

      if not errors.should_retry(error, attempt):
        raise ApiRequestError(error)
      self._sleep(errors.retry_delay(attempt))
      attempt += 1

  # ---------- Generation ----------

  def generate_outline(self, photo_data: str, prompt: Optional[str] = None) -> dict:
    payload = {"photoData": photo_data}
    if prompt:
      payload["prompt"] = prompt
    return self._request("POST", "/api/generate-outline", json=payload)

  def save_submission(self, original_photo: str, generated_outline: str) -> dict:
    return self._request("POST", "/api/save-submission", json={
        "originalPhoto": original_photo,
        "generatedOutline": generated_outline,
    })

  def animate_artwork(
      self,
      image_url: str,
      family_art_id: str,
      prompt: Optional[str] = None,
      model_type: Optional[str] = None,
  ) -> dict:
    payload = {"imageUrl": image_url, "familyArtId": family_art_id}
    if prompt:
      payload["prompt"] = prompt
    if model_type:
      payload["modelType"] = model_type
    return self._request("POST", "/api/animate-artwork", json=payload)

  # ---------- Lookup ----------

  def get_submission(self, queue_number: str) -> dict:
    return self._request("GET", "/api/get-submission", params={"queueNumber": queue_number})

  def get_animation(
      self,
      queue_number: Optional[str] = None,
      task_id: Optional[str] = None,
  ) -> dict:
    params = {}
    if queue_number:
      params["queueNumber"] = queue_number
    if task_id:
      params["taskId"] = task_id
    return self._request("GET", "/api/get-animation", params=params)

  # ---------- Credits ----------

  def get_credits(self) -> int:
    return self._request("GET", "/api/get-credits")["credits"]

  def create_checkout_session(self, package_id: str) -> str:
    """Return the Stripe Checkout redirect URL."""
    return self._request(
        "POST", "/api/create-checkout-session", json={"packageId": package_id},
    )["url"]
