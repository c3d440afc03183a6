"""Error taxonomy shared by the API and its clients.

Callers classify a failed request by HTTP status, then decide whether to
retry. Only network and server errors are retried, with exponential
backoff capped at MAX_RETRY_DELAY and at most MAX_RETRIES attempts.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

MAX_RETRIES = 3
BASE_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 10.0


class ErrorType(Enum):
  AUTH = "auth"
  CREDITS = "credits"
  NETWORK = "network"
  SERVER = "server"
  UNKNOWN = "unknown"


_DEFAULT_MESSAGES = {
    ErrorType.AUTH: "Please sign in to continue",
    ErrorType.CREDITS: "Insufficient credits. Please add more credits to continue.",
    ErrorType.SERVER: "Server error. Please try again later.",
    ErrorType.NETWORK: "Network error. Please check your connection.",
    ErrorType.UNKNOWN: "An unexpected error occurred",
}


@dataclass
class ApiError:
  """A classified API failure."""

  status: int
  message: str
  type: ErrorType
  credits: Optional[int] = None

  @property
  def retryable(self) -> bool:
    return is_retryable(self.type)


class OutlineGenerationError(Exception):
  """The image model finished without returning an image."""

  def __init__(self, message: str, text_response: str = ""):
    super().__init__(message)
    self.text_response = text_response


def classify_status(status: int) -> ErrorType:
  """Map an HTTP status to an ErrorType. Status 0 means transport failure."""
  if status == 401:
    return ErrorType.AUTH
  if status == 402:
    return ErrorType.CREDITS
  if status >= 500:
    return ErrorType.SERVER
  if status == 0:
    return ErrorType.NETWORK
  return ErrorType.UNKNOWN


def parse_api_error(status: int, body: Any = None) -> ApiError:
  """Build an ApiError from a status code and a decoded JSON body."""
  error_type = classify_status(status)
  message = _DEFAULT_MESSAGES[error_type]
  credits = None

  if isinstance(body, dict):
    if error_type in (ErrorType.CREDITS, ErrorType.UNKNOWN):
      text = body.get("error") or body.get("message")
      if isinstance(text, str) and text:
        message = text
    if isinstance(body.get("credits"), int):
      credits = body["credits"]

  return ApiError(status=status, message=message, type=error_type, credits=credits)


def user_message(error: ApiError) -> str:
  """Friendly text for the sign-in / add-credits / retry prompts."""
  if error.type is ErrorType.AUTH:
    return "Please sign in to continue using the app."
  if error.type is ErrorType.CREDITS:
    remaining = ""
    if error.credits is not None:
      remaining = f" You have {error.credits} credits remaining."
    return f"You don't have enough credits.{remaining} Please add more credits to continue."
  if error.type is ErrorType.SERVER:
    return "Something went wrong on our end. Please try again in a few moments."
  if error.type is ErrorType.NETWORK:
    return "Please check your internet connection and try again."
  return error.message or "An unexpected error occurred. Please try again."


def is_retryable(error_type: ErrorType) -> bool:
  return error_type in (ErrorType.NETWORK, ErrorType.SERVER)


def retry_delay(attempt: int) -> float:
  """Backoff before retry number `attempt` (0-based): 1s, 2s, 4s ... <= 10s."""
  return min(BASE_RETRY_DELAY * (2 ** attempt), MAX_RETRY_DELAY)


def should_retry(error: ApiError, attempt: int) -> bool:
  return error.retryable and attempt < MAX_RETRIES
