"""Object storage: push images and videos to Cloud Storage, return public URLs."""

from __future__ import annotations

import base64
import binascii
import logging
import mimetypes
import re
import uuid

import requests

from gcp_api_services import gcp_connection

PUBLIC_HOST = "https://storage.googleapis.com"

ORIGINAL_PHOTOS_FOLDER = "family-art-app/original-photos"
OUTLINES_FOLDER = "family-art-app/generated-outlines"
ANIMATIONS_FOLDER = "family-art-app/animations"

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(;base64)?,(?P<data>.*)$", re.S)

DOWNLOAD_TIMEOUT = 120


class StorageUploadError(Exception):
  """Raised when an asset cannot be read or written to the bucket."""


def public_url(blob_name: str) -> str:
  return f"{PUBLIC_HOST}/{gcp_connection.get_bucket_name()}/{blob_name}"


def is_hosted_url(url: str) -> bool:
  """True if the URL already points into our bucket."""
  if not url:
    return False
  bucket = gcp_connection.get_bucket_name()
  return (
      url.startswith(f"{PUBLIC_HOST}/{bucket}/")
      or url.startswith(f"gs://{bucket}/")
  )


def is_data_url(ref: str) -> bool:
  return bool(ref) and ref.startswith("data:")


def decode_data_url(data_url: str) -> tuple[bytes, str]:
  """Split a base64 data URL into (bytes, mime type)."""
  match = _DATA_URL_RE.match(data_url or "")
  if not match:
    raise StorageUploadError("Not a data URL")
  mime = match.group("mime") or "application/octet-stream"
  try:
    payload = base64.b64decode(match.group("data"), validate=False)
  except (binascii.Error, ValueError) as ex:
    raise StorageUploadError(f"Invalid base64 payload: {ex}") from ex
  return payload, mime


def _blob_name(folder: str, content_type: str) -> str:
  ext = mimetypes.guess_extension(content_type or "") or ""
  if ext == ".jpe":
    ext = ".jpg"
  return f"{folder}/{uuid.uuid4().hex}{ext}"


def upload_bytes(data: bytes, content_type: str, folder: str) -> str:
  """Upload raw bytes and return the public URL."""
  name = _blob_name(folder, content_type)
  try:
    client = gcp_connection.get_storage_client()
    bucket = client.bucket(gcp_connection.get_bucket_name())
    blob = bucket.blob(name)
    blob.upload_from_string(data, content_type=content_type)
  except Exception as ex:
    raise StorageUploadError(str(ex)) from ex
  url = public_url(name)
  logging.info("Uploaded %d bytes to %s", len(data), url)
  return url


def upload_asset(ref: str, folder: str) -> str:
  """Upload a data URL or remote URL into `folder`.

  Returns the public URL of the stored copy. Raises StorageUploadError on
  any read or write failure.
  """
  if not ref:
    raise StorageUploadError("Empty asset reference")
  if is_data_url(ref):
    data, mime = decode_data_url(ref)
    return upload_bytes(data, mime, folder)

  try:
    resp = requests.get(ref, timeout=DOWNLOAD_TIMEOUT)
    resp.raise_for_status()
  except requests.RequestException as ex:
    raise StorageUploadError(f"Download failed for {ref}: {ex}") from ex
  content_type = resp.headers.get("content-type", "").split(";")[0].strip()
  if not content_type:
    content_type = mimetypes.guess_type(ref)[0] or "application/octet-stream"
  return upload_bytes(resp.content, content_type, folder)
