"""Photo to coloring-outline workflow and queue-number allocation.

The workflow runs strictly in order with no rollback:
  1. allocate the next queue number
  2. host the raw photo (best effort)
  3. ask the image model for an outline
  4. host the outline (best effort) and persist the PhotoSubmission
Nothing is written if step 3 fails.
"""

from __future__ import annotations

import base64
import logging
import time
from typing import Optional, Union

import requests
from google.genai import types
from sqlalchemy.orm import Session

import config
import storage_service
from db import PhotoSubmission
from errors import OutlineGenerationError
from gcp_api_services import gcp_connection

_QUEUE_MAX = 10 ** config.QUEUE_NUMBER_WIDTH - 1


def normalize_queue_number(value: Union[str, int, None]) -> Optional[str]:
  """Return the canonical 5-digit string for a queue number, or None.

  Accepts ints and digit strings with or without zero padding.
  """
  if value is None or isinstance(value, bool):
    return None
  text = str(value).strip()
  if not text.isdecimal():
    return None
  number = int(text)
  if number > _QUEUE_MAX:
    return None
  return str(number).zfill(config.QUEUE_NUMBER_WIDTH)


def _fallback_queue_number() -> str:
  # Collision-prone; used only when the store cannot be read.
  return str(int(time.time()) % 90000 + 10000)


def next_queue_number(db: Session, start: int = config.OUTLINE_QUEUE_START) -> str:
  """Highest stored queue number + 1, zero padded to 5 digits.

  An empty store yields `start`; overflowing 5 digits wraps to `start`.
  """
  try:
    latest = (
        db.query(PhotoSubmission.queue_number)
        .order_by(PhotoSubmission.queue_number.desc())
        .limit(1)
        .scalar()
    )
  except Exception as ex:
    logging.error("Queue number lookup failed, using time fallback: %s", ex)
    db.rollback()
    return _fallback_queue_number()

  if latest and str(latest).isdecimal():
    candidate = int(latest) + 1
    if candidate > _QUEUE_MAX:
      candidate = start
  else:
    candidate = start

  queue_number = str(candidate).zfill(config.QUEUE_NUMBER_WIDTH)
  logging.info("Next queue number generated: %s", queue_number)
  return queue_number


def _read_photo(photo_data: str) -> tuple[bytes, str]:
  """Bytes and mime type for a data URL or a remote image URL."""
  if storage_service.is_data_url(photo_data):
    return storage_service.decode_data_url(photo_data)
  resp = requests.get(photo_data, timeout=storage_service.DOWNLOAD_TIMEOUT)
  resp.raise_for_status()
  mime = resp.headers.get("content-type", "image/jpeg").split(";")[0].strip()
  return resp.content, mime or "image/jpeg"


def generate_outline_image(
    photo_data: str,
    prompt: Optional[str] = None,
) -> tuple[str, str]:
  """Stream an outline drawing from the image model.

  Returns (image data URL, accumulated text). Text parts are diagnostic
  only. Raises OutlineGenerationError when the stream carries no image.
  """
  image_bytes, mime_type = _read_photo(photo_data)
  instruction = config.OUTLINE_PROMPT
  if prompt:
    instruction = f"{instruction}\n\nAdditional guidance: {prompt}"

  contents = [
      types.Content(
          role="user",
          parts=[
              types.Part.from_text(text=instruction),
              types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
          ],
      ),
  ]
  client = gcp_connection.get_genai_client()
  stream = client.models.generate_content_stream(
      model=config.OUTLINE_MODEL,
      contents=contents,
      config=types.GenerateContentConfig(
          response_modalities=["IMAGE", "TEXT"],
      ),
  )

  generated_image = None
  generated_text = ""
  for chunk in stream:
    if not chunk.candidates:
      continue
    content = chunk.candidates[0].content
    if not content or not content.parts:
      continue
    for part in content.parts:
      if part.inline_data and part.inline_data.data:
        data = part.inline_data.data
        if isinstance(data, str):
          encoded = data
        else:
          encoded = base64.b64encode(data).decode("ascii")
        out_mime = part.inline_data.mime_type or "image/png"
        generated_image = f"data:{out_mime};base64,{encoded}"
      elif part.text:
        generated_text += part.text

  if not generated_image:
    logging.warning("Image model returned no outline (text: %s)", generated_text[:200])
    raise OutlineGenerationError(
        "Gemini API did not generate an outline", text_response=generated_text,
    )

  logging.info("Outline generated (%d chars of text)", len(generated_text))
  return generated_image, generated_text


def _host_or_keep(ref: str, folder: str) -> str:
  """Upload `ref` unless already hosted; on failure keep the original ref."""
  if storage_service.is_hosted_url(ref):
    return ref
  try:
    return storage_service.upload_asset(ref, folder)
  except storage_service.StorageUploadError as ex:
    logging.warning("Upload to %s failed, keeping original reference: %s", folder, ex)
    return ref


def create_outline_submission(
    db: Session,
    photo_data: str,
    prompt: Optional[str] = None,
    user_email: Optional[str] = None,
) -> dict:
  """Run the full outline workflow and persist the submission."""
  queue_number = next_queue_number(db, start=config.OUTLINE_QUEUE_START)
  original_photo_url = _host_or_keep(photo_data, storage_service.ORIGINAL_PHOTOS_FOLDER)

  outline_data_url, text_response = generate_outline_image(photo_data, prompt)
  outline_url = _host_or_keep(outline_data_url, storage_service.OUTLINES_FOLDER)

  submission = PhotoSubmission(
      queue_number=queue_number,
      original_photo_url=original_photo_url,
      generated_outline_url=outline_url,
      status="completed",
      source="gemini",
      user_email=user_email,
  )
  db.add(submission)
  db.commit()
  db.refresh(submission)
  logging.info("Submission %s saved with queue number %s", submission.id, queue_number)

  return {
      "submissionId": submission.id,
      "queueNumber": queue_number,
      "outlineUrl": outline_url,
      "originalPhotoUrl": original_photo_url,
      "source": "gemini",
      "textResponse": text_response or None,
  }


def save_submission(
    db: Session,
    original_photo: str,
    generated_outline: str,
    user_email: Optional[str] = None,
) -> PhotoSubmission:
  """Host an already generated photo/outline pair and persist it.

  Unlike the outline workflow, upload failures here are fatal.
  """
  original_photo_url = storage_service.upload_asset(
      original_photo, storage_service.ORIGINAL_PHOTOS_FOLDER,
  )
  outline_url = storage_service.upload_asset(
      generated_outline, storage_service.OUTLINES_FOLDER,
  )

  queue_number = next_queue_number(db, start=config.SAVE_SUBMISSION_QUEUE_START)
  submission = PhotoSubmission(
      queue_number=queue_number,
      original_photo_url=original_photo_url,
      generated_outline_url=outline_url,
      status="completed",
      source="gemini",
      user_email=user_email,
  )
  db.add(submission)
  db.commit()
  db.refresh(submission)
  logging.info("Submission %s saved with queue number %s", submission.id, queue_number)
  return submission


def submission_to_dict(submission: PhotoSubmission) -> dict:
  return {
      "queueNumber": submission.queue_number,
      "originalPhotoUrl": submission.original_photo_url,
      "generatedOutlineUrl": submission.generated_outline_url,
      "createdAt": submission.created_at.isoformat() if submission.created_at else None,
      "status": submission.status,
  }
