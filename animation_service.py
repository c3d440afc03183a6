"""Artwork to animated video workflow.

A task row is written first with status "queuing", then the provider job
is submitted and polled inside the calling request until it reaches a
terminal state or the poll budget runs out. The finished video (and the
source image, when not already hosted) is copied into our bucket.

Task statuses move queuing -> processing -> success | failed and never
leave a terminal state.
"""

from __future__ import annotations

import datetime
import logging
import time
import uuid
from typing import Callable, Optional

from sqlalchemy.orm import Session

import config
import storage_service
import video_provider
from db import AnimationTask
from outline_service import normalize_queue_number

# Provider job state -> our task status, for progress writes.
_PROGRESS_STATUS = {
    "created": "queuing",
    "queued": "queuing",
    "processing": "processing",
}


def _new_task_id(db: Session, model_name: str) -> str:
  task_id = f"{model_name}_{int(time.time() * 1000)}"
  if db.query(AnimationTask.id).filter(AnimationTask.task_id == task_id).first():
    task_id = f"{task_id}_{uuid.uuid4().hex[:6]}"
  return task_id


def _save(db: Session, task: AnimationTask, **fields) -> None:
  for key, value in fields.items():
    setattr(task, key, value)
  task.updated_at = datetime.datetime.utcnow()
  db.commit()


def _join_errors(*parts: str) -> str:
  return " | ".join(p for p in parts if p)


def create_task(
    db: Session,
    image_url: str,
    family_art_id,
    prompt: Optional[str] = None,
    model: Optional[dict] = None,
    user_email: Optional[str] = None,
) -> AnimationTask:
  """Persist a new task in the "queuing" state."""
  model = model or config.get_model_config()
  art_id = normalize_queue_number(family_art_id) or str(family_art_id).strip()
  task = AnimationTask(
      task_id=_new_task_id(db, model["name"]),
      status="queuing",
      image_url=image_url,
      prompt=prompt,
      model=model["name"],
      duration=model["duration"],
      resolution=model["resolution"],
      family_art_id=art_id,
      user_email=user_email,
  )
  db.add(task)
  db.commit()
  db.refresh(task)
  logging.info("Animation task %s created for queue number %s", task.task_id, art_id)
  return task


def poll_until_done(
    db: Session,
    task: AnimationTask,
    request_id: str,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> tuple[str, str, str]:
  """Poll the provider until a terminal state or the budget elapses.

  Intermediate progress is written to the task every few polls so other
  readers can follow along. Returns (status, download_url, error).
  """
  deadline = clock() + config.POLL_BUDGET_SECONDS
  poll_count = 0

  while True:
    if clock() >= deadline:
      return (
          "failed", "",
          f"Timed out waiting for WavespeedAI after {int(config.POLL_BUDGET_SECONDS)} seconds",
      )

    sleep(config.POLL_INTERVAL_SECONDS)
    poll_count += 1

    try:
      data = video_provider.fetch_result(request_id)
    except video_provider.VideoProviderError as ex:
      return "failed", "", str(ex)

    provider_status = data.get("status")
    if provider_status == "completed":
      outputs = data.get("outputs") or []
      if outputs:
        return "success", outputs[0], ""
      return "failed", "", f"No outputs found in WavespeedAI response: {data}"
    if provider_status == "failed":
      return "failed", "", data.get("error") or "WavespeedAI task failed"
    if provider_status not in video_provider.PENDING_STATES:
      return "failed", "", f"Unexpected WavespeedAI status: {provider_status}"

    if poll_count % config.POLL_PERSIST_EVERY == 0:
      _save(db, task, status=_PROGRESS_STATUS[provider_status])


def _host_result(video_url: str, image_url: str) -> tuple[str, str, str]:
  """Copy the video and source image into storage.

  Failures fall back to the original URLs and are reported in the
  returned note.
  """
  notes = []
  try:
    hosted_video = storage_service.upload_asset(video_url, storage_service.ANIMATIONS_FOLDER)
  except storage_service.StorageUploadError as ex:
    logging.error("Video upload failed, using provider URL %s: %s", video_url, ex)
    notes.append(f"Cloud storage video upload failed: {ex}")
    hosted_video = video_url

  if storage_service.is_hosted_url(image_url):
    hosted_image = image_url
  else:
    try:
      hosted_image = storage_service.upload_asset(image_url, storage_service.ANIMATIONS_FOLDER)
    except storage_service.StorageUploadError as ex:
      logging.error("Image upload failed, using original URL %s: %s", image_url, ex)
      notes.append(f"Cloud storage image upload failed: {ex}")
      hosted_image = image_url

  return hosted_video, hosted_image, _join_errors(*notes)


def run_animation(
    db: Session,
    image_url: str,
    family_art_id,
    prompt: Optional[str] = None,
    model_type: Optional[str] = None,
    user_email: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> dict:
  """Create, submit, poll and finalize one animation task.

  Returns {"success": True, "taskId", "downloadUrl", "cloudinaryVideoUrl",
  "cloudinaryImageUrl"} or {"success": False, "taskId", "error"}.
  """
  model = config.get_model_config(model_type)
  logging.info("Using animation model: %s (%s)", model["display_name"], model["name"])

  task = create_task(db, image_url, family_art_id, prompt, model, user_email)
  effective_prompt = prompt or config.VIDEO_PROMPTS[0]

  try:
    request_id = video_provider.submit_job(model, image_url, effective_prompt)
  except video_provider.VideoProviderError as ex:
    _save(db, task, status="failed", error_message=str(ex))
    return {"success": False, "taskId": task.task_id, "error": str(ex)}

  _save(db, task, status="processing", request_id=request_id, error_message="")

  status, download_url, error_message = poll_until_done(
      db, task, request_id, sleep=sleep, clock=clock,
  )
  _save(db, task, status=status, download_url=download_url, error_message=error_message)

  if status != "success":
    logging.warning("Animation task %s failed: %s", task.task_id, error_message)
    return {"success": False, "taskId": task.task_id, "error": error_message}

  hosted_video, hosted_image, note = _host_result(download_url, image_url)
  _save(
      db, task,
      hosted_video_url=hosted_video,
      hosted_image_url=hosted_image,
      error_message=_join_errors(error_message, note),
  )
  logging.info("Animation task %s succeeded: %s", task.task_id, hosted_video)

  return {
      "success": True,
      "taskId": task.task_id,
      "downloadUrl": download_url,
      "cloudinaryVideoUrl": hosted_video,
      "cloudinaryImageUrl": hosted_image,
  }


def task_to_dict(task: AnimationTask) -> dict:
  """Wire shape read by the gallery and viewer screens.

  The hosted URL keys keep the names the frontend already reads.
  """
  return {
      "taskId": task.task_id,
      "status": task.status,
      "downloadUrl": task.download_url,
      "cloudinaryVideoUrl": task.hosted_video_url,
      "cloudinaryImageUrl": task.hosted_image_url,
      "prompt": task.prompt,
      "model": task.model,
      "familyArtId": task.family_art_id,
      "createdAt": task.created_at.isoformat() if task.created_at else None,
      "updatedAt": task.updated_at.isoformat() if task.updated_at else None,
      "errorMessage": task.error_message,
  }
