"""Read-only lookups: submissions and animations by queue number or task id."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from animation_service import task_to_dict
from auth import require_admin, require_real_mode
from db import AnimationTask, PhotoSubmission, User, get_db
from outline_service import normalize_queue_number, submission_to_dict

router = APIRouter(prefix="/api", tags=["lookup"])

RECENT_SCAN_LIMIT = 20
RECENT_RESULT_LIMIT = 5


def queue_number_forms(queue_number) -> list[str]:
  """Every stored spelling a queue number may have.

  New rows hold the zero-padded form; older rows may hold the bare
  integer spelling.
  """
  raw = str(queue_number).strip()
  forms = [raw]
  normalized = normalize_queue_number(raw)
  if normalized:
    forms.append(normalized)
    forms.append(str(int(normalized)))
  return list(dict.fromkeys(forms))


def find_animations(
    db: Session,
    queue_number: Optional[str] = None,
    task_id: Optional[str] = None,
) -> list[AnimationTask]:
  """Tasks matching a queue number and/or task id, newest first."""
  query = db.query(AnimationTask)
  if queue_number:
    query = query.filter(AnimationTask.family_art_id.in_(queue_number_forms(queue_number)))
  if task_id:
    query = query.filter(AnimationTask.task_id == task_id)
  return query.order_by(AnimationTask.created_at.desc()).all()


def find_submission(db: Session, queue_number: str) -> Optional[PhotoSubmission]:
  return (
      db.query(PhotoSubmission)
      .filter(PhotoSubmission.queue_number.in_(queue_number_forms(queue_number)))
      .order_by(PhotoSubmission.created_at.desc())
      .first()
  )


def recent_submissions(db: Session) -> list[dict]:
  """Latest successful animations, one per queue number."""
  recent = (
      db.query(AnimationTask)
      .filter(AnimationTask.status == "success")
      .order_by(AnimationTask.created_at.desc())
      .limit(RECENT_SCAN_LIMIT)
      .all()
  )

  seen = set()
  unique = []
  for task in recent:
    if task.family_art_id in seen:
      continue
    seen.add(task.family_art_id)
    unique.append(task)
    if len(unique) == RECENT_RESULT_LIMIT:
      break

  return [
      {
          "queueNumber": task.family_art_id,
          "cloudinaryImageUrl": task.hosted_image_url,
          "cloudinaryVideoUrl": task.hosted_video_url,
          "createdAt": task.created_at.isoformat() if task.created_at else None,
          "status": task.status,
          "animations": [
              {
                  "taskId": task.task_id,
                  "status": task.status,
                  "cloudinaryVideoUrl": task.hosted_video_url,
                  "cloudinaryImageUrl": task.hosted_image_url,
                  "createdAt": task.created_at.isoformat() if task.created_at else None,
              },
          ],
      }
      for task in unique
  ]


# ---------- Endpoints ----------


@router.get("/get-animation", dependencies=[Depends(require_real_mode)])
def get_animation(
    queueNumber: Optional[str] = None,
    taskId: Optional[str] = None,
    db: Session = Depends(get_db),
):
  """Animations for a queue number, or the single task with `taskId`."""
  if not queueNumber and not taskId:
    raise HTTPException(status_code=400, detail="Missing queueNumber or taskId parameter")

  tasks = find_animations(db, queue_number=queueNumber, task_id=taskId)
  logging.info(
      "Animation lookup queueNumber=%s taskId=%s found %d",
      queueNumber, taskId, len(tasks),
  )
  if not tasks:
    raise HTTPException(status_code=404, detail="No animations found for this queue number")

  animations = [task_to_dict(t) for t in tasks]
  return JSONResponse({
      "success": True,
      "animations": animations,
      "count": len(animations),
  })


@router.get("/get-submission", dependencies=[Depends(require_real_mode)])
def get_submission(
    queueNumber: Optional[str] = None,
    db: Session = Depends(get_db),
):
  """A submission plus all of its animations (possibly none)."""
  if not queueNumber:
    raise HTTPException(status_code=400, detail="Missing queueNumber parameter")

  submission = find_submission(db, queueNumber)
  if not submission:
    raise HTTPException(status_code=404, detail="No submission found for this queue number")

  animations = find_animations(db, queue_number=submission.queue_number)
  return JSONResponse({
      "success": True,
      "submission": submission_to_dict(submission),
      "animations": [task_to_dict(t) for t in animations],
  })


@router.get("/get-recent-submissions", dependencies=[Depends(require_real_mode)])
def get_recent_submissions(
    _admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
  """Gallery feed for staff: newest animated submissions."""
  submissions = recent_submissions(db)
  return JSONResponse({
      "success": True,
      "submissions": submissions,
      "count": len(submissions),
  })
