#!/usr/bin/env python3

"""FastAPI web application for the Family Art App"""

import json
import os
import logging
from pathlib import Path
from typing import Optional
from fastapi import FastAPI, Request, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load .env file if present (no dependency on python-dotenv)
_env_path = Path(__file__).parent / ".env"
if _env_path.is_file():
  for _line in _env_path.read_text().splitlines():
    _line = _line.strip()
    if _line and not _line.startswith("#") and "=" in _line:
      _k, _v = _line.split("=", 1)
      os.environ.setdefault(_k.strip(), _v.strip())

import animation_service
import config
import credits as credits_mod
import outline_service
import storage_service
from errors import OutlineGenerationError
from sqlalchemy import text
from sqlalchemy.orm import Session
from db import init_db, get_db, User
from auth import router as auth_router, get_current_user, get_optional_user, require_real_mode
from billing import router as billing_router
from lookup import router as lookup_router

# ---------------------------------------------------------------------------
# Environment mode
# ---------------------------------------------------------------------------
_is_production = config.is_production()

# ---------------------------------------------------------------------------
# Structured logging (JSON for Cloud Run → Cloud Logging)
# ---------------------------------------------------------------------------
if _is_production:

  class _CloudJsonFormatter(logging.Formatter):
    """Emit JSON lines compatible with Cloud Logging structured logs."""
    def format(self, record):
      log_entry = {
          "severity": record.levelname,
          "message": record.getMessage(),
          "module": record.module,
          "function": record.funcName,
          "line": record.lineno,
      }
      if record.exc_info and record.exc_info[0]:
        log_entry["exception"] = self.formatException(record.exc_info)
      return json.dumps(log_entry)

  _handler = logging.StreamHandler()
  _handler.setFormatter(_CloudJsonFormatter())
  logging.root.handlers = [_handler]
  logging.root.setLevel(logging.INFO)
else:
  logging.basicConfig(level=logging.INFO)

# Slack alerts for ERROR/CRITICAL records.
import error_logging
_slack_err = error_logging.install()
if _slack_err:
  logging.info("Slack error logging enabled")
else:
  logging.warning("SLACK_ERROR_WEBHOOK_URL not set, Slack error alerts disabled")

app = FastAPI(
    title="Family Art App",
    version="1.0",
    docs_url=None if _is_production else "/docs",
    redoc_url=None if _is_production else "/redoc",
)


# ---------------------------------------------------------------------------
# CORS middleware
# ---------------------------------------------------------------------------
_ALLOWED_ORIGINS = os.environ.get(
    "ALLOWED_ORIGINS",
    "http://localhost:3000" if not _is_production else "",
).split(",")
_ALLOWED_ORIGINS = [o.strip() for o in _ALLOWED_ORIGINS if o.strip()]

if _ALLOWED_ORIGINS:
  app.add_middleware(
      CORSMiddleware,
      allow_origins=_ALLOWED_ORIGINS,
      allow_credentials=True,
      allow_methods=["GET", "POST"],
      allow_headers=["*"],
  )


# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------
from starlette.middleware.base import BaseHTTPMiddleware

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
  async def dispatch(self, request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if _is_production:
      response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response

app.add_middleware(SecurityHeadersMiddleware)


# ---------------------------------------------------------------------------
# Rate limiting (slowapi)
# ---------------------------------------------------------------------------
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.environ.get("RATE_LIMIT_ENABLED", "true").lower() != "false",
)
app.state.limiter = limiter

@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
  return JSONResponse(
      {"error": "rate_limited", "message": "Too many requests. Please slow down."},
      status_code=429,
  )


# ---------------------------------------------------------------------------
# Error envelope: every failure renders as {"error": "..."}
# ---------------------------------------------------------------------------
@app.exception_handler(StarletteHTTPException)
async def _http_error_handler(request: Request, exc: StarletteHTTPException):
  body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
  return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError):
  return JSONResponse({"error": "Invalid request parameters"}, status_code=400)


app.include_router(auth_router)
app.include_router(billing_router)
app.include_router(lookup_router)


# ---------------------------------------------------------------------------
# Health check endpoint
# ---------------------------------------------------------------------------
@app.get("/health")
async def health_check():
  """Health check for uptime monitoring and load balancer probes."""
  db_ok = True
  try:
    db = next(get_db())
    db.execute(text("SELECT 1"))
    db.close()
  except Exception:
    db_ok = False

  status = "healthy" if db_ok else "degraded"
  code = 200 if db_ok else 503
  return JSONResponse(
      {
          "status": status,
          "version": app.version,
          "mode": config.app_mode(),
          "database": "ok" if db_ok else "unreachable",
      },
      status_code=code,
  )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _read_json(request: Request) -> dict:
  try:
    body = await request.json()
  except ValueError:
    raise HTTPException(status_code=400, detail="Request body must be JSON")
  if not isinstance(body, dict):
    raise HTTPException(status_code=400, detail="Request body must be a JSON object")
  return body


def _charge_or_402(db: Session, user: User, cost: int, what: str) -> None:
  """Debit `cost` credits or raise 402 carrying the current balance."""
  if credits_mod.deduct_credits(db, user.email, cost, f"{what} generation"):
    return
  raise HTTPException(
      status_code=402,
      detail={
          "error": (
              f"Insufficient credits. You need at least {cost} credit "
              f"to generate an {what.lower()}."
          ),
          "credits": credits_mod.get_credits(db, user.email),
      },
  )


# ---------------------------------------------------------------------------
# Generation endpoints
# ---------------------------------------------------------------------------

@app.post("/api/generate-outline", dependencies=[Depends(require_real_mode)])
@limiter.limit("20/minute")
async def generate_outline(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
  """Turn a family photo into a coloring outline and assign a queue number.

  One credit is charged up front and refunded if generation fails.
  """
  body = await _read_json(request)
  photo_data = body.get("photoData")
  if not photo_data:
    raise HTTPException(status_code=400, detail="Photo data is required")

  user_email = current_user.email
  _charge_or_402(db, current_user, config.OUTLINE_COST, "Outline")

  try:
    result = await run_in_threadpool(
        outline_service.create_outline_submission,
        db, photo_data, body.get("prompt"), user_email,
    )
  except OutlineGenerationError as ex:
    credits_mod.refund_credits(db, user_email, config.OUTLINE_COST, "Failed outline generation refund")
    return JSONResponse(
        {"error": str(ex), "fallback": True, "textResponse": ex.text_response or None},
        status_code=500,
    )
  except Exception as ex:
    logging.exception("Outline generation failed for %s", user_email)
    credits_mod.refund_credits(db, user_email, config.OUTLINE_COST, "Failed outline generation refund")
    return JSONResponse({"error": str(ex) or "Gemini API failed", "fallback": True}, status_code=500)

  return JSONResponse({"success": True, **result})


@app.post("/api/save-submission", dependencies=[Depends(require_real_mode)])
async def save_submission(
    request: Request,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
  """Store an already generated photo/outline pair under a new queue number."""
  body = await _read_json(request)
  original_photo = body.get("originalPhoto")
  generated_outline = body.get("generatedOutline")
  if not original_photo or not generated_outline:
    raise HTTPException(
        status_code=400,
        detail="Both original photo and generated outline are required",
    )

  try:
    submission = await run_in_threadpool(
        outline_service.save_submission,
        db, original_photo, generated_outline,
        current_user.email if current_user else None,
    )
  except storage_service.StorageUploadError as ex:
    logging.error("Error uploading submission images: %s", ex)
    return JSONResponse({"error": "Failed to upload submission images"}, status_code=500)
  except Exception as ex:
    logging.exception("Save submission error")
    return JSONResponse({"error": str(ex) or "Failed to save submission"}, status_code=500)

  return JSONResponse({
      "success": True,
      "submissionId": submission.id,
      "originalPhotoUrl": submission.original_photo_url,
      "generatedOutlineUrl": submission.generated_outline_url,
      "createdAt": submission.created_at.isoformat() if submission.created_at else None,
      "queueNumber": submission.queue_number,
  })


@app.post("/api/animate-artwork", dependencies=[Depends(require_real_mode)])
@limiter.limit("10/minute")
async def animate_artwork(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
  """Animate a photographed artwork. Blocks until the video is ready.

  One credit is charged up front and refunded on every failure path.
  """
  body = await _read_json(request)
  image_url = body.get("imageUrl")
  family_art_id = body.get("familyArtId")
  if not image_url or family_art_id in (None, ""):
    raise HTTPException(status_code=400, detail="Missing imageUrl or familyArtId")

  user_email = current_user.email
  _charge_or_402(db, current_user, config.ANIMATION_COST, "Animation")

  try:
    result = await run_in_threadpool(
        animation_service.run_animation,
        db, image_url, family_art_id,
        prompt=body.get("prompt"),
        model_type=body.get("modelType"),
        user_email=user_email,
    )
  except Exception as ex:
    logging.exception("Animation generation failed for %s", user_email)
    credits_mod.refund_credits(
        db, user_email, config.ANIMATION_COST, "Error during animation generation refund",
    )
    return JSONResponse({"error": str(ex)}, status_code=500)

  if not result["success"]:
    credits_mod.refund_credits(
        db, user_email, config.ANIMATION_COST, "Failed animation generation refund",
    )
    return JSONResponse(result, status_code=500)

  return JSONResponse(result)


@app.on_event("startup")
async def _startup():
  """Create tables and report the running mode."""
  init_db()
  config.log_mode()


if __name__ == "__main__":
  import uvicorn
  uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8080")))
