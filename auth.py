"""Authentication: Google sign-in with a signed session cookie."""

from __future__ import annotations

import collections
import datetime
import logging
import os
import time
from typing import Optional
from urllib.parse import urlencode

import jwt
import requests
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2 import id_token as google_id_token
from sqlalchemy.orm import Session

import config
from db import User, get_db

router = APIRouter(prefix="/auth", tags=["auth"])

GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-me-in-production")
SESSION_COOKIE = "session_token"
SESSION_TTL_HOURS = 24 * 30

ADMIN_EMAILS = {
    e.strip().lower()
    for e in os.environ.get("ADMIN_EMAILS", "").split(",")
    if e.strip()
}

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Simple in-memory rate limiter: {ip: deque of timestamps}
_rate_limit_window = 300  # 5 minutes
_rate_limit_max = 20
_rate_buckets: dict[str, collections.deque] = {}

# ---------- Startup guards ----------
if SESSION_SECRET == "change-me-in-production":
  if config.is_production():
    raise RuntimeError(
        "SESSION_SECRET must be set in production. "
        "Generate one with: python3 -c \"import secrets; print(secrets.token_hex(32))\""
    )
  logging.warning("SESSION_SECRET is set to the default value")


def _check_rate_limit(request: Request) -> None:
  """Raise 429 if the IP has exceeded the sign-in attempt rate limit."""
  ip = request.client.host if request.client else "unknown"
  now = time.time()
  bucket = _rate_buckets.setdefault(ip, collections.deque())
  while bucket and bucket[0] < now - _rate_limit_window:
    bucket.popleft()
  if len(bucket) >= _rate_limit_max:
    raise HTTPException(status_code=429, detail="Too many attempts. Try again later.")
  bucket.append(now)


def _build_base_url(request: Request) -> str:
  """Public base URL, honouring X-Forwarded-Proto behind a proxy."""
  public_base = os.environ.get("PUBLIC_BASE_URL", "").rstrip("/")
  if public_base:
    return public_base
  base = str(request.base_url).rstrip("/")
  if request.headers.get("x-forwarded-proto") == "https":
    base = base.replace("http://", "https://", 1)
  return base


def _build_redirect_uri(request: Request) -> str:
  return f"{_build_base_url(request)}/auth/callback"


def create_session_token(user: User) -> str:
  """Create a signed JWT session token for the user."""
  payload = {
      "sub": user.id,
      "email": user.email,
      "exp": datetime.datetime.utcnow()
      + datetime.timedelta(hours=SESSION_TTL_HOURS),
  }
  return jwt.encode(payload, SESSION_SECRET, algorithm="HS256")


def _decode_session_token(token: str) -> Optional[dict]:
  """Decode and validate a session JWT. Returns payload or None."""
  try:
    return jwt.decode(token, SESSION_SECRET, algorithms=["HS256"])
  except (jwt.ExpiredSignatureError, jwt.InvalidTokenError):
    return None


def get_optional_user(
    request: Request,
    db: Session = Depends(get_db),
) -> Optional[User]:
  """The signed-in user, or None when there is no valid session."""
  token = request.cookies.get(SESSION_COOKIE)
  if not token:
    return None
  payload = _decode_session_token(token)
  if not payload:
    return None
  return db.query(User).filter(User.id == payload["sub"]).first()


def get_current_user(
    user: Optional[User] = Depends(get_optional_user),
) -> User:
  """FastAPI dependency: the signed-in user or 401."""
  if not user:
    raise HTTPException(status_code=401, detail="Authentication required")
  return user


def is_admin(user: User) -> bool:
  return bool(user.is_admin) or user.email.lower() in ADMIN_EMAILS


def require_admin(
    user: User = Depends(get_current_user),
) -> User:
  """Dependency that ensures the current user has admin privileges."""
  if not is_admin(user):
    raise HTTPException(status_code=403, detail="Admin access required")
  return user


def require_real_mode() -> None:
  """Dependency: reject provider-backed endpoints in simulated mode."""
  if config.is_simulated():
    raise HTTPException(
        status_code=503,
        detail={"success": False, "error": config.SIMULATED_MODE_ERROR},
    )


def upsert_google_user(db: Session, id_info: dict) -> User:
  """Find or create the user for a verified Google identity.

  New users start with zero credits.
  """
  email = (id_info.get("email") or "").lower()
  google_sub = id_info.get("sub", "")
  now = datetime.datetime.utcnow()

  user = db.query(User).filter(User.google_sub == google_sub).first()
  if not user:
    user = db.query(User).filter(User.email == email).first()
    if user:
      user.google_sub = google_sub
      logging.info("Linked Google account to existing user: %s", email)

  if user:
    user.name = id_info.get("name") or user.name
    user.image = id_info.get("picture") or user.image
    user.last_login = now
    db.commit()
    return user

  user = User(
      google_sub=google_sub,
      email=email,
      name=id_info.get("name"),
      image=id_info.get("picture"),
      credits=0,
      created_at=now,
      updated_at=now,
      last_login=now,
  )
  db.add(user)
  db.commit()
  db.refresh(user)
  logging.info("New user created: %s (%s)", email, user.id)
  return user


def _set_session_cookie(response, user: User) -> None:
  response.set_cookie(
      key=SESSION_COOKIE,
      value=create_session_token(user),
      httponly=True,
      secure=True,
      samesite="lax",
      max_age=SESSION_TTL_HOURS * 3600,
  )


# ---------- Endpoints ----------


@router.get("/config")
async def auth_config():
  """Return auth configuration so the frontend can adapt."""
  return JSONResponse({
      "google_enabled": bool(GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET),
      "mode": config.app_mode(),
  })


@router.get("/login")
async def login(request: Request):
  """Redirect to Google OAuth consent screen."""
  if not GOOGLE_CLIENT_ID:
    return RedirectResponse("/auth/error?error=google_not_configured")

  params = {
      "client_id": GOOGLE_CLIENT_ID,
      "redirect_uri": _build_redirect_uri(request),
      "response_type": "code",
      "scope": "openid email profile",
      "prompt": "select_account",
  }
  return RedirectResponse(f"{GOOGLE_AUTH_URL}?{urlencode(params)}")


@router.get("/callback")
def callback(
    request: Request,
    code: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
):
  """Handle Google OAuth callback: exchange code, validate, upsert user."""
  _check_rate_limit(request)
  if error:
    return RedirectResponse(f"/auth/error?error={error}")
  if not code:
    return RedirectResponse("/auth/error?error=missing_code")

  token_resp = requests.post(
      GOOGLE_TOKEN_URL,
      data={
          "code": code,
          "client_id": GOOGLE_CLIENT_ID,
          "client_secret": GOOGLE_CLIENT_SECRET,
          "redirect_uri": _build_redirect_uri(request),
          "grant_type": "authorization_code",
      },
      timeout=10,
  )
  if token_resp.status_code != 200:
    logging.error("Token exchange failed: %s", token_resp.text)
    return RedirectResponse("/auth/error?error=token_exchange_failed")

  raw_id_token = token_resp.json().get("id_token")
  if not raw_id_token:
    return RedirectResponse("/auth/error?error=no_id_token")

  try:
    id_info = google_id_token.verify_oauth2_token(
        raw_id_token, GoogleRequest(), GOOGLE_CLIENT_ID
    )
  except ValueError as ex:
    logging.error("ID token validation failed: %s", ex)
    return RedirectResponse("/auth/error?error=invalid_token")

  if id_info.get("iss") not in (
      "accounts.google.com",
      "https://accounts.google.com",
  ):
    return RedirectResponse("/auth/error?error=invalid_issuer")
  if not id_info.get("email_verified"):
    return RedirectResponse("/auth/error?error=email_not_verified")

  user = upsert_google_user(db, id_info)

  response = RedirectResponse("/", status_code=302)
  _set_session_cookie(response, user)
  return response


@router.post("/logout")
async def logout():
  """Clear the session cookie."""
  response = JSONResponse({"status": "logged_out"})
  response.delete_cookie(SESSION_COOKIE)
  return response


@router.get("/me")
def me(user: User = Depends(get_current_user)):
  """Return current authenticated user data."""
  return JSONResponse({
      "user": {
          "id": user.id,
          "email": user.email,
          "name": user.name,
          "image": user.image,
          "credits": user.credits,
          "isAdmin": is_admin(user),
          "createdAt": user.created_at.isoformat() if user.created_at else None,
      }
  })
