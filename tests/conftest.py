"""Shared test fixtures: in-memory database, API client, users."""

import datetime
import os
import sys

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Override env vars BEFORE importing app modules so startup guards don't fire
os.environ["SESSION_SECRET"] = "test-secret-key-not-for-production"
os.environ["DATABASE_URL"] = "sqlite://"  # in-memory
os.environ["ENVIRONMENT"] = "development"
os.environ["FORCE_APP_MODE"] = "real"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["GOOGLE_CLIENT_ID"] = ""
os.environ["GOOGLE_CLIENT_SECRET"] = ""
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["WAVESPEED_API_KEY"] = "test-wavespeed-key"
os.environ["GCS_BUCKET"] = "test-bucket"
os.environ["ANIMATION_POLL_INTERVAL"] = "0"
os.environ["SLACK_ERROR_WEBHOOK_URL"] = ""
os.environ["SLACK_WEBHOOK_URL"] = ""

from db import Base, User, PhotoSubmission, AnimationTask  # noqa: E402


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def db_engine():
  """Create an in-memory SQLite engine with all tables.

  Uses StaticPool so every connection shares the same in-memory DB,
  and check_same_thread=False for FastAPI TestClient threading.
  """
  engine = create_engine(
      "sqlite://",
      echo=False,
      connect_args={"check_same_thread": False},
      poolclass=StaticPool,
  )
  Base.metadata.create_all(bind=engine)
  yield engine
  engine.dispose()


@pytest.fixture()
def db_session(db_engine):
  """Yield a fresh DB session per test."""
  Session = sessionmaker(bind=db_engine)
  session = Session()
  yield session
  session.close()


@pytest.fixture()
def client(db_engine):
  """FastAPI TestClient wired to the in-memory DB."""
  from fastapi.testclient import TestClient

  SessionLocal = sessionmaker(bind=db_engine)

  # Must import app AFTER env vars are set
  from web_app import app
  from db import get_db

  def _override_get_db():
    db = SessionLocal()
    try:
      yield db
    finally:
      db.close()

  app.dependency_overrides[get_db] = _override_get_db

  from auth import _rate_buckets
  _rate_buckets.clear()

  with TestClient(app, base_url="https://testserver") as c:
    yield c

  app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helper factories
# ---------------------------------------------------------------------------

@pytest.fixture()
def create_user(db_session):
  """Factory to insert a user directly into the DB."""

  def _create(email="test@example.com", credits=0, is_admin=False, name="Test User"):
    now = datetime.datetime.utcnow()
    user = User(
        email=email,
        name=name,
        google_sub=f"google-{email}",
        credits=credits,
        is_admin=is_admin,
        created_at=now,
        updated_at=now,
        last_login=now,
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user

  return _create


@pytest.fixture()
def auth_headers():
  """Helper: session cookie header for a user."""
  from auth import create_session_token

  def _auth(user):
    return {"Cookie": f"session_token={create_session_token(user)}"}

  return _auth


@pytest.fixture()
def balance(db_session):
  """Read a user's balance, bypassing the session's identity map."""
  import credits as credits_mod

  def _balance(email):
    db_session.expire_all()
    return credits_mod.get_credits(db_session, email)

  return _balance


@pytest.fixture()
def create_submission(db_session):
  def _create(queue_number="10001", created_at=None, **fields):
    sub = PhotoSubmission(
        queue_number=queue_number,
        original_photo_url=fields.pop("original_photo_url", "https://example.com/photo.jpg"),
        generated_outline_url=fields.pop("generated_outline_url", "https://example.com/outline.png"),
        status=fields.pop("status", "completed"),
        created_at=created_at or datetime.datetime.utcnow(),
        **fields,
    )
    db_session.add(sub)
    db_session.commit()
    return sub

  return _create


@pytest.fixture()
def create_task(db_session):
  def _create(task_id, family_art_id="10001", status="success", created_at=None, **fields):
    task = AnimationTask(
        task_id=task_id,
        family_art_id=family_art_id,
        status=status,
        image_url=fields.pop("image_url", "https://example.com/art.jpg"),
        hosted_video_url=fields.pop("hosted_video_url", f"https://cdn.example.com/{task_id}.mp4"),
        hosted_image_url=fields.pop("hosted_image_url", "https://cdn.example.com/art.jpg"),
        created_at=created_at or datetime.datetime.utcnow(),
        **fields,
    )
    db_session.add(task)
    db_session.commit()
    return task

  return _create
