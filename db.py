"""Database models and session management using SQLAlchemy."""

import logging
import os
import uuid
import datetime

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    create_engine,
    event,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    sessionmaker,
)


DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///data/app.db")

_is_sqlite = DATABASE_URL.startswith("sqlite")

if _is_sqlite:
  engine = create_engine(
      DATABASE_URL,
      echo=False,
      connect_args={"check_same_thread": False},
  )

  @event.listens_for(engine, "connect")
  def _set_sqlite_pragma(dbapi_conn, _):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()
else:
  engine = create_engine(
      DATABASE_URL,
      echo=False,
      pool_size=5,
      max_overflow=10,
      pool_timeout=30,
      pool_recycle=1800,
      pool_pre_ping=True,
  )

SessionLocal = sessionmaker(bind=engine)


class Base(DeclarativeBase):
  pass


def _uuid() -> str:
  return str(uuid.uuid4())


def _now() -> datetime.datetime:
  return datetime.datetime.utcnow()


class User(Base):
  __tablename__ = "users"

  id = Column(String, primary_key=True, default=_uuid)
  google_sub = Column(String, unique=True, index=True, nullable=True)
  email = Column(String, unique=True, nullable=False, index=True)
  name = Column(String, nullable=True)
  image = Column(String, nullable=True)
  is_admin = Column(Boolean, default=False, nullable=False)
  credits = Column(Integer, default=0, nullable=False)
  created_at = Column(DateTime, default=_now)
  updated_at = Column(DateTime, default=_now, onupdate=_now)
  last_login = Column(DateTime, default=_now)


class CreditTransaction(Base):
  """Append-only ledger row. `amount` is signed: negative for deductions."""
  __tablename__ = "credit_transactions"

  id = Column(String, primary_key=True, default=_uuid)
  user_email = Column(String, nullable=False, index=True)
  amount = Column(Integer, nullable=False)
  type = Column(String, nullable=False)  # "deduction" | "refund" | "purchase"
  description = Column(String, nullable=False, default="")
  created_at = Column(DateTime, default=_now, index=True)


class PhotoSubmission(Base):
  __tablename__ = "photo_submissions"

  id = Column(String, primary_key=True, default=_uuid)
  # Not unique: the timestamp fallback in outline_service can collide.
  queue_number = Column(String(5), nullable=False, index=True)
  original_photo_url = Column(Text, nullable=True)
  generated_outline_url = Column(Text, nullable=True)
  status = Column(String, nullable=False, default="completed")
  source = Column(String, nullable=True)
  user_email = Column(String, nullable=True)
  created_at = Column(DateTime, default=_now, index=True)


class AnimationTask(Base):
  __tablename__ = "animation_tasks"

  id = Column(String, primary_key=True, default=_uuid)
  task_id = Column(String, unique=True, nullable=False, index=True)
  request_id = Column(String, nullable=True)  # provider job id
  status = Column(
      String, nullable=False, default="queuing", index=True,
  )  # queuing / processing / success / failed
  image_url = Column(Text, nullable=True)
  prompt = Column(Text, nullable=True)
  model = Column(String, nullable=True)
  duration = Column(Integer, nullable=True)
  resolution = Column(String, nullable=True)
  family_art_id = Column(String, nullable=False, index=True)
  user_email = Column(String, nullable=True)
  download_url = Column(Text, nullable=True)
  hosted_video_url = Column(Text, nullable=True)
  hosted_image_url = Column(Text, nullable=True)
  error_message = Column(Text, nullable=True)
  created_at = Column(DateTime, default=_now, index=True)
  updated_at = Column(DateTime, default=_now, onupdate=_now)


class ProcessedStripeEvent(Base):
  __tablename__ = "processed_stripe_events"

  stripe_event_id = Column(String, primary_key=True)
  stripe_session_id = Column(String, nullable=False)
  processed_at = Column(DateTime, default=_now)


def init_db():
  """Create all tables. Safe to call multiple times."""
  if _is_sqlite and DATABASE_URL.startswith("sqlite:///data/"):
    os.makedirs("data", exist_ok=True)
  Base.metadata.create_all(bind=engine)
  logging.info("Database initialized (%s)", "SQLite" if _is_sqlite else "PostgreSQL")


def get_db():
  """Yield a database session, closing it after use."""
  db = SessionLocal()
  try:
    yield db
  finally:
    db.close()
