"""Credit ledger: per-user balance plus an append-only transaction log.

Every balance mutation is a single conditional UPDATE committed together
with its CreditTransaction row, so concurrent debits against one user
cannot drive the balance below zero.
"""

from __future__ import annotations

import datetime
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from db import CreditTransaction, User

DEDUCTION = "deduction"
REFUND = "refund"
PURCHASE = "purchase"


def _find_user(db: Session, user_email: str):
  return db.query(User).filter(User.email == user_email).first()


def get_credits(db: Session, user_email: str) -> int:
  """Current balance, or 0 when the user does not exist."""
  user = _find_user(db, user_email)
  if not user:
    return 0
  return user.credits or 0


def has_enough_credits(
    db: Session,
    user_email: str,
    required: int = 1,
) -> bool:
  """True if the user exists and holds at least `required` credits."""
  user = _find_user(db, user_email)
  if not user:
    return False
  return (user.credits or 0) >= required


def _log_transaction(
    db: Session,
    user_email: str,
    amount: int,
    tx_type: str,
    description: str,
) -> None:
  db.add(CreditTransaction(
      user_email=user_email,
      amount=amount,
      type=tx_type,
      description=description,
  ))


def deduct_credits(
    db: Session,
    user_email: str,
    amount: int = 1,
    description: str = "Generation",
) -> bool:
  """Debit `amount` credits if the balance covers it.

  Returns False without touching the ledger when the balance is short or
  the user is missing.
  """
  if amount <= 0:
    return False

  result = db.execute(
      update(User)
      .where(User.email == user_email, User.credits >= amount)
      .values(
          credits=User.credits - amount,
          updated_at=datetime.datetime.utcnow(),
      )
      .execution_options(synchronize_session=False)
  )
  if result.rowcount == 0:
    db.rollback()
    logging.info(
        "Deduction of %d credits refused for %s (insufficient or no user)",
        amount, user_email,
    )
    return False

  _log_transaction(db, user_email, -amount, DEDUCTION, description)
  db.commit()
  db.expire_all()
  logging.info("Deducted %d credits from %s (%s)", amount, user_email, description)
  return True


def _credit(
    db: Session,
    user_email: str,
    amount: int,
    tx_type: str,
    description: str,
    commit: bool = True,
) -> bool:
  if amount <= 0:
    return False

  result = db.execute(
      update(User)
      .where(User.email == user_email)
      .values(
          credits=User.credits + amount,
          updated_at=datetime.datetime.utcnow(),
      )
      .execution_options(synchronize_session=False)
  )
  if result.rowcount == 0:
    db.rollback()
    logging.warning("Cannot credit %d to unknown user %s", amount, user_email)
    return False

  _log_transaction(db, user_email, amount, tx_type, description)
  if not commit:
    # Caller commits, together with its own pending rows.
    db.flush()
    return True
  db.commit()
  db.expire_all()
  logging.info(
      "Credited %d credits to %s as %s (%s)",
      amount, user_email, tx_type, description,
  )
  return True


def refund_credits(
    db: Session,
    user_email: str,
    amount: int = 1,
    description: str = "Failed generation refund",
) -> bool:
  """Give credits back after a failed paid operation."""
  return _credit(db, user_email, amount, REFUND, description)


def add_purchased_credits(
    db: Session,
    user_email: str,
    amount: int,
    description: str,
    commit: bool = True,
) -> bool:
  """Credit a purchase. Logged with type "purchase" rather than "refund".

  With commit=False the balance change and its transaction row are left
  pending so the caller can commit them with other writes. A False return
  has already rolled the session back.
  """
  return _credit(db, user_email, amount, PURCHASE, description, commit=commit)


def get_credit_history(
    db: Session,
    user_email: str,
    limit: int = 10,
) -> list[CreditTransaction]:
  """Newest-first transactions for a user."""
  return (
      db.query(CreditTransaction)
      .filter(CreditTransaction.user_email == user_email)
      .order_by(CreditTransaction.created_at.desc())
      .limit(limit)
      .all()
  )


def transaction_to_dict(tx: CreditTransaction) -> dict:
  return {
      "id": tx.id,
      "userEmail": tx.user_email,
      "amount": tx.amount,
      "type": tx.type,
      "description": tx.description,
      "createdAt": tx.created_at.isoformat() if tx.created_at else None,
  }
