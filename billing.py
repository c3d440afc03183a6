"""Stripe billing and credit endpoints: checkout, webhook, balance."""

import json
import logging
import os

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import config
import credits as credits_mod
from auth import _build_base_url, get_current_user
from db import ProcessedStripeEvent, User, get_db

router = APIRouter(tags=["billing"])

STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")

stripe.api_key = STRIPE_SECRET_KEY


def resolve_purchase(session: dict) -> tuple[str, int, str]:
  """Pull (email, credits, package id) out of a completed checkout session.

  Credits come from the session metadata, or from the package table when
  the metadata only names a package.
  """
  metadata = session.get("metadata") or {}
  email = metadata.get("userEmail") or session.get("customer_email") or ""
  package_id = metadata.get("packageId") or ""

  credits_to_add = 0
  if metadata.get("credits"):
    try:
      credits_to_add = int(metadata["credits"])
    except (TypeError, ValueError):
      credits_to_add = 0
  if not credits_to_add and package_id:
    package = config.get_package(package_id)
    if package:
      credits_to_add = package["credits"]

  return email, credits_to_add, package_id


def _already_processed(db: Session, event_id: str) -> bool:
  return db.query(ProcessedStripeEvent).filter(
      ProcessedStripeEvent.stripe_event_id == event_id,
  ).first() is not None


async def _json_object(request: Request) -> dict:
  """Request body as a dict. An empty or unparsable body reads as {}."""
  try:
    body = await request.json()
  except ValueError:
    return {}
  if not isinstance(body, dict):
    raise HTTPException(status_code=400, detail="Request body must be a JSON object")
  return body


# ---------- Endpoints ----------


@router.get("/api/credit-packages")
async def list_packages():
  """Return purchasable credit packages."""
  return JSONResponse({
      "success": True,
      "packages": [
          {
              "id": key,
              "name": pkg["name"],
              "credits": pkg["credits"],
              "price": pkg["price"],
              "description": pkg["description"],
              "popular": pkg["popular"],
              "available": bool(pkg["stripe_price_id"] and STRIPE_SECRET_KEY),
          }
          for key, pkg in config.CREDIT_PACKAGES.items()
      ],
  })


@router.get("/api/get-credits")
def get_credits(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
  return JSONResponse({
      "success": True,
      "credits": credits_mod.get_credits(db, user.email),
  })


@router.get("/api/credit-history")
def credit_history(
    limit: int = 10,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
  """Newest-first ledger entries for the current user."""
  limit = max(1, min(limit, 100))
  txns = credits_mod.get_credit_history(db, user.email, limit=limit)
  return JSONResponse({
      "success": True,
      "credits": credits_mod.get_credits(db, user.email),
      "transactions": [credits_mod.transaction_to_dict(tx) for tx in txns],
  })


@router.post("/api/add-test-credits")
async def add_test_credits(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
  """Development-only credit top-up."""
  if config.is_production():
    raise HTTPException(status_code=403, detail="Not available in production")

  body = await _json_object(request)
  amount = body.get("amount", config.DEFAULT_TEST_CREDITS)
  if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
    raise HTTPException(status_code=400, detail="amount must be a positive integer")

  added = credits_mod.refund_credits(
      db, user.email, amount,
      f"Test credits added in development - {amount} credits",
  )
  if not added:
    raise HTTPException(status_code=500, detail="Failed to add credits")

  new_balance = credits_mod.get_credits(db, user.email)
  return JSONResponse({
      "success": True,
      "creditsAdded": amount,
      "newBalance": new_balance,
      "message": f"Added {amount} test credits. New balance: {new_balance}",
  })


@router.post("/api/create-checkout-session")
async def create_checkout_session(
    request: Request,
    user: User = Depends(get_current_user),
):
  """Create a Stripe Checkout Session for a credit package."""
  if not STRIPE_SECRET_KEY:
    raise HTTPException(status_code=500, detail="Stripe is not configured")

  body = await _json_object(request)
  package_id = body.get("packageId", "")
  if not package_id:
    raise HTTPException(status_code=400, detail="Package ID is required")

  package = config.get_package(package_id)
  if not package:
    raise HTTPException(status_code=400, detail="Invalid package ID")
  if not package["stripe_price_id"]:
    raise HTTPException(
        status_code=500,
        detail=f"Stripe Price ID not configured for {package_id}",
    )

  public_base = _build_base_url(request)
  try:
    session = stripe.checkout.Session.create(
        payment_method_types=["card"],
        line_items=[{
            "price": package["stripe_price_id"],
            "quantity": 1,
        }],
        mode="payment",
        customer_email=user.email,
        metadata={
            "userEmail": user.email,
            "packageId": package_id,
            "credits": str(package["credits"]),
        },
        success_url=f"{public_base}/credits?success=true&session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{public_base}/credits?canceled=true",
    )
  except stripe.StripeError as ex:
    logging.error("Error creating checkout session: %s", ex)
    raise HTTPException(status_code=500, detail="Failed to create checkout session")

  return JSONResponse({
      "success": True,
      "sessionId": session.id,
      "url": session.url,
  })


@router.post("/api/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
  """Handle Stripe webhook events (no auth; signature verified)."""
  if not STRIPE_WEBHOOK_SECRET:
    raise HTTPException(status_code=500, detail="Stripe is not configured")

  payload = await request.body()
  sig_header = request.headers.get("stripe-signature")
  if not sig_header:
    raise HTTPException(status_code=400, detail="No signature provided")

  try:
    stripe.Webhook.construct_event(payload, sig_header, STRIPE_WEBHOOK_SECRET)
  except stripe.SignatureVerificationError:
    logging.error("Stripe webhook signature verification failed")
    raise HTTPException(status_code=400, detail="Invalid signature")
  except ValueError:
    raise HTTPException(status_code=400, detail="Invalid payload")

  event = json.loads(payload)
  if event.get("type") != "checkout.session.completed":
    return JSONResponse({"received": True})

  session = event.get("data", {}).get("object", {})
  event_id = event.get("id", "")
  session_id = session.get("id", "")
  logging.info(
      "Processing checkout.session.completed: session=%s payment_status=%s",
      session_id, session.get("payment_status"),
  )

  email, credits_to_add, package_id = resolve_purchase(session)
  if not email:
    logging.error("No user email found in session %s", session_id)
    raise HTTPException(status_code=400, detail="No user email found")
  if credits_to_add <= 0:
    logging.error(
        "Could not determine credits for session %s (package=%s)",
        session_id, package_id,
    )
    raise HTTPException(status_code=400, detail="Could not determine credits to add")

  if event_id and _already_processed(db, event_id):
    logging.info("Stripe event %s already processed, skipping", event_id)
    return JSONResponse({"received": True, "duplicate": True})

  # Credit and processed-event marker commit together or not at all.
  try:
    added = credits_mod.add_purchased_credits(
        db, email, credits_to_add,
        f"Credits purchased via Stripe - Package: {package_id or 'unknown'} - Session: {session_id}",
        commit=False,
    )
    if added:
      if event_id:
        db.add(ProcessedStripeEvent(
            stripe_event_id=event_id,
            stripe_session_id=session_id,
        ))
      db.commit()
  except IntegrityError:
    db.rollback()
    logging.info("Stripe event %s processed by a concurrent delivery", event_id)
    return JSONResponse({"received": True, "duplicate": True})
  except SQLAlchemyError:
    db.rollback()
    logging.exception("Crediting failed for session %s", session_id)
    raise HTTPException(status_code=500, detail="Failed to add credits")

  if not added:
    logging.error("Failed to add credits for user %s", email)
    raise HTTPException(status_code=500, detail="Failed to add credits")

  logging.info("Added %d credits to %s", credits_to_add, email)
  return JSONResponse({"received": True})
