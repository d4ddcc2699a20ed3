"""
Webhooks for the payment provider (Stripe).
Every request is signature-verified before any tier change is applied.
"""
import json
import logging
import os

import stripe
from fastapi import APIRouter, Request, HTTPException, status, Depends
from sqlalchemy.orm import Session

from app.core.plan_limits import PAID_TIERS
from app.db.session import get_db
from app.models.subscription import Subscription
from app.services.subscription_service import apply_subscription, downgrade_to_free, find_user

logger = logging.getLogger(__name__)

router = APIRouter()

STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")

ACTIVE_STATUSES = ("active", "trialing")


@router.post("/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Stripe webhook. Register this URL in the Stripe dashboard:
    https://your-backend.com/webhooks/stripe
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No signature")
    if not STRIPE_WEBHOOK_SECRET:
        logger.error("[Stripe webhook] STRIPE_WEBHOOK_SECRET is not set; rejecting event")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook not configured")

    try:
        stripe.Webhook.construct_event(payload, sig_header, STRIPE_WEBHOOK_SECRET)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    except stripe.SignatureVerificationError as e:
        logger.warning("[Stripe webhook] Signature verification failed: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature")

    # Signature checked above; work on the plain JSON from here on
    event = json.loads(payload)
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    logger.info("[Stripe webhook] Received %s", event_type)

    if event_type == "checkout.session.completed":
        _handle_checkout_completed(db, obj)
    elif event_type == "customer.subscription.updated":
        _handle_subscription_updated(db, obj)
    elif event_type == "customer.subscription.deleted":
        _handle_subscription_deleted(db, obj)
    else:
        logger.info("[Stripe webhook] Unhandled event type: %s", event_type)

    return {"received": True}


def _handle_checkout_completed(db: Session, obj: dict) -> None:
    """checkout.session.completed: apply the purchased tier."""
    metadata = obj.get("metadata") or {}
    user_identifier = metadata.get("user_id")
    tier = metadata.get("tier")

    if not user_identifier or tier not in PAID_TIERS:
        logger.error("[Stripe webhook] Checkout %s missing metadata (user_id=%s, tier=%s)",
                     obj.get("id"), user_identifier, tier)
        return

    user = find_user(db, user_identifier)
    if not user:
        logger.error("[Stripe webhook] Checkout %s: user %s not found", obj.get("id"), user_identifier)
        return

    apply_subscription(
        db,
        user,
        tier,
        provider="stripe",
        stripe_customer_id=obj.get("customer"),
        stripe_subscription_id=obj.get("subscription"),
    )


def _find_stripe_subscription(db: Session, obj: dict):
    subscription = None
    if obj.get("id"):
        subscription = db.query(Subscription).filter(
            Subscription.stripe_subscription_id == obj["id"]
        ).first()
    if subscription is None and obj.get("customer"):
        subscription = db.query(Subscription).filter(
            Subscription.stripe_customer_id == obj["customer"]
        ).first()
    return subscription


def _handle_subscription_updated(db: Session, obj: dict) -> None:
    """customer.subscription.updated: downgrade when the subscription is no longer active."""
    subscription = _find_stripe_subscription(db, obj)
    if not subscription:
        logger.info("[Stripe webhook] No local subscription for %s", obj.get("id"))
        return

    status_val = (obj.get("status") or "").lower()
    if status_val in ACTIVE_STATUSES:
        subscription.status = status_val
        db.commit()
        return

    downgrade_to_free(db, subscription, status_val or "inactive")


def _handle_subscription_deleted(db: Session, obj: dict) -> None:
    """customer.subscription.deleted: back to free."""
    subscription = _find_stripe_subscription(db, obj)
    if not subscription:
        logger.info("[Stripe webhook] No local subscription for %s", obj.get("id"))
        return
    downgrade_to_free(db, subscription, "cancelled")
