"""
Stripe Checkout Session Routes
Handles Stripe Checkout Session creation for subscription upgrades
"""
import logging
import os

import stripe
from fastapi import APIRouter, Depends, HTTPException, status, Body
from sqlalchemy.orm import Session

from app.core.plan_limits import PAID_TIERS
from app.db.session import get_db
from app.dependencies.auth import get_current_user
from app.models.user import User
from app.schemas.billing import CheckoutRequest, VerifyCheckoutRequest
from app.services.subscription_service import apply_subscription

logger = logging.getLogger(__name__)

router = APIRouter()

# Initialize Stripe
stripe.api_key = os.getenv("STRIPE_SECRET_KEY")
STRIPE_PRICE_IDS = {
    "starter": os.getenv("STRIPE_PRICE_ID_STARTER", ""),
    "pro": os.getenv("STRIPE_PRICE_ID_PRO", ""),
    "premium": os.getenv("STRIPE_PRICE_ID_PREMIUM", ""),
}
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")


def _object_id(value):
    # Expanded fields carry the whole object instead of its ID
    if isinstance(value, dict):
        return value.get("id")
    return value


@router.post("/create-checkout-session")
def create_checkout_session(
    request: CheckoutRequest,
    user: User = Depends(get_current_user),
):
    """
    Create a Stripe Checkout Session for a tier upgrade.
    Returns the checkout URL to redirect the user to.
    """
    tier = (request.tier or "").strip().lower()
    if tier not in PAID_TIERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid tier"
        )

    price_id = STRIPE_PRICE_IDS.get(tier)
    if not price_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Price ID not configured for tier: {tier}"
        )

    try:
        checkout_session = stripe.checkout.Session.create(
            mode="subscription",
            payment_method_types=["card"],
            line_items=[
                {
                    "price": price_id,
                    "quantity": 1,
                }
            ],
            success_url=f"{FRONTEND_URL}?checkout=success&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{FRONTEND_URL}?checkout=cancelled",
            customer_email=user.email,
            metadata={
                "user_id": str(user.id),
                "tier": tier
            },
            subscription_data={
                "metadata": {
                    "user_id": str(user.id),
                    "tier": tier
                }
            }
        )
    except stripe.StripeError as e:
        logger.error("[Stripe] Error creating checkout session for user %s: %s", user.id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create checkout session"
        )

    logger.info("[Stripe] Created checkout session %s for user %s (%s)", checkout_session.id, user.id, tier)
    return {
        "url": checkout_session.url,
        "session_id": checkout_session.id
    }


@router.post("/verify-checkout-session")
def verify_checkout_session(
    request: VerifyCheckoutRequest = Body(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Verify a completed checkout session and apply the tier immediately.
    Called after redirect so the user does not have to wait for the webhook.
    """
    try:
        checkout_session = stripe.checkout.Session.retrieve(request.session_id)
    except stripe.StripeError as e:
        logger.error("[Stripe] Error retrieving checkout session %s: %s", request.session_id, e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to verify checkout session"
        )

    session_data = checkout_session.to_dict()
    metadata = session_data.get("metadata") or {}
    session_user_id = metadata.get("user_id")
    if not session_user_id or str(session_user_id) != str(user.id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="This checkout session does not belong to you"
        )

    if session_data.get("payment_status") != "paid":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Checkout session is not paid"
        )

    tier = metadata.get("tier")
    if tier not in PAID_TIERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Checkout session has no valid tier"
        )

    apply_subscription(
        db,
        user,
        tier,
        provider="stripe",
        stripe_customer_id=_object_id(session_data.get("customer")),
        stripe_subscription_id=_object_id(session_data.get("subscription")),
    )
    return {
        "message": "Subscription verified and updated",
        "plan_tier": tier,
        "status": "active"
    }
