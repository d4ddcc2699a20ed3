"""
PayPal subscription routes: start a subscription and confirm it after approval.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.core.plan_limits import PAID_TIERS
from app.db.session import get_db
from app.dependencies.auth import get_current_user
from app.models.user import User
from app.schemas.billing import PayPalCreateSubscriptionRequest, PayPalVerifySubscriptionRequest
from app.services import paypal_client
from app.services.paypal_client import PayPalError
from app.services.subscription_service import apply_subscription

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create-subscription")
def create_subscription(
    request: PayPalCreateSubscriptionRequest,
    user: User = Depends(get_current_user),
):
    tier = (request.tier or "").strip().lower()
    if tier not in PAID_TIERS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid tier")

    try:
        result = paypal_client.create_subscription(tier, user.id)
    except PayPalError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    logger.info("[PayPal] Created subscription %s for user %s (%s)", result["subscription_id"], user.id, tier)
    return {
        "subscriptionId": result["subscription_id"],
        "approvalUrl": result["approval_url"],
    }


@router.post("/verify-subscription")
def verify_subscription(
    request: PayPalVerifySubscriptionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Check the subscription with PayPal and apply its tier once it is ACTIVE."""
    try:
        subscription = paypal_client.get_subscription(request.subscription_id)
    except PayPalError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    paypal_status = subscription.get("status")
    if paypal_status != "ACTIVE":
        return {
            "success": False,
            "status": paypal_status,
            "message": "Subscription is not active",
        }

    custom_id = subscription.get("custom_id")
    if not custom_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No user ID found in subscription")
    if str(custom_id) != str(user.id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This subscription does not belong to you")

    tier = paypal_client.tier_for_plan_id(subscription.get("plan_id"))
    if not tier:
        logger.error("[PayPal] Subscription %s has unknown plan %s", request.subscription_id, subscription.get("plan_id"))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown subscription plan")

    apply_subscription(
        db,
        user,
        tier,
        provider="paypal",
        paypal_subscription_id=request.subscription_id,
    )
    return {"success": True, "status": paypal_status, "plan": tier}
