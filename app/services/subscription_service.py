"""
Tier changes driven by the billing providers.

Every upgrade/downgrade goes through apply_subscription so the user's
plan_tier and their subscriptions row never disagree.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.plan_limits import PAID_TIERS
from app.models.subscription import Subscription
from app.models.user import User

logger = logging.getLogger(__name__)


def find_user(db: Session, identifier) -> Optional[User]:
    """Resolve a user from a numeric id or an email (checkout metadata may hold either)."""
    if identifier is None:
        return None
    identifier = str(identifier).strip()
    if "@" in identifier:
        return db.query(User).filter(User.email.ilike(identifier)).first()
    try:
        return db.query(User).filter(User.id == int(identifier)).first()
    except (TypeError, ValueError):
        return None


def apply_subscription(
    db: Session,
    user: User,
    tier: str,
    provider: str,
    status: str = "active",
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
    paypal_subscription_id: Optional[str] = None,
) -> Subscription:
    """Upgrade the user to a paid tier and record the provider subscription."""
    if tier not in PAID_TIERS:
        raise ValueError(f"Invalid paid tier: {tier}")

    subscription = db.query(Subscription).filter(Subscription.user_id == user.id).first()
    if not subscription:
        subscription = Subscription(user_id=user.id)
        db.add(subscription)

    subscription.provider = provider
    subscription.status = status
    subscription.tier = tier
    if stripe_customer_id:
        subscription.stripe_customer_id = stripe_customer_id
    if stripe_subscription_id:
        subscription.stripe_subscription_id = stripe_subscription_id
    if paypal_subscription_id:
        subscription.paypal_subscription_id = paypal_subscription_id

    user.plan_tier = tier
    db.commit()
    db.refresh(subscription)
    logger.info("[Billing] User %s upgraded to %s via %s", user.id, tier, provider)
    return subscription


def downgrade_to_free(db: Session, subscription: Subscription, status: str) -> None:
    """Drop the subscription's user back to the free tier."""
    user = db.query(User).filter(User.id == subscription.user_id).first()
    subscription.status = status
    subscription.tier = "free"
    if user:
        user.plan_tier = "free"
    db.commit()
    logger.info("[Billing] User %s downgraded to free (subscription status: %s)", subscription.user_id, status)
