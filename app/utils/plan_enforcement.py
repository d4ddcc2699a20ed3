"""
Tier limit enforcement for video analyses.

peek_usage() is read-only and safe to call from status endpoints.
consume_analysis() is the only call that spends quota; check_and_consume()
combines both for callers that are about to run an analysis.
"""
import logging
from datetime import datetime
from typing import NamedTuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import period_key, next_period_start, format_reset_date
from app.core.errors import InternalError, QuotaExceeded
from app.core.plan_limits import limits_for, normalize_tier, display_limit
from app.services.usage_tracker import get_usage_count, increment_usage

logger = logging.getLogger(__name__)

Remaining = Union[int, str]


class UsageSnapshot(NamedTuple):
    tier: str
    limit: Remaining
    used: int
    remaining: Remaining
    can_analyze: bool
    period: str
    resets_at: datetime
    video_duration_limit: int

    def to_response(self) -> dict:
        return {
            "success": True,
            "tier": self.tier,
            "limit": self.limit,
            "used": self.used,
            "remaining": self.remaining,
            "canAnalyze": self.can_analyze,
            "currentMonth": self.period,
            "resetsAt": self.resets_at.isoformat(),
            "videoDurationLimit": self.video_duration_limit,
        }


class UsageDecision(NamedTuple):
    allowed: bool
    remaining: Remaining


def _remaining(tier: str, used: int) -> Remaining:
    limits = limits_for(tier)
    if limits.is_unlimited:
        return "unlimited"
    return max(0, limits.monthly_analyses - used)


def peek_usage(user_id: int, tier: str, db: Session, clock) -> UsageSnapshot:
    """Current period usage for the user. Never writes."""
    tier = normalize_tier(tier)
    now = clock.now()
    period = period_key(now)
    limits = limits_for(tier)
    try:
        used = get_usage_count(user_id, period, db)
    except SQLAlchemyError as e:
        logger.exception("[Usage] Failed to read usage for user %s: %s", user_id, e)
        raise InternalError("Failed to check usage limits") from e

    remaining = _remaining(tier, used)
    return UsageSnapshot(
        tier=tier,
        limit=display_limit(tier),
        used=used,
        remaining=remaining,
        can_analyze=limits.is_unlimited or used < limits.monthly_analyses,
        period=period,
        resets_at=next_period_start(now),
        video_duration_limit=limits.max_video_seconds,
    )


def consume_analysis(user_id: int, tier: str, db: Session, clock) -> UsageDecision:
    """
    Spend one analysis from the current period's quota.

    Denied requests leave the counter untouched. Database errors are raised
    as InternalError so callers fail closed.
    """
    tier = normalize_tier(tier)
    now = clock.now()
    period = period_key(now)
    limits = limits_for(tier)
    try:
        new_count = increment_usage(user_id, period, tier, limits.monthly_analyses, now, db)
    except SQLAlchemyError as e:
        logger.exception("[Usage] Failed to update usage for user %s: %s", user_id, e)
        raise InternalError("Failed to check usage limits") from e

    if new_count is None:
        logger.info("[Usage] Limit reached for user %s (tier=%s, period=%s)", user_id, tier, period)
        return UsageDecision(allowed=False, remaining=0)

    logger.info("[Usage] User %s consumed analysis %s in %s (tier=%s)", user_id, new_count, period, tier)
    return UsageDecision(allowed=True, remaining=_remaining(tier, new_count))


def check_and_consume(user_id: int, tier: str, db: Session, clock) -> UsageDecision:
    """
    Check the quota and, if there is room, consume one analysis.
    Only call this when the gated action is about to run.
    """
    snapshot = peek_usage(user_id, tier, db, clock)
    if not snapshot.can_analyze:
        return UsageDecision(allowed=False, remaining=0)
    return consume_analysis(user_id, tier, db, clock)


def quota_exceeded_error(tier: str, clock) -> QuotaExceeded:
    """Build the 429 error with the tier limit and the next reset date."""
    tier = normalize_tier(tier)
    now = clock.now()
    limit = limits_for(tier).monthly_analyses
    reset_date = format_reset_date(next_period_start(now))
    return QuotaExceeded(
        f"You have reached the limit of {limit} analyses for your {tier} plan. "
        f"The limit resets on {reset_date}. Upgrade your plan to get more analyses.",
        tier=tier,
        currentMonth=period_key(now),
        limit=limit,
        remaining=0,
        resetsAt=next_period_start(now).isoformat(),
    )
