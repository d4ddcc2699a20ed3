"""
Service for the persistent per-period analysis counters.

Counters live in analysis_usage, one row per (user_id, period). The only write
path is increment_usage(), which performs a conditional insert-or-increment so
two concurrent requests from the same user can never push a counter past its
limit.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.plan_limits import UNLIMITED
from app.models.analysis_usage import AnalysisUsage

logger = logging.getLogger(__name__)


def get_usage_count(user_id: int, period: str, db: Session) -> int:
    """Number of analyses recorded for the user in the given period (0 if none)."""
    row = db.query(AnalysisUsage.analysis_count).filter(
        AnalysisUsage.user_id == user_id,
        AnalysisUsage.period == period
    ).first()
    return row[0] if row else 0


def _conditional_increment(
    user_id: int,
    period: str,
    tier: str,
    limit: int,
    now: datetime,
    db: Session,
) -> int:
    """
    UPDATE ... SET analysis_count = analysis_count + 1 WHERE row matches and
    (for finite limits) analysis_count < limit. Returns matched row count.
    """
    query = db.query(AnalysisUsage).filter(
        AnalysisUsage.user_id == user_id,
        AnalysisUsage.period == period
    )
    if limit != UNLIMITED:
        query = query.filter(AnalysisUsage.analysis_count < limit)
    return query.update(
        {
            AnalysisUsage.analysis_count: AnalysisUsage.analysis_count + 1,
            AnalysisUsage.tier: tier,
            AnalysisUsage.updated_at: now,
        },
        synchronize_session=False
    )


def increment_usage(
    user_id: int,
    period: str,
    tier: str,
    limit: int,
    now: datetime,
    db: Session,
) -> Optional[int]:
    """
    Atomically consume one analysis for (user_id, period).

    Returns the new count, or None when the counter is already at `limit`
    (nothing is written in that case). Pass UNLIMITED to always increment.
    Database errors propagate to the caller.
    """
    if not user_id:
        raise ValueError("user_id is required")
    if not period:
        raise ValueError("period is required")

    try:
        updated = _conditional_increment(user_id, period, tier, limit, now, db)
        if updated:
            db.commit()
            return get_usage_count(user_id, period, db)

        exists = db.query(AnalysisUsage.user_id).filter(
            AnalysisUsage.user_id == user_id,
            AnalysisUsage.period == period
        ).first()
        if exists:
            # Row is there but the WHERE clause excluded it: limit reached
            db.rollback()
            return None

        if limit != UNLIMITED and limit <= 0:
            db.rollback()
            return None

        db.add(AnalysisUsage(
            user_id=user_id,
            period=period,
            analysis_count=1,
            tier=tier,
            created_at=now,
            updated_at=now,
        ))
        try:
            db.commit()
            logger.info("[Usage] Created counter for user %s, period %s", user_id, period)
            return 1
        except IntegrityError:
            # Another request created the row first; fall back to the conditional update
            db.rollback()
            logger.info("[Usage] Counter for user %s, period %s created concurrently; retrying increment", user_id, period)
            updated = _conditional_increment(user_id, period, tier, limit, now, db)
            if not updated:
                db.rollback()
                return None
            db.commit()
            return get_usage_count(user_id, period, db)
    except Exception:
        db.rollback()
        raise
