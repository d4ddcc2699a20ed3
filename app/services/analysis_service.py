"""
Video analysis orchestration.

Request flow (each step can end the request early):
  authenticated user -> quota check -> media validation -> model configured
  -> quota consumed -> model call -> response parsed -> saved to history (best effort) -> response

Quota is only consumed once the media has passed validation, so a rejected
upload never costs the user an analysis.
"""
import base64
import binascii
import logging
import math
from typing import Any, Dict, NamedTuple, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import (
    DurationExceeded,
    InternalError,
    MediaInvalid,
    MediaTooLarge,
    PersistenceFailure,
    UpstreamError,
    UpstreamMalformedResponse,
)
from app.core.plan_limits import MAX_MEDIA_BYTES, limits_for, normalize_tier
from app.models.analysis_record import AnalysisRecord
from app.models.user import User
from app.schemas.analysis import AnalysisResult, AnalyzeRequest
from app.services.gemini_client import normalize_language
from app.utils.json_extract import extract_json_object
from app.utils.plan_enforcement import (
    Remaining,
    consume_analysis,
    peek_usage,
    quota_exceeded_error,
)

logger = logging.getLogger(__name__)

PREMIUM_ONLY_FIELDS = ("vocalAnalysis", "imageAnalysis")


class AnalysisOutcome(NamedTuple):
    analysis: Dict[str, Any]
    tier: str
    remaining: Remaining
    record_id: Optional[int]

    def to_response(self) -> dict:
        return {
            "success": True,
            "analysis": self.analysis,
            "usage": {
                "tier": self.tier,
                "remainingThisMonth": self.remaining,
            },
        }


def _strip_data_url(video_base64: str) -> str:
    # Browsers hand over "data:video/webm;base64,<payload>" from FileReader
    if video_base64.startswith("data:") and "," in video_base64:
        return video_base64.split(",", 1)[1]
    return video_base64


def validate_media(payload: AnalyzeRequest, tier: str) -> str:
    """
    Check the uploaded media against the size ceiling and the tier's duration limit.
    Returns the bare base64 payload to forward upstream.
    """
    if not payload.video_base64 or not payload.mime_type:
        raise MediaInvalid("Missing video or file type")

    mime_type = payload.mime_type.strip().lower()
    if not (mime_type.startswith("video/") or mime_type.startswith("audio/")):
        raise MediaInvalid(f"Unsupported media type: {payload.mime_type}")

    video_base64 = _strip_data_url(payload.video_base64.strip())
    max_mb = MAX_MEDIA_BYTES // (1024 * 1024)

    # Reject on the encoded length first so oversized uploads are never decoded
    if len(video_base64) * 3 // 4 > MAX_MEDIA_BYTES + 2:
        raise MediaTooLarge(f"Video exceeds the maximum size of {max_mb}MB")

    try:
        decoded = base64.b64decode(video_base64, validate=True)
    except (binascii.Error, ValueError):
        raise MediaInvalid("Video data is not valid base64")
    if not decoded:
        raise MediaInvalid("Video is empty")
    if len(decoded) > MAX_MEDIA_BYTES:
        raise MediaTooLarge(f"Video exceeds the maximum size of {max_mb}MB")

    max_seconds = limits_for(tier).max_video_seconds
    if payload.video_duration and payload.video_duration > max_seconds:
        raise DurationExceeded(
            f"Your {tier} plan allows videos up to {max_seconds / 60:g} minute(s). "
            f"This video is {math.ceil(payload.video_duration / 60)} minute(s) long.",
            tier=tier,
            videoDurationLimit=max_seconds,
        )
    return video_base64


def parse_analysis(raw_text: str) -> AnalysisResult:
    """Turn raw model output into a validated AnalysisResult."""
    data = extract_json_object(raw_text)
    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as e:
        raise UpstreamMalformedResponse(
            f"Analysis response is missing required fields ({e.error_count()} error(s))",
            raw=raw_text,
        ) from e


def save_analysis_record(
    db: Session,
    user_id: Optional[int],
    analysis: Dict[str, Any],
    tier: str,
    language: Optional[str] = None,
    topic: Optional[str] = None,
    audience: Optional[str] = None,
    goal: Optional[str] = None,
    video_duration: Optional[float] = None,
) -> int:
    """Insert one history row. Raises PersistenceFailure on database errors."""
    record = AnalysisRecord(
        user_id=user_id,
        analysis_result=analysis,
        overall_score=analysis.get("overallScore"),
        summary=analysis.get("summary"),
        language=language,
        topic=topic,
        audience=audience,
        goal=goal,
        video_duration=video_duration,
        tier_at_analysis=tier,
    )
    try:
        db.add(record)
        db.commit()
        db.refresh(record)
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(str(e)) from e
    return record.id


def run_analysis(user: User, payload: AnalyzeRequest, db: Session, clock, analyzer) -> AnalysisOutcome:
    tier = normalize_tier(user.plan_tier)
    language = normalize_language(payload.language)
    logger.info("[Analyze] Request from user %s (tier=%s, language=%s)", user.id, tier, language)

    snapshot = peek_usage(user.id, tier, db, clock)
    if not snapshot.can_analyze:
        logger.info("[Analyze] Denied: limit reached for user %s (%s/%s in %s)",
                    user.id, snapshot.used, snapshot.limit, snapshot.period)
        raise quota_exceeded_error(tier, clock)

    video_base64 = validate_media(payload, tier)

    if not analyzer.configured:
        logger.error("[Analyze] Analysis service is not configured; not consuming quota for user %s", user.id)
        raise UpstreamError("Analysis service is not configured")

    decision = consume_analysis(user.id, tier, db, clock)
    if not decision.allowed:
        # Lost a race with a concurrent request for the last slot
        raise quota_exceeded_error(tier, clock)

    is_premium = tier == "premium"
    raw_text = analyzer.analyze(
        video_base64=video_base64,
        mime_type=payload.mime_type,
        language=language,
        is_premium=is_premium,
        topic=payload.topic,
        audience=payload.audience,
        goal=payload.goal,
    )

    try:
        result = parse_analysis(raw_text)
    except UpstreamMalformedResponse:
        logger.error("[Analyze] Could not parse model response for user %s", user.id)
        raise

    analysis = result.to_client()
    if not is_premium:
        for field in PREMIUM_ONLY_FIELDS:
            analysis.pop(field, None)
    logger.info("[Analyze] Analysis completed for user %s (score=%s)", user.id, analysis.get("overallScore"))

    record_id = None
    try:
        record_id = save_analysis_record(
            db,
            user_id=user.id,
            analysis=analysis,
            tier=tier,
            language=language,
            topic=payload.topic,
            audience=payload.audience,
            goal=payload.goal,
            video_duration=payload.video_duration,
        )
    except PersistenceFailure as e:
        logger.error("[Analyze] Could not save analysis to history for user %s: %s", user.id, e.message)

    try:
        remaining = peek_usage(user.id, tier, db, clock).remaining
    except InternalError:
        remaining = decision.remaining

    return AnalysisOutcome(analysis=analysis, tier=tier, remaining=remaining, record_id=record_id)
