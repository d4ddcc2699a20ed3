import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from app.core.clock import get_clock
from app.core.errors import PersistenceFailure
from app.core.plan_limits import normalize_tier
from app.db.session import get_db
from app.dependencies.auth import get_current_user, get_optional_user_id
from app.models.analysis_record import AnalysisRecord
from app.models.user import User
from app.schemas.analysis import AnalyzeRequest, AnalyzeResponse, HistoryItem, SaveAnalysisRequest
from app.services.analysis_service import run_analysis, save_analysis_record
from app.services.gemini_client import get_analyzer, normalize_language
from app.utils.plan_enforcement import peek_usage

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/analyze", response_model=AnalyzeResponse)
def analyze_video(
    payload: AnalyzeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock=Depends(get_clock),
    analyzer=Depends(get_analyzer),
):
    """
    Analyze a recorded presentation.
    Consumes one analysis from the caller's quota once the media is accepted.
    """
    outcome = run_analysis(user, payload, db, clock, analyzer)
    return outcome.to_response()


@router.get("/check-limit")
def check_limit(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock=Depends(get_clock),
):
    """Remaining analyses for the current period. Read-only: never spends quota."""
    snapshot = peek_usage(user.id, user.plan_tier, db, clock)
    return snapshot.to_response()


@router.get("/history")
def get_history(
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """The caller's most recent analyses, newest first."""
    records = db.query(AnalysisRecord).filter(
        AnalysisRecord.user_id == user.id
    ).order_by(
        AnalysisRecord.created_at.desc(),
        AnalysisRecord.id.desc()
    ).limit(limit).all()

    analyses = [
        HistoryItem(
            id=record.id,
            created_at=record.created_at.isoformat() if record.created_at else None,
            overall_score=record.overall_score,
            summary=record.summary,
            topic=record.topic,
            audience=record.audience,
            goal=record.goal,
            language=record.language,
            tier_at_analysis=record.tier_at_analysis,
            analysis=record.analysis_result,
        ).model_dump()
        for record in records
    ]
    return {"success": True, "analyses": analyses}


@router.post("/save-analysis")
def save_analysis(
    request: SaveAnalysisRequest,
    db: Session = Depends(get_db),
    user_id: Optional[int] = Depends(get_optional_user_id),
):
    """
    Save an analysis the client already holds.
    Works without a session; anonymous analyses are stored with no user.
    """
    tier = "free"
    if user_id is not None:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User not found"
            )
        tier = normalize_tier(user.plan_tier)

    try:
        record_id = save_analysis_record(
            db,
            user_id=user_id,
            analysis=request.analysis,
            tier=tier,
            language=normalize_language(request.language),
            topic=request.topic,
            audience=request.audience,
            goal=request.goal,
        )
    except PersistenceFailure as e:
        logger.error("[History] Error saving analysis: %s", e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save analysis"
        )

    return {"success": True, "analysisId": record_id}
