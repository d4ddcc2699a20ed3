from sqlalchemy import Column, Integer, String, Float, Text, DateTime, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from app.db.base import Base


class AnalysisRecord(Base):
    """
    One completed analysis. Append-only: rows are never updated.

    user_id is nullable so anonymous analyses saved from the landing page
    can be stored too.
    """

    __tablename__ = "analysis_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Full structured result as returned to the client
    analysis_result = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    overall_score = Column(Float, nullable=True)
    summary = Column(Text, nullable=True)

    language = Column(String(5), nullable=True)
    topic = Column(Text, nullable=True)
    audience = Column(Text, nullable=True)
    goal = Column(Text, nullable=True)
    video_duration = Column(Float, nullable=True)  # seconds, as declared by the recorder

    tier_at_analysis = Column(String, nullable=False, default="free")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
