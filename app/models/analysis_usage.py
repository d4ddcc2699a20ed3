"""
Per-user, per-period analysis counter.

One row per (user_id, period). Rows are created on the first analysis of a
period, only ever incremented, and kept after the period rolls over.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from app.db.base import Base


class AnalysisUsage(Base):
    __tablename__ = "analysis_usage"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, nullable=False, index=True)
    period = Column(String(10), primary_key=True, nullable=False)  # "YYYY-MM" (or "YYYY-MM-DD" for daily quotas)
    analysis_count = Column(Integer, default=0, nullable=False)
    tier = Column(String, nullable=False, default="free")  # Tier active when last written
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<AnalysisUsage(user_id={self.user_id}, period={self.period}, count={self.analysis_count}, tier={self.tier})>"
