from app.models.user import User
from app.models.subscription import Subscription
from app.models.analysis_usage import AnalysisUsage
from app.models.analysis_record import AnalysisRecord

__all__ = [
    "User",
    "Subscription",
    "AnalysisUsage",
    "AnalysisRecord",
]
