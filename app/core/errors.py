"""
Error taxonomy for the analysis flow.

Each error knows the HTTP status it maps to and a user-facing message.
app.main registers a single handler that renders them as
{"success": false, "error": ..., "message": ..., **extra}.
"""
from typing import Any, Dict, Optional

from fastapi import status

# Raw upstream text included in diagnostics is cut to this many characters
RAW_EXCERPT_LIMIT = 500


class OratoriaError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal error"

    def __init__(self, message: str = None, **extra: Any):
        self.message = message or self.error
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"success": False, "error": self.error, "message": self.message}
        body.update(self.extra)
        return body


class Unauthorized(OratoriaError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"


class ProfileNotFound(OratoriaError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "User not found"


class QuotaExceeded(OratoriaError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error = "Analysis limit reached"


class MediaInvalid(OratoriaError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid media"


class MediaTooLarge(MediaInvalid):
    error = "Video too large"


class DurationExceeded(MediaInvalid):
    error = "Video too long"


class UpstreamRateLimited(OratoriaError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Service temporarily unavailable"


class UpstreamError(OratoriaError):
    error = "Error analyzing video"


class UpstreamMalformedResponse(UpstreamError):
    error = "Malformed analysis response"

    def __init__(self, message: str = None, raw: Optional[str] = None, **extra: Any):
        if raw is not None:
            extra["raw"] = truncate_raw(raw)
        super().__init__(message, **extra)


class PersistenceFailure(OratoriaError):
    """Saving to history failed. Logged, never returned to the caller."""
    error = "Could not save analysis"


class InternalError(OratoriaError):
    pass


def truncate_raw(raw: str, limit: int = RAW_EXCERPT_LIMIT) -> str:
    raw = raw or ""
    if len(raw) <= limit:
        return raw
    return raw[:limit] + "..."
