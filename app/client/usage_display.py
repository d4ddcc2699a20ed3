"""
Client-side view of the user's monthly usage.

Fetches /api/check-limit and caches the result per identity. The cache is
dropped whenever the identity changes or an analysis has been recorded, so
the numbers shown never belong to another account or lag behind a
consumed analysis.
"""
import logging
from typing import Optional

import requests

logger = logging.getLogger(__name__)


class UsageFetchError(Exception):
    pass


class UsageDisplay:
    def __init__(self, base_url: str, session: requests.Session = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self._identity: Optional[str] = None
        self._token: Optional[str] = None
        self._cached: Optional[dict] = None

    def start_session(self, identity: str, token: str) -> None:
        """Switch to an identity and fetch its usage right away."""
        if identity != self._identity:
            self._cached = None
        self._identity = identity
        self._token = token
        self._cached = self._fetch()

    def end_session(self) -> None:
        self._identity = None
        self._token = None
        self._cached = None

    def invalidate(self) -> None:
        self._cached = None

    def current(self) -> dict:
        if self._identity is None:
            raise UsageFetchError("No active session")
        if self._cached is None:
            self._cached = self._fetch()
        return self._cached

    def record_attempt(self) -> dict:
        """Call after an analysis request finishes, whatever its outcome."""
        self.invalidate()
        return self.current()

    @property
    def can_record(self) -> bool:
        return bool(self.current().get("canAnalyze"))

    def progress_bar(self, width: int = 20) -> str:
        usage = self.current()
        limit = usage.get("limit")
        used = usage.get("used", 0)
        if limit == "unlimited":
            return f"[{'=' * width}] {used} used (unlimited)"
        limit = int(limit or 0)
        filled = width if limit <= 0 else min(width, round(width * used / limit))
        return f"[{'#' * filled}{'-' * (width - filled)}] {used}/{limit}"

    def _fetch(self) -> dict:
        try:
            response = self.session.get(
                f"{self.base_url}/api/check-limit",
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("[Usage display] Could not reach server: %s", e)
            raise UsageFetchError("Could not reach server") from e

        if response.status_code != 200:
            logger.warning("[Usage display] check-limit returned %s", response.status_code)
            raise UsageFetchError(f"check-limit failed with status {response.status_code}")
        return response.json()
