from typing import Dict, NamedTuple, Union

UNLIMITED = -1  # -1 means unlimited

# Decoded media ceiling for a single analysis (all tiers)
MAX_MEDIA_BYTES = 20 * 1024 * 1024

PAID_TIERS = ("starter", "pro", "premium")
ALL_TIERS = ("free",) + PAID_TIERS


class TierLimits(NamedTuple):
    name: str
    monthly_analyses: int
    max_video_seconds: int

    @property
    def is_unlimited(self) -> bool:
        return self.monthly_analyses == UNLIMITED


# Analyses per usage period and max recording length per subscription tier
PLAN_LIMITS: Dict[str, TierLimits] = {
    "free": TierLimits(name="Free", monthly_analyses=3, max_video_seconds=60),
    "starter": TierLimits(name="Starter", monthly_analyses=5, max_video_seconds=900),
    "pro": TierLimits(name="Pro", monthly_analyses=10, max_video_seconds=1800),
    "premium": TierLimits(name="Premium", monthly_analyses=UNLIMITED, max_video_seconds=3600),
}


def normalize_tier(tier: str) -> str:
    """Map a stored tier label onto a known tier, defaulting to free."""
    tier = (tier or "").strip().lower()
    return tier if tier in PLAN_LIMITS else "free"


def limits_for(tier: str) -> TierLimits:
    """Get the limits for a tier. Unrecognized tiers get the free limits."""
    return PLAN_LIMITS.get(normalize_tier(tier), PLAN_LIMITS["free"])


def display_limit(tier: str) -> Union[int, str]:
    """Analyses per period as shown to clients ("unlimited" for the sentinel)."""
    limits = limits_for(tier)
    return "unlimited" if limits.is_unlimited else limits.monthly_analyses
