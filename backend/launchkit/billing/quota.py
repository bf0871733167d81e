"""Quota domain model — monthly AI generation allowance for a subscription tier.

Pure computation over numbers the caller supplies: no database or network
access happens here, so the API layer and the reconciliation endpoints share
the same arithmetic. Persisting usage or reset dates is the caller's job.

All datetimes are naive UTC, matching the database columns.
"""

import math
from datetime import datetime, timezone
from typing import Any

from launchkit.billing.plans import (
    QUOTA_CONFIG,
    SUBSCRIPTION_TIERS,
    TIER_ENTERPRISE,
    TIER_FREE,
    UNLIMITED,
    TierLimits,
    is_valid_tier,
)

NEAR_LIMIT_PERCENTAGE = 80


class InvalidTierError(ValueError):
    """Raised when a tier name is not one of SUBSCRIPTION_TIERS."""


def _validate_tier(tier: str) -> None:
    if not is_valid_tier(tier):
        raise InvalidTierError(
            f"Invalid tier {tier!r}. Expected one of: {', '.join(SUBSCRIPTION_TIERS)}"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def next_reset_date(now: datetime | None = None) -> datetime:
    """First day of the calendar month after ``now`` (midnight)."""
    now = now or _utcnow()
    if now.month == 12:
        return datetime(now.year + 1, 1, 1)
    return datetime(now.year, now.month + 1, 1)


class Quota:
    """A user's AI generation quota and usage for the current month."""

    def __init__(
        self,
        tier: str = TIER_FREE,
        usage_this_month: int = 0,
        reset_date: datetime | None = None,
    ) -> None:
        _validate_tier(tier)
        self.tier = tier
        self.usage_this_month = max(0, usage_this_month)
        self.reset_date = reset_date or next_reset_date()

    def __repr__(self) -> str:
        return f"<Quota(tier={self.tier}, used={self.usage_this_month}, limit={self.get_limit()})>"

    # --- Limits & usage ---

    def get_limit(self) -> int:
        """Monthly generation limit; ``UNLIMITED`` (-1) means no cap."""
        return QUOTA_CONFIG[self.tier].monthly_generations

    def is_unlimited(self) -> bool:
        return self.get_limit() == UNLIMITED

    def get_remaining(self) -> int | float:
        """Generations left this month, floored at 0. ``math.inf`` when unlimited."""
        limit = self.get_limit()
        if limit == UNLIMITED:
            return math.inf
        return max(0, limit - self.usage_this_month)

    def get_percentage(self) -> int:
        """Usage as a whole percentage of the limit, capped at 100.

        Rounds half up. Returns 0 when the tier is unlimited or the limit is 0.
        """
        limit = self.get_limit()
        if limit == UNLIMITED or limit == 0:
            return 0
        return min(100, math.floor(self.usage_this_month * 100 / limit + 0.5))

    def can_generate(self) -> bool:
        return self.get_remaining() > 0

    def is_exceeded(self) -> bool:
        return not self.can_generate()

    def is_near_limit(self) -> bool:
        return self.get_percentage() >= NEAR_LIMIT_PERCENTAGE

    def record_usage(self, count: int = 1) -> "Quota":
        """Add ``count`` generations to this month's usage."""
        if count < 0:
            raise ValueError("Usage count must be non-negative")
        self.usage_this_month += count
        return self

    # --- Reset handling ---

    def reset(self, now: datetime | None = None) -> "Quota":
        """Zero the usage counter and move the reset date to next month."""
        self.usage_this_month = 0
        self.reset_date = next_reset_date(now)
        return self

    def is_due_for_reset(self, now: datetime | None = None) -> bool:
        if self.reset_date is None:
            return False
        return (now or _utcnow()) >= self.reset_date

    def get_days_until_reset(self, now: datetime | None = None) -> int:
        """Whole days until the reset date, rounded up, never negative."""
        delta = self.reset_date - (now or _utcnow())
        return max(0, math.ceil(delta.total_seconds() / 86400))

    @staticmethod
    def has_month_changed(last_check: datetime | None, now: datetime | None = None) -> bool:
        """True if ``last_check`` falls in a different calendar month than ``now``."""
        if last_check is None:
            return True
        now = now or _utcnow()
        return (last_check.year, last_check.month) != (now.year, now.month)

    # --- Tier changes ---

    def upgrade_to(self, tier: str) -> "Quota":
        _validate_tier(tier)
        self.tier = tier
        return self

    # --- Presentation ---

    def get_display_message(self) -> str:
        if self.tier == TIER_ENTERPRISE:
            return "Unlimited AI generations"

        remaining = self.get_remaining()
        limit = self.get_limit()
        if remaining == 0:
            return f"Quota exceeded ({limit} per month)"
        return f"{remaining} of {limit} generations left"

    def get_status(self) -> dict[str, Any]:
        """Snapshot of every derived value, for API responses.

        ``remaining`` is ``None`` when the tier is unlimited.
        """
        remaining = self.get_remaining()
        return {
            "tier": self.tier,
            "limit": self.get_limit(),
            "used": self.usage_this_month,
            "remaining": None if remaining == math.inf else remaining,
            "percentage": self.get_percentage(),
            "can_generate": self.can_generate(),
            "is_exceeded": self.is_exceeded(),
            "is_near_limit": self.is_near_limit(),
            "reset_date": self.reset_date,
            "message": self.get_display_message(),
        }

    # --- Serialization ---

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier,
            "usage_this_month": self.usage_this_month,
            "reset_date": self.reset_date.isoformat() if self.reset_date else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Quota":
        reset_date = data.get("reset_date")
        if isinstance(reset_date, str):
            reset_date = datetime.fromisoformat(reset_date)
        return cls(
            data.get("tier") or TIER_FREE,
            data.get("usage_this_month") or 0,
            reset_date,
        )

    @staticmethod
    def get_tier_info(tier: str) -> TierLimits:
        _validate_tier(tier)
        return QUOTA_CONFIG[tier]

    @staticmethod
    def is_tier_higher(tier: str, other: str) -> bool:
        """True if ``tier`` ranks above ``other``."""
        _validate_tier(tier)
        _validate_tier(other)
        return SUBSCRIPTION_TIERS.index(tier) > SUBSCRIPTION_TIERS.index(other)
