"""Tier definitions — subscription tiers, statuses, and AI generation quotas."""

from dataclasses import dataclass

from launchkit.config import settings

UNLIMITED = -1  # sentinel for "no monthly cap"

TIER_FREE = "free"
TIER_PREMIUM = "premium"
TIER_ENTERPRISE = "enterprise"

# Ordered lowest to highest; tier comparisons rely on this order.
SUBSCRIPTION_TIERS: tuple[str, ...] = (TIER_FREE, TIER_PREMIUM, TIER_ENTERPRISE)

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"


@dataclass(frozen=True)
class TierLimits:
    """AI generation limits for a subscription tier."""

    name: str
    display_name: str
    monthly_generations: int  # UNLIMITED (-1) = no cap
    max_tasks_per_generation: int
    max_tokens_per_generation: int
    description: str
    price_monthly_cents: int  # in cents (e.g., 1900 = $19.00)
    stripe_price_id: str | None  # None when not sold through Stripe


QUOTA_CONFIG: dict[str, TierLimits] = {
    TIER_FREE: TierLimits(
        name=TIER_FREE,
        display_name="Free",
        monthly_generations=20,
        max_tasks_per_generation=5,
        max_tokens_per_generation=1500,
        description="Free plan with limited AI generations",
        price_monthly_cents=0,
        stripe_price_id=None,
    ),
    TIER_PREMIUM: TierLimits(
        name=TIER_PREMIUM,
        display_name="Premium",
        monthly_generations=200,
        max_tasks_per_generation=50,
        max_tokens_per_generation=2000,
        description="Premium plan with high AI usage",
        price_monthly_cents=1900,
        stripe_price_id=settings.stripe_premium_price_id or None,
    ),
    TIER_ENTERPRISE: TierLimits(
        name=TIER_ENTERPRISE,
        display_name="Enterprise",
        monthly_generations=UNLIMITED,
        max_tasks_per_generation=500,
        max_tokens_per_generation=5000,
        description="Enterprise plan with unlimited usage",
        price_monthly_cents=0,  # sold by contract
        stripe_price_id=None,
    ),
}


def is_valid_tier(tier: str) -> bool:
    """True if ``tier`` is one of the configured tiers."""
    return tier in QUOTA_CONFIG


def get_tier_limits(tier: str) -> TierLimits:
    """Get tier limits by name. Defaults to free if unknown."""
    return QUOTA_CONFIG.get(tier, QUOTA_CONFIG[TIER_FREE])


def get_tier_by_price_id(price_id: str) -> str | None:
    """Reverse lookup: Stripe price ID -> tier name. Returns None if not found."""
    for limits in QUOTA_CONFIG.values():
        if limits.stripe_price_id and limits.stripe_price_id == price_id:
            return limits.name
    return None
