"""Subscription service — reads and state transitions for the subscriptions table.

Every mutation is a single-row UPDATE keyed by ``user_id``. Functions flush
but never commit; the caller owns the transaction.
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from launchkit.billing.plans import (
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_PENDING,
    TIER_FREE,
    TIER_PREMIUM,
)
from launchkit.database import utcnow
from launchkit.models.subscription import Subscription

logger = logging.getLogger(__name__)


async def get_subscription_for_user(
    db: AsyncSession, user_id: uuid.UUID
) -> Subscription | None:
    result = await db.execute(
        select(Subscription).where(Subscription.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_or_create_subscription(
    db: AsyncSession, user_id: uuid.UUID
) -> Subscription:
    """Get existing subscription or create a free-tier one for the user."""
    subscription = await get_subscription_for_user(db, user_id)
    if subscription is not None:
        return subscription

    logger.info("Creating free-tier subscription for user %s", user_id)
    subscription = Subscription(
        user_id=user_id,
        tier=TIER_FREE,
        status=STATUS_ACTIVE,
    )
    db.add(subscription)
    await db.flush()
    # Load server-generated timestamps so the row serializes without lazy loads
    await db.refresh(subscription)
    return subscription


async def lock_subscription_for_update(
    db: AsyncSession, user_id: uuid.UUID
) -> Subscription:
    """SELECT ... FOR UPDATE the user's row, creating a free-tier row first if needed.

    Serializes concurrent writers for one user until the caller commits.
    SQLite has no row locks and ignores the clause.
    """
    await get_or_create_subscription(db, user_id)
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def get_user_id_by_stripe_customer(
    db: AsyncSession, stripe_customer_id: str | None
) -> uuid.UUID | None:
    """Resolve the owning user from a Stripe customer ID (used by webhooks)."""
    if not stripe_customer_id:
        return None
    result = await db.execute(
        select(Subscription.user_id)
        .where(Subscription.stripe_customer_id == stripe_customer_id)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _update_for_user(db: AsyncSession, user_id: uuid.UUID, *criteria, **values) -> int:
    """UPDATE the user's row (optionally guarded by extra criteria); return rows affected."""
    values.setdefault("updated_at", utcnow())
    result = await db.execute(
        update(Subscription)
        .where(Subscription.user_id == user_id, *criteria)
        .values(**values)
        .execution_options(synchronize_session="evaluate")
    )
    await db.flush()
    return result.rowcount


async def activate_subscription(
    db: AsyncSession,
    user_id: uuid.UUID,
    stripe_subscription_id: str | None,
    current_period_start: datetime | None,
    current_period_end: datetime | None,
) -> int:
    """Mark the user's subscription premium/active for the given billing period."""
    values = {
        "tier": TIER_PREMIUM,
        "status": STATUS_ACTIVE,
        "current_period_start": current_period_start,
        "current_period_end": current_period_end,
    }
    if stripe_subscription_id:
        values["stripe_subscription_id"] = stripe_subscription_id
    rows = await _update_for_user(db, user_id, **values)
    logger.info(
        "Activated premium subscription for user %s (period %s → %s)",
        user_id,
        current_period_start,
        current_period_end,
    )
    return rows


async def refresh_period_end(
    db: AsyncSession, user_id: uuid.UUID, current_period_end: datetime | None
) -> int:
    """Renewal path: move the period end forward, leaving tier, status and flags alone."""
    rows = await _update_for_user(db, user_id, current_period_end=current_period_end)
    logger.info("Refreshed period end for user %s to %s", user_id, current_period_end)
    return rows


async def mark_subscription_deleted(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Downgrade to free after Stripe deleted the subscription.

    This is the only code path that lowers a user's tier.
    """
    now = utcnow()
    rows = await _update_for_user(
        db,
        user_id,
        tier=TIER_FREE,
        status=STATUS_CANCELLED,
        cancelled_at=now,
        updated_at=now,
    )
    logger.info("Downgraded user %s to free tier (subscription deleted)", user_id)
    return rows


async def confirm_pending_subscription(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Flip a pending subscription to active.

    The ``status = 'pending'`` predicate is the concurrency guard against the
    webhook: if the row was already activated this affects zero rows, which
    callers treat as success.
    """
    rows = await _update_for_user(
        db,
        user_id,
        Subscription.status == STATUS_PENDING,
        status=STATUS_ACTIVE,
    )
    if rows:
        logger.info("Confirmed pending subscription for user %s", user_id)
    else:
        logger.info("No pending subscription for user %s (already active?)", user_id)
    return rows


async def flag_cancel_at_period_end(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Record a scheduled cancellation; tier and status stay until the deletion event."""
    rows = await _update_for_user(db, user_id, cancel_at_period_end=True)
    logger.info("Flagged subscription for user %s to cancel at period end", user_id)
    return rows


async def record_pending_checkout(
    db: AsyncSession,
    user_id: uuid.UUID,
    stripe_customer_id: str,
    stripe_subscription_id: str,
    current_period_start: datetime | None,
    current_period_end: datetime | None,
) -> Subscription:
    """Store the Stripe IDs for a freshly created (unpaid) subscription.

    The row becomes premium/pending until the webhook or the confirmation
    fallback activates it. A row the webhook already activated for this same
    Stripe subscription is left as is, so it never falls back to pending.
    """
    subscription = await get_subscription_for_user(db, user_id)
    if subscription is None:
        subscription = Subscription(user_id=user_id)
        db.add(subscription)
    elif (
        subscription.stripe_subscription_id == stripe_subscription_id
        and subscription.status == STATUS_ACTIVE
    ):
        logger.info("Subscription %s already active for user %s", stripe_subscription_id, user_id)
        return subscription

    subscription.stripe_customer_id = stripe_customer_id
    subscription.stripe_subscription_id = stripe_subscription_id
    subscription.tier = TIER_PREMIUM
    subscription.status = STATUS_PENDING
    subscription.current_period_start = current_period_start
    subscription.current_period_end = current_period_end
    subscription.cancel_at_period_end = False
    subscription.cancelled_at = None
    subscription.updated_at = utcnow()
    await db.flush()
    logger.info("Created pending subscription %s for user %s", stripe_subscription_id, user_id)
    return subscription


async def link_stripe_customer(
    db: AsyncSession, user_id: uuid.UUID, stripe_customer_id: str
) -> None:
    """Persist the customer ID so webhooks can resolve the user."""
    subscription = await get_or_create_subscription(db, user_id)
    subscription.stripe_customer_id = stripe_customer_id
    await db.flush()
    logger.info("Linked Stripe customer %s to user %s", stripe_customer_id, user_id)


def effective_tier(subscription: Subscription | None, now: datetime | None = None) -> str:
    """The tier used for quota gating.

    Pending rows have not been paid for yet, so they count as free. A cancelled
    row keeps premium access until its billing period runs out.
    """
    if subscription is None:
        return TIER_FREE
    if subscription.status == STATUS_PENDING:
        return TIER_FREE
    if subscription.status == STATUS_CANCELLED:
        period_end = subscription.current_period_end
        if period_end is not None and (now or utcnow()) < period_end:
            return TIER_PREMIUM
        return TIER_FREE
    return subscription.tier
