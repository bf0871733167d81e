"""Stripe webhook event handlers — reconcile subscription lifecycle events.

Each handler resolves the user from the Stripe customer ID, computes every
derived value first, and then issues a single-row update. A customer with no
matching subscription row is logged and acknowledged so Stripe does not keep
redelivering an event nobody can apply.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from launchkit.services.subscription_service import (
    activate_subscription,
    get_user_id_by_stripe_customer,
    mark_subscription_deleted,
    refresh_period_end,
)

logger = logging.getLogger(__name__)


class StripeEventType(str, Enum):
    """Every Stripe event type this service reconciles."""

    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

    @classmethod
    def parse(cls, event_type: str) -> "StripeEventType | None":
        """Map a raw event type string to a member, or None if not handled."""
        try:
            return cls(event_type)
        except ValueError:
            return None


def _ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp (seconds) to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def _get_first_item(stripe_sub: stripe.Subscription):
    """Get the first subscription item, using bracket notation to avoid
    collision with Python dict .items() in newer Stripe API versions.
    """
    try:
        sub_items = stripe_sub["items"]
    except (KeyError, AttributeError):
        return None
    if sub_items and sub_items.data:
        return sub_items.data[0]
    return None


def _get_period_ts(stripe_sub: stripe.Subscription, field: str) -> int | None:
    """Read a period boundary from the first item, falling back to the subscription.

    In Stripe API 2025-08-27 (basil), current_period_start/end moved
    from the subscription object to the subscription item.
    """
    item = _get_first_item(stripe_sub)
    value = getattr(item, field, None) if item is not None else None
    if value is None:
        value = getattr(stripe_sub, field, None)
    return value


def get_subscription_period(stripe_sub: stripe.Subscription) -> tuple[datetime | None, datetime | None]:
    return (
        _ts_to_naive(_get_period_ts(stripe_sub, "current_period_start")),
        _ts_to_naive(_get_period_ts(stripe_sub, "current_period_end")),
    )


async def handle_subscription_created(db: AsyncSession, event: stripe.Event) -> None:
    """Handle customer.subscription.created — grant premium for the new period."""
    stripe_sub = event.data.object
    customer_id = stripe_sub.customer
    period_start, period_end = get_subscription_period(stripe_sub)

    user_id = await get_user_id_by_stripe_customer(db, customer_id)
    if user_id is None:
        logger.warning(
            "No local subscription found for Stripe customer %s (subscription %s created)",
            customer_id,
            stripe_sub.id,
        )
        return

    await activate_subscription(
        db,
        user_id=user_id,
        stripe_subscription_id=stripe_sub.id,
        current_period_start=period_start,
        current_period_end=period_end,
    )
    logger.info("Subscription created: %s activated for user %s", stripe_sub.id, user_id)


async def handle_subscription_updated(db: AsyncSession, event: stripe.Event) -> None:
    """Handle customer.subscription.updated — renewal moves the period end only.

    Tier, status and a pending cancellation flag are left untouched.
    """
    stripe_sub = event.data.object
    customer_id = stripe_sub.customer
    _, period_end = get_subscription_period(stripe_sub)

    user_id = await get_user_id_by_stripe_customer(db, customer_id)
    if user_id is None:
        logger.warning(
            "No local subscription found for Stripe customer %s (subscription %s updated)",
            customer_id,
            stripe_sub.id,
        )
        return

    await refresh_period_end(db, user_id=user_id, current_period_end=period_end)
    logger.info("Subscription updated: %s period end → %s", stripe_sub.id, period_end)


async def handle_subscription_deleted(db: AsyncSession, event: stripe.Event) -> None:
    """Handle customer.subscription.deleted — downgrade to free tier."""
    stripe_sub = event.data.object
    customer_id = stripe_sub.customer

    user_id = await get_user_id_by_stripe_customer(db, customer_id)
    if user_id is None:
        logger.warning(
            "No local subscription found for Stripe customer %s (subscription %s deleted)",
            customer_id,
            stripe_sub.id,
        )
        return

    await mark_subscription_deleted(db, user_id=user_id)
    logger.info("Subscription deleted: %s, user %s downgraded to free tier", stripe_sub.id, user_id)


async def handle_invoice_payment_succeeded(db: AsyncSession, event: stripe.Event) -> None:
    """Handle invoice.payment_succeeded — logged only."""
    invoice = event.data.object
    user_id = await get_user_id_by_stripe_customer(db, invoice.customer)
    if user_id is None:
        logger.warning(
            "No local subscription found for Stripe customer %s (invoice %s paid)",
            invoice.customer,
            invoice.id,
        )
        return
    logger.info("Payment succeeded for user %s: invoice %s", user_id, invoice.id)


async def handle_invoice_payment_failed(db: AsyncSession, event: stripe.Event) -> None:
    """Handle invoice.payment_failed — logged only.

    Stripe's own smart retries run first; the deletion event arrives if they
    all fail.
    """
    invoice = event.data.object
    user_id = await get_user_id_by_stripe_customer(db, invoice.customer)
    if user_id is None:
        logger.warning(
            "No local subscription found for Stripe customer %s (invoice %s failed)",
            invoice.customer,
            invoice.id,
        )
        return
    logger.warning("Payment failed for user %s: invoice %s", user_id, invoice.id)


EventHandler = Callable[[AsyncSession, stripe.Event], Awaitable[None]]

EVENT_HANDLERS: dict[StripeEventType, EventHandler] = {
    StripeEventType.SUBSCRIPTION_CREATED: handle_subscription_created,
    StripeEventType.SUBSCRIPTION_UPDATED: handle_subscription_updated,
    StripeEventType.SUBSCRIPTION_DELETED: handle_subscription_deleted,
    StripeEventType.INVOICE_PAYMENT_SUCCEEDED: handle_invoice_payment_succeeded,
    StripeEventType.INVOICE_PAYMENT_FAILED: handle_invoice_payment_failed,
}


async def dispatch_event(db: AsyncSession, event: stripe.Event) -> bool:
    """Run the handler for ``event``. Returns False if the type is not handled."""
    event_type = StripeEventType.parse(event.type)
    if event_type is None:
        logger.info("Ignoring unhandled webhook event type: %s (id=%s)", event.type, event.id)
        return False

    logger.info("Processing webhook event: %s (id=%s)", event_type.value, event.id)
    await EVENT_HANDLERS[event_type](db, event)
    return True
