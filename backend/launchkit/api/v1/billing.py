"""Billing API endpoints — subscription checkout, payment confirmation, cancellation, and portal.

Failures carry a stable ``code`` in ``detail`` so the client can branch on it::

    {"detail": {"error": "Subscription not found", "code": "SUBSCRIPTION_NOT_FOUND"}}
"""

import logging
import uuid

import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from launchkit.api.deps import AuthenticatedUser, get_current_user, get_db
from launchkit.billing.plans import (
    QUOTA_CONFIG,
    STATUS_ACTIVE,
    TIER_FREE,
    get_tier_by_price_id,
)
from launchkit.billing.stripe_client import (
    create_customer,
    create_incomplete_subscription,
    create_portal_session,
    get_customer,
    get_payment_intent,
    is_resource_missing,
    schedule_cancellation,
)
from launchkit.billing.webhooks import get_subscription_period
from launchkit.config import settings
from launchkit.schemas.billing import (
    CancelSubscriptionRequest,
    ConfirmPaymentRequest,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    PlansListResponse,
    PortalRequest,
    PortalResponse,
    SubscriptionActionResponse,
    SubscriptionRecord,
    SubscriptionResponse,
    TierResponse,
)
from launchkit.schemas.quota import QuotaStatusResponse
from launchkit.services.quota_service import build_quota
from launchkit.services.subscription_service import (
    confirm_pending_subscription,
    effective_tier,
    flag_cancel_at_period_end,
    get_subscription_for_user,
    link_stripe_customer,
    record_pending_checkout,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _billing_error(status_code: int, error: str, code: str, **extra) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "code": code, **extra},
    )


def _database_error() -> HTTPException:
    return _billing_error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Failed to update subscription",
        "DATABASE_UPDATE_ERROR",
    )


def _subscription_not_found() -> HTTPException:
    return _billing_error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Subscription not found",
        "SUBSCRIPTION_NOT_FOUND",
    )


def _get_client_secret(stripe_sub: stripe.Subscription) -> str | None:
    """Pull the first invoice's client secret out of an expanded subscription."""
    invoice = getattr(stripe_sub, "latest_invoice", None)
    confirmation_secret = getattr(invoice, "confirmation_secret", None) if invoice else None
    if confirmation_secret is None:
        return None
    return getattr(confirmation_secret, "client_secret", None)


@router.get("/plans", response_model=PlansListResponse)
async def list_plans() -> PlansListResponse:
    """List available tiers (public — no auth required)."""
    return PlansListResponse(
        plans=[
            TierResponse(
                name=t.name,
                display_name=t.display_name,
                monthly_generations=t.monthly_generations,
                max_tasks_per_generation=t.max_tasks_per_generation,
                max_tokens_per_generation=t.max_tokens_per_generation,
                description=t.description,
                price_monthly_cents=t.price_monthly_cents,
            )
            for t in QUOTA_CONFIG.values()
        ]
    )


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SubscriptionResponse:
    """Get the caller's subscription row, effective tier and quota."""
    subscription = await get_subscription_for_user(db, current_user.id)
    quota = await build_quota(db, current_user.id)
    return SubscriptionResponse(
        subscription=SubscriptionRecord.model_validate(subscription) if subscription else None,
        effective_tier=effective_tier(subscription),
        quota=QuotaStatusResponse.from_quota(quota),
    )


@router.post("/create-subscription", response_model=CreateSubscriptionResponse)
async def create_subscription(
    body: CreateSubscriptionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> CreateSubscriptionResponse:
    """Create an incomplete Stripe subscription and a pending local row.

    Returns the client secret the browser uses to confirm the first payment.
    The row becomes active via the webhook or ``/confirm-payment``.
    """
    price_id = body.price_id or settings.stripe_premium_price_id
    if not price_id:
        raise _billing_error(
            status.HTTP_400_BAD_REQUEST,
            "Stripe price ID not configured",
            "PRICE_NOT_CONFIGURED",
        )
    if get_tier_by_price_id(price_id) is None:
        raise _billing_error(
            status.HTTP_400_BAD_REQUEST,
            "Unknown price ID",
            "INVALID_PRICE_ID",
        )

    existing = await get_subscription_for_user(db, current_user.id)
    if existing is not None and existing.tier != TIER_FREE and existing.status == STATUS_ACTIVE:
        raise _billing_error(
            status.HTTP_409_CONFLICT,
            "User already has an active subscription",
            "ALREADY_SUBSCRIBED",
        )

    # 1. Reuse the stored Stripe customer if it still exists, else create one
    customer = None
    if existing is not None and existing.stripe_customer_id:
        try:
            customer = await get_customer(existing.stripe_customer_id)
            if getattr(customer, "deleted", False):
                customer = None
        except stripe.StripeError as e:
            logger.warning(
                "Could not retrieve Stripe customer %s, creating a new one: %s",
                existing.stripe_customer_id,
                e,
            )
            customer = None

    if customer is None:
        try:
            customer = await create_customer(str(current_user.id), current_user.email)
        except stripe.StripeError as e:
            logger.error("Stripe customer creation failed for user %s: %s", current_user.id, e)
            raise _billing_error(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Failed to create or retrieve Stripe customer",
                "CUSTOMER_CREATE_ERROR",
                details=str(e),
            ) from e

    # Commit the customer link first so the subscription.created webhook can resolve the user
    try:
        await link_stripe_customer(db, current_user.id, customer.id)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Failed to link Stripe customer %s to user %s", customer.id, current_user.id)
        raise _database_error() from e

    # 2. Create the subscription in Stripe, unpaid until the client confirms
    try:
        stripe_sub = await create_incomplete_subscription(customer.id, price_id)
    except stripe.StripeError as e:
        logger.error("Stripe subscription creation failed for customer %s: %s", customer.id, e)
        if is_resource_missing(e):
            raise _billing_error(
                status.HTTP_400_BAD_REQUEST,
                "Failed to create subscription",
                "PRICE_NOT_FOUND",
                details="The specified price ID does not exist in your Stripe account",
            ) from e
        raise _billing_error(
            status.HTTP_400_BAD_REQUEST,
            "Failed to create subscription",
            "SUBSCRIPTION_CREATE_ERROR",
            details=str(e),
        ) from e

    client_secret = _get_client_secret(stripe_sub)
    if not client_secret:
        logger.error("Subscription %s has no invoice client secret", stripe_sub.id)
        raise _billing_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Unable to obtain client secret from subscription invoice",
            "PAYMENT_INTENT_MISSING",
        )

    # 3. Record the pending row
    period_start, period_end = get_subscription_period(stripe_sub)
    try:
        await record_pending_checkout(
            db,
            user_id=current_user.id,
            stripe_customer_id=customer.id,
            stripe_subscription_id=stripe_sub.id,
            current_period_start=period_start,
            current_period_end=period_end,
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Failed to store pending subscription %s", stripe_sub.id)
        raise _database_error() from e

    return CreateSubscriptionResponse(
        client_secret=client_secret,
        subscription_id=stripe_sub.id,
        customer_id=customer.id,
    )


@router.post("/confirm-payment", response_model=SubscriptionActionResponse)
async def confirm_payment(
    body: ConfirmPaymentRequest,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SubscriptionActionResponse:
    """Activate a pending subscription after verifying the payment with Stripe.

    Fallback for when the webhook cannot reach this deployment. Safe to call
    repeatedly and safe to race with the webhook.
    """
    if body.user_id is not None:
        try:
            claimed_user_id = uuid.UUID(body.user_id)
        except ValueError:
            claimed_user_id = None
        if claimed_user_id != current_user.id:
            raise _billing_error(
                status.HTTP_403_FORBIDDEN,
                "userId does not match the authenticated user",
                "USER_MISMATCH",
            )

    if not body.payment_intent_id:
        raise _billing_error(
            status.HTTP_400_BAD_REQUEST,
            "Missing paymentIntentId",
            "MISSING_FIELDS",
            received={"userId": True, "paymentIntentId": False},
        )

    # 1. The row must exist before Stripe is asked anything
    try:
        subscription = await get_subscription_for_user(db, current_user.id)
    except SQLAlchemyError as e:
        logger.exception("Failed to load subscription for user %s", current_user.id)
        raise _database_error() from e

    if subscription is None:
        logger.error("No subscription row for user %s at payment confirmation", current_user.id)
        raise _subscription_not_found()

    # 2. Verify with Stripe: the intent must be this customer's and must have succeeded
    try:
        payment_intent = await get_payment_intent(body.payment_intent_id)
    except stripe.StripeError as e:
        logger.warning("Failed to retrieve PaymentIntent %s: %s", body.payment_intent_id, e)
        raise _billing_error(
            status.HTTP_400_BAD_REQUEST,
            "Failed to verify payment with Stripe",
            "PAYMENT_VERIFICATION_FAILED",
        ) from e

    if (
        not subscription.stripe_customer_id
        or payment_intent.customer != subscription.stripe_customer_id
    ):
        logger.warning(
            "PaymentIntent %s belongs to customer %s, not %s (user %s)",
            body.payment_intent_id,
            payment_intent.customer,
            subscription.stripe_customer_id,
            current_user.id,
        )
        raise _billing_error(
            status.HTTP_400_BAD_REQUEST,
            "Failed to verify payment with Stripe",
            "PAYMENT_VERIFICATION_FAILED",
            details="PaymentIntent does not belong to this customer",
        )

    if payment_intent.status != "succeeded":
        logger.warning(
            "PaymentIntent %s status is %s, not succeeded",
            body.payment_intent_id,
            payment_intent.status,
        )
        raise _billing_error(
            status.HTTP_400_BAD_REQUEST,
            "Payment did not succeed",
            "PAYMENT_NOT_SUCCEEDED",
            details=f"PaymentIntent status: {payment_intent.status}",
        )

    # 3. pending -> active; zero rows means the webhook already did it
    try:
        activated = await confirm_pending_subscription(db, current_user.id)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Failed to activate subscription for user %s", current_user.id)
        raise _database_error() from e

    return SubscriptionActionResponse(
        success=True,
        message="Subscription activated" if activated else "Subscription already up to date",
        subscription=SubscriptionRecord.model_validate(subscription),
    )


@router.post("/cancel-subscription", response_model=SubscriptionActionResponse)
async def cancel_subscription(
    body: CancelSubscriptionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SubscriptionActionResponse:
    """Schedule cancellation at the end of the current billing period.

    Only ``cancel_at_period_end`` changes locally; the downgrade to free happens
    when Stripe sends ``customer.subscription.deleted``.
    """
    if not body.subscription_id:
        raise _billing_error(
            status.HTTP_400_BAD_REQUEST,
            "Missing subscriptionId",
            "MISSING_FIELDS",
            received={"subscriptionId": False},
        )

    try:
        subscription = await get_subscription_for_user(db, current_user.id)
    except SQLAlchemyError as e:
        logger.exception("Failed to load subscription for user %s", current_user.id)
        raise _database_error() from e

    if subscription is None:
        raise _subscription_not_found()

    # A row with no Stripe subscription owns nothing cancellable
    if subscription.stripe_subscription_id != body.subscription_id:
        logger.warning(
            "User %s tried to cancel subscription %s but owns %s",
            current_user.id,
            body.subscription_id,
            subscription.stripe_subscription_id,
        )
        raise _billing_error(
            status.HTTP_403_FORBIDDEN,
            "Subscription does not belong to the authenticated user",
            "SUBSCRIPTION_MISMATCH",
        )

    # 1. Stripe first; anything but "already gone" aborts before the DB is touched
    try:
        await schedule_cancellation(body.subscription_id)
    except stripe.StripeError as e:
        if is_resource_missing(e):
            logger.warning(
                "Subscription %s not found in Stripe, flagging locally only",
                body.subscription_id,
            )
        else:
            logger.error("Failed to cancel subscription %s on Stripe: %s", body.subscription_id, e)
            raise _billing_error(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "Failed to cancel subscription on Stripe",
                "STRIPE_CANCEL_FAILED",
                details=str(e),
            ) from e

    # 2. Mirror the flag; tier and status stay until the deletion webhook
    try:
        await flag_cancel_at_period_end(db, current_user.id)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Failed to flag cancellation for user %s", current_user.id)
        raise _database_error() from e

    return SubscriptionActionResponse(
        success=True,
        message="Subscription will be cancelled at the end of the current billing period",
        subscription=SubscriptionRecord.model_validate(subscription),
    )


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    body: PortalRequest,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> PortalResponse:
    """Create a Stripe Customer Portal session for subscription management."""
    subscription = await get_subscription_for_user(db, current_user.id)

    if subscription is None or not subscription.stripe_customer_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No Stripe customer found. Subscribe first.",
        )

    return_url = body.return_url or f"{settings.frontend_url}/app/subscription"

    try:
        session = await create_portal_session(
            customer_id=subscription.stripe_customer_id,
            return_url=return_url,
        )
    except stripe.StripeError as e:
        logger.error("Stripe portal error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(e),
        ) from e

    return PortalResponse(url=session.url)
