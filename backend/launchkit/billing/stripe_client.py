"""Async Stripe API wrapper for LaunchKit billing."""

import logging

import stripe
from stripe import StripeClient

from launchkit.config import settings

logger = logging.getLogger(__name__)

RESOURCE_MISSING = "resource_missing"


class WebhookSecretMissingError(ValueError):
    """Raised when a webhook arrives but STRIPE_WEBHOOK_SECRET is not configured."""


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


def is_resource_missing(error: stripe.StripeError) -> bool:
    """True if Stripe reported that the referenced object does not exist."""
    return isinstance(error, stripe.InvalidRequestError) and error.code == RESOURCE_MISSING


async def create_customer(user_id: str, email: str | None = None) -> stripe.Customer:
    """Create a Stripe customer linked to a LaunchKit user."""
    client = get_stripe_client()
    params: dict = {"metadata": {"launchkit_user_id": user_id}}
    if email:
        params["email"] = email
    logger.info("Creating Stripe customer for user %s", user_id)
    customer = await client.v1.customers.create_async(params=params)
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer


async def get_customer(customer_id: str) -> stripe.Customer:
    """Retrieve a Stripe customer by ID."""
    client = get_stripe_client()
    return await client.v1.customers.retrieve_async(customer_id)


async def create_incomplete_subscription(
    customer_id: str, price_id: str
) -> stripe.Subscription:
    """Create a subscription that waits for the client to confirm the first payment.

    The latest invoice's confirmation secret is expanded so the caller can hand
    the client secret to Stripe Elements.
    """
    client = get_stripe_client()
    logger.info(
        "Creating incomplete subscription for customer %s, price %s",
        customer_id,
        price_id,
    )
    return await client.v1.subscriptions.create_async(
        params={
            "customer": customer_id,
            "items": [{"price": price_id}],
            "payment_behavior": "default_incomplete",
            "payment_settings": {"save_default_payment_method": "on_subscription"},
            "expand": ["latest_invoice.confirmation_secret"],
        }
    )


async def get_subscription(subscription_id: str) -> stripe.Subscription:
    """Retrieve a Stripe subscription by ID."""
    client = get_stripe_client()
    return await client.v1.subscriptions.retrieve_async(subscription_id)


async def schedule_cancellation(subscription_id: str) -> stripe.Subscription:
    """Ask Stripe to cancel the subscription when the current period ends."""
    client = get_stripe_client()
    logger.info("Scheduling end-of-period cancellation for subscription %s", subscription_id)
    return await client.v1.subscriptions.update_async(
        subscription_id,
        params={"cancel_at_period_end": True},
    )


async def get_payment_intent(payment_intent_id: str) -> stripe.PaymentIntent:
    """Retrieve a Stripe PaymentIntent by ID."""
    client = get_stripe_client()
    return await client.v1.payment_intents.retrieve_async(payment_intent_id)


async def create_portal_session(
    customer_id: str, return_url: str
) -> stripe.billing_portal.Session:
    """Create a Stripe Customer Portal session for subscription management."""
    client = get_stripe_client()
    logger.info("Creating portal session for customer %s", customer_id)
    return await client.v1.billing_portal.sessions.create_async(
        params={
            "customer": customer_id,
            "return_url": return_url,
        }
    )


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous).

    Raises:
        WebhookSecretMissingError: If no webhook secret is configured.
        stripe.SignatureVerificationError: If the signature does not match.
        ValueError: If the payload is not valid JSON.
    """
    if not settings.stripe_webhook_secret:
        raise WebhookSecretMissingError("STRIPE_WEBHOOK_SECRET is not configured")
    client = get_stripe_client()
    return client.construct_event(payload, sig_header, settings.stripe_webhook_secret)
