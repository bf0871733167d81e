"""Pydantic v2 request/response schemas for billing endpoints.

Request bodies come from the browser client in camelCase; snake_case names
are accepted too.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from launchkit.schemas.quota import QuotaStatusResponse

# --- Request schemas ---


class _ClientRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateSubscriptionRequest(_ClientRequest):
    """Start a premium subscription. Defaults to the configured premium price."""

    price_id: str | None = Field(default=None, alias="priceId")


class ConfirmPaymentRequest(_ClientRequest):
    """Client-side confirmation that a PaymentIntent went through."""

    user_id: str | None = Field(default=None, alias="userId")
    payment_intent_id: str | None = Field(default=None, alias="paymentIntentId")


class CancelSubscriptionRequest(_ClientRequest):
    """Schedule cancellation of a Stripe subscription at period end."""

    subscription_id: str | None = Field(default=None, alias="subscriptionId")


class PortalRequest(_ClientRequest):
    """Request to create a Stripe Customer Portal session."""

    return_url: str | None = Field(default=None, alias="returnUrl")


# --- Response schemas ---


class SubscriptionRecord(BaseModel):
    """A row of the subscriptions table as exposed to the client."""

    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    tier: str
    status: str
    stripe_customer_id: str | None
    stripe_subscription_id: str | None
    current_period_start: datetime | None
    current_period_end: datetime | None
    cancel_at_period_end: bool
    cancelled_at: datetime | None
    updated_at: datetime | None


class SubscriptionActionResponse(BaseModel):
    """Result of confirm-payment / cancel-subscription."""

    success: bool
    message: str
    subscription: SubscriptionRecord | None


class CreateSubscriptionResponse(BaseModel):
    """Client secret for Stripe Elements plus the new Stripe IDs."""

    client_secret: str = Field(serialization_alias="clientSecret")
    subscription_id: str = Field(serialization_alias="subscriptionId")
    customer_id: str = Field(serialization_alias="customerId")


class TierResponse(BaseModel):
    """Tier details for display."""

    name: str
    display_name: str
    monthly_generations: int  # -1 = unlimited
    max_tasks_per_generation: int
    max_tokens_per_generation: int
    description: str
    price_monthly_cents: int


class PlansListResponse(BaseModel):
    """All available tiers."""

    plans: list[TierResponse]


class SubscriptionResponse(BaseModel):
    """Subscription row + effective tier + quota for the authenticated user."""

    subscription: SubscriptionRecord | None
    effective_tier: str
    quota: QuotaStatusResponse


class PortalResponse(BaseModel):
    """Stripe Customer Portal URL returned to frontend."""

    url: str
