"""Tests for POST /api/v1/billing/confirm-payment — the webhook fallback."""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import stripe
from httpx import AsyncClient
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import create_subscription_row, make_event, reload_subscription
from launchkit.billing.webhooks import handle_subscription_created

CONFIRM_URL = "/api/v1/billing/confirm-payment"
GET_PI = "launchkit.api.v1.billing.get_payment_intent"


def _payment_intent(status: str = "succeeded", customer: str = "cus_confirm") -> SimpleNamespace:
    return SimpleNamespace(id="pi_test_123", status=status, customer=customer)


async def _pending_row(db_session: AsyncSession, user_id: uuid.UUID):
    return await create_subscription_row(
        db_session,
        user_id=user_id,
        tier="premium",
        status="pending",
        stripe_customer_id="cus_confirm",
        stripe_subscription_id="sub_confirm",
    )


class TestConfirmPayment:
    @pytest.mark.asyncio
    async def test_activates_pending_subscription(
        self, client: AsyncClient, db_session: AsyncSession, user_id, auth_headers
    ):
        await _pending_row(db_session, user_id)

        with patch(GET_PI, new_callable=AsyncMock, return_value=_payment_intent()):
            response = await client.post(
                CONFIRM_URL,
                json={"userId": str(user_id), "paymentIntentId": "pi_test_123"},
                headers=auth_headers,
            )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["success"] is True
        assert data["subscription"]["status"] == "active"
        assert data["subscription"]["tier"] == "premium"
        row = await reload_subscription(db_session, user_id)
        assert row.status == "active"

    @pytest.mark.asyncio
    async def test_is_idempotent(self, client: AsyncClient, db_session: AsyncSession, user_id, auth_headers):
        await _pending_row(db_session, user_id)
        body = {"paymentIntentId": "pi_test_123"}

        with patch(GET_PI, new_callable=AsyncMock, return_value=_payment_intent()):
            first = await client.post(CONFIRM_URL, json=body, headers=auth_headers)
            second = await client.post(CONFIRM_URL, json=body, headers=auth_headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["subscription"]["status"] == "active"
        row = await reload_subscription(db_session, user_id)
        assert (row.tier, row.status) == ("premium", "active")

    @pytest.mark.asyncio
    async def test_after_webhook_already_activated(
        self, client: AsyncClient, db_session: AsyncSession, user_id, auth_headers
    ):
        """Webhook wins the race: the fallback affects zero rows and still succeeds."""
        await _pending_row(db_session, user_id)
        event = make_event("customer.subscription.created", {"id": "sub_confirm", "customer": "cus_confirm"})
        await handle_subscription_created(db_session, event)

        with patch(GET_PI, new_callable=AsyncMock, return_value=_payment_intent()):
            response = await client.post(CONFIRM_URL, json={"paymentIntentId": "pi_test_123"}, headers=auth_headers)

        assert response.status_code == 200
        row = await reload_subscription(db_session, user_id)
        assert (row.tier, row.status) == ("premium", "active")

    @pytest.mark.asyncio
    async def test_webhook_after_fallback(self, client: AsyncClient, db_session: AsyncSession, user_id, auth_headers):
        """Fallback wins the race: the late webhook converges on the same state."""
        await _pending_row(db_session, user_id)

        with patch(GET_PI, new_callable=AsyncMock, return_value=_payment_intent()):
            response = await client.post(CONFIRM_URL, json={"paymentIntentId": "pi_test_123"}, headers=auth_headers)
        assert response.status_code == 200

        event = make_event("customer.subscription.created", {"id": "sub_confirm", "customer": "cus_confirm"})
        await handle_subscription_created(db_session, event)

        row = await reload_subscription(db_session, user_id)
        assert (row.tier, row.status) == ("premium", "active")

    @pytest.mark.asyncio
    async def test_payment_not_succeeded(self, client: AsyncClient, db_session: AsyncSession, user_id, auth_headers):
        await _pending_row(db_session, user_id)

        with patch(GET_PI, new_callable=AsyncMock, return_value=_payment_intent("requires_payment_method")):
            response = await client.post(CONFIRM_URL, json={"paymentIntentId": "pi_test_123"}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "PAYMENT_NOT_SUCCEEDED"
        row = await reload_subscription(db_session, user_id)
        assert row.status == "pending"

    @pytest.mark.asyncio
    async def test_verification_failure(self, client: AsyncClient, db_session: AsyncSession, user_id, auth_headers):
        await _pending_row(db_session, user_id)

        with patch(GET_PI, new_callable=AsyncMock, side_effect=stripe.APIConnectionError("network down")):
            response = await client.post(CONFIRM_URL, json={"paymentIntentId": "pi_test_123"}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "PAYMENT_VERIFICATION_FAILED"
        row = await reload_subscription(db_session, user_id)
        assert row.status == "pending"

    @pytest.mark.asyncio
    async def test_missing_payment_intent(self, client: AsyncClient, user_id, auth_headers):
        response = await client.post(CONFIRM_URL, json={"userId": str(user_id)}, headers=auth_headers)

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["code"] == "MISSING_FIELDS"
        assert detail["received"]["paymentIntentId"] is False

    @pytest.mark.asyncio
    async def test_user_mismatch(self, client: AsyncClient, db_session: AsyncSession, user_id, auth_headers):
        await _pending_row(db_session, user_id)

        with patch(GET_PI, new_callable=AsyncMock, return_value=_payment_intent()) as get_pi:
            response = await client.post(
                CONFIRM_URL,
                json={"userId": str(uuid.uuid4()), "paymentIntentId": "pi_test_123"},
                headers=auth_headers,
            )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "USER_MISMATCH"
        get_pi.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_subscription_row(self, client: AsyncClient, auth_headers):
        with patch(GET_PI, new_callable=AsyncMock, return_value=_payment_intent()) as get_pi:
            response = await client.post(CONFIRM_URL, json={"paymentIntentId": "pi_test_123"}, headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "SUBSCRIPTION_NOT_FOUND"
        get_pi.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        response = await client.post(CONFIRM_URL, json={"paymentIntentId": "pi_test_123"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_payment_intent_from_another_customer(
        self, client: AsyncClient, db_session: AsyncSession, user_id, auth_headers
    ):
        """A succeeded payment by someone else must not activate this user's row."""
        await _pending_row(db_session, user_id)

        with patch(
            GET_PI,
            new_callable=AsyncMock,
            return_value=_payment_intent(customer="cus_someone_else"),
        ):
            response = await client.post(CONFIRM_URL, json={"paymentIntentId": "pi_test_123"}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "PAYMENT_VERIFICATION_FAILED"
        row = await reload_subscription(db_session, user_id)
        assert (row.tier, row.status) == ("premium", "pending")

    @pytest.mark.asyncio
    async def test_row_without_customer_is_rejected(
        self, client: AsyncClient, db_session: AsyncSession, user_id, auth_headers
    ):
        await create_subscription_row(db_session, user_id=user_id, tier="premium", status="pending")

        with patch(GET_PI, new_callable=AsyncMock, return_value=_payment_intent()):
            response = await client.post(CONFIRM_URL, json={"paymentIntentId": "pi_test_123"}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "PAYMENT_VERIFICATION_FAILED"
        row = await reload_subscription(db_session, user_id)
        assert row.status == "pending"

    @pytest.mark.asyncio
    async def test_database_error_leaves_row_pending(
        self, client: AsyncClient, db_session: AsyncSession, user_id, auth_headers
    ):
        await _pending_row(db_session, user_id)
        await db_session.commit()

        with (
            patch(GET_PI, new_callable=AsyncMock, return_value=_payment_intent()),
            patch(
                "launchkit.api.v1.billing.confirm_pending_subscription",
                new_callable=AsyncMock,
                side_effect=SQLAlchemyError("connection lost"),
            ),
        ):
            response = await client.post(CONFIRM_URL, json={"paymentIntentId": "pi_test_123"}, headers=auth_headers)

        assert response.status_code == 500
        assert response.json()["detail"]["code"] == "DATABASE_UPDATE_ERROR"
        row = await reload_subscription(db_session, user_id)
        assert (row.tier, row.status) == ("premium", "pending")
