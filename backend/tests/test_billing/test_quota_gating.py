"""Tests for quota gating dependencies — monthly AI generation limits per tier."""

import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import create_subscription_row
from launchkit.auth.dependencies import AuthenticatedUser
from launchkit.billing.dependencies import check_generation_quota, get_quota
from launchkit.models.ai_usage import AIUsage
from launchkit.services.quota_service import record_ai_usage, start_of_month


async def _add_usage(db_session: AsyncSession, user_id: uuid.UUID, count: int, last_month: bool = False) -> None:
    """Insert usage rows directly in DB, optionally backdated to last month."""
    for _ in range(count):
        await record_ai_usage(db_session, user_id, model="test")

    if last_month:
        await db_session.execute(
            update(AIUsage)
            .where(AIUsage.user_id == user_id)
            .values(created_at=start_of_month() - timedelta(days=1))
        )
        await db_session.flush()


class TestGenerationQuota:
    """Test get_quota / check_generation_quota dependencies."""

    @pytest.mark.asyncio
    async def test_free_user_under_limit_passes(self, db_session: AsyncSession):
        user = AuthenticatedUser(id=uuid.uuid4())
        await _add_usage(db_session, user.id, 19)

        quota = await get_quota(db=db_session, user=user)
        checked = await check_generation_quota(quota=quota, user=user)

        assert checked.get_remaining() == 1

    @pytest.mark.asyncio
    async def test_free_user_blocked_at_limit(self, db_session: AsyncSession):
        user = AuthenticatedUser(id=uuid.uuid4())
        await _add_usage(db_session, user.id, 20)
        quota = await get_quota(db=db_session, user=user)

        with pytest.raises(HTTPException) as exc_info:
            await check_generation_quota(quota=quota, user=user)

        assert exc_info.value.status_code == 402
        assert exc_info.value.detail["code"] == "QUOTA_EXCEEDED"
        assert exc_info.value.detail["limit"] == 20

    @pytest.mark.asyncio
    async def test_last_months_usage_does_not_count(self, db_session: AsyncSession):
        user = AuthenticatedUser(id=uuid.uuid4())
        await _add_usage(db_session, user.id, 20, last_month=True)

        quota = await get_quota(db=db_session, user=user)

        assert quota.usage_this_month == 0
        assert quota.can_generate() is True

    @pytest.mark.asyncio
    async def test_enterprise_never_blocked(self, db_session: AsyncSession):
        row = await create_subscription_row(db_session, tier="enterprise", status="active")
        user = AuthenticatedUser(id=row.user_id)
        await _add_usage(db_session, user.id, 250)

        quota = await get_quota(db=db_session, user=user)

        assert (await check_generation_quota(quota=quota, user=user)).is_unlimited() is True
