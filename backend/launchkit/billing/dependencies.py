"""Quota gating dependencies — enforce AI generation limits based on tier."""

import logging
import uuid

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from launchkit.auth.dependencies import AuthenticatedUser, get_current_user
from launchkit.billing.quota import Quota
from launchkit.database import get_db
from launchkit.services.quota_service import build_quota

logger = logging.getLogger(__name__)


async def get_quota(
    db: AsyncSession = Depends(get_db),
    user: AuthenticatedUser = Depends(get_current_user),
) -> Quota:
    """Rehydrate the caller's quota from their subscription and this month's usage."""
    return await build_quota(db, user.id)


def raise_if_quota_exceeded(quota: Quota, user_id: uuid.UUID) -> None:
    """Raise 402 if ``quota`` has no AI generations left this month."""
    if quota.is_exceeded():
        logger.info("User %s is out of AI generations (%s)", user_id, quota)
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": f"AI generation limit reached ({quota.usage_this_month}/{quota.get_limit()}). Upgrade your plan for more generations.",
                "code": "QUOTA_EXCEEDED",
                "limit": quota.get_limit(),
                "current": quota.usage_this_month,
                "tier": quota.tier,
                "reset_date": quota.reset_date.isoformat(),
                "upgrade_url": "/api/v1/billing/create-subscription",
            },
        )


async def check_generation_quota(
    quota: Quota = Depends(get_quota),
    user: AuthenticatedUser = Depends(get_current_user),
) -> Quota:
    """Raise 402 if the caller has no AI generations left this month."""
    raise_if_quota_exceeded(quota, user.id)
    return quota
