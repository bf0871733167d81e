"""Quota API endpoints — monthly AI generation status and usage ledger."""

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from launchkit.api.deps import (
    AuthenticatedUser,
    check_generation_quota,
    get_current_user,
    get_db,
    get_quota,
)
from launchkit.billing.dependencies import raise_if_quota_exceeded
from launchkit.billing.quota import Quota
from launchkit.schemas.quota import (
    QuotaStatusResponse,
    RecordUsageRequest,
    RecordUsageResponse,
    UsageHistoryResponse,
    UsageRecordResponse,
    UsageStatsResponse,
)
from launchkit.services.quota_service import (
    build_quota,
    get_usage_history,
    get_usage_stats,
    record_ai_usage,
)
from launchkit.services.subscription_service import lock_subscription_for_update

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/quota", tags=["quota"])


@router.get("", response_model=QuotaStatusResponse)
async def get_quota_status(quota: Quota = Depends(get_quota)) -> QuotaStatusResponse:
    """Current month's quota for the authenticated user."""
    return QuotaStatusResponse.from_quota(quota)


@router.post(
    "/usage",
    response_model=RecordUsageResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_generation_quota)],
)
async def record_usage(
    body: RecordUsageRequest,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> RecordUsageResponse:
    """Count one AI generation against the quota. 402 once the limit is reached.

    The gate dependency rejects exhausted callers cheaply; the count is taken
    again under the user's row lock so concurrent requests cannot overshoot.
    """
    await lock_subscription_for_update(db, current_user.id)
    quota = await build_quota(db, current_user.id)
    raise_if_quota_exceeded(quota, current_user.id)

    usage = await record_ai_usage(
        db,
        user_id=current_user.id,
        model=body.model,
        task_id=body.task_id,
        tokens_input=body.tokens_input,
        tokens_output=body.tokens_output,
        cost=body.cost,
    )
    await db.commit()
    quota.record_usage()

    return RecordUsageResponse(
        usage=UsageRecordResponse.model_validate(usage),
        quota=QuotaStatusResponse.from_quota(quota),
    )


@router.get("/usage", response_model=UsageHistoryResponse)
async def list_usage(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> UsageHistoryResponse:
    """Paginated usage history, newest first."""
    records, total = await get_usage_history(db, current_user.id, limit=limit, offset=offset)
    return UsageHistoryResponse(
        records=[UsageRecordResponse.model_validate(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/usage/stats", response_model=UsageStatsResponse)
async def usage_stats(
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> UsageStatsResponse:
    """Lifetime usage totals with a per-model breakdown."""
    stats = await get_usage_stats(db, current_user.id)
    return UsageStatsResponse(**stats)
