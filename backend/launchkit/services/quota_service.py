"""Quota service — AI usage ledger queries and Quota rehydration."""

import logging
import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from launchkit.billing.quota import Quota, next_reset_date
from launchkit.database import utcnow
from launchkit.models.ai_usage import AIUsage
from launchkit.services.subscription_service import effective_tier, get_subscription_for_user

logger = logging.getLogger(__name__)


def start_of_month(now: datetime | None = None) -> datetime:
    """First instant of the current calendar month (naive UTC)."""
    now = now or utcnow()
    return datetime(now.year, now.month, 1)


async def get_monthly_usage_count(
    db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None
) -> int:
    """Count AI generations recorded for the user since the start of this month."""
    result = await db.execute(
        select(func.count())
        .select_from(AIUsage)
        .where(
            AIUsage.user_id == user_id,
            AIUsage.created_at >= start_of_month(now),
        )
    )
    return result.scalar_one()


async def build_quota(
    db: AsyncSession, user_id: uuid.UUID, now: datetime | None = None
) -> Quota:
    """Rehydrate the user's Quota from their subscription and this month's usage."""
    subscription = await get_subscription_for_user(db, user_id)
    tier = effective_tier(subscription, now)
    usage = await get_monthly_usage_count(db, user_id, now)
    return Quota(tier, usage, next_reset_date(now))


async def record_ai_usage(
    db: AsyncSession,
    user_id: uuid.UUID,
    model: str,
    task_id: str | None = None,
    tokens_input: int = 0,
    tokens_output: int = 0,
    cost: float = 0,
) -> AIUsage:
    """Append one generation to the usage ledger."""
    usage = AIUsage(
        user_id=user_id,
        task_id=task_id,
        model=model,
        tokens_input=tokens_input,
        tokens_output=tokens_output,
        cost=cost,
        created_at=utcnow(),
    )
    db.add(usage)
    await db.flush()
    logger.info("Recorded AI usage for user %s (task=%s, model=%s)", user_id, task_id, model)
    return usage


async def get_usage_history(
    db: AsyncSession, user_id: uuid.UUID, limit: int = 50, offset: int = 0
) -> tuple[list[AIUsage], int]:
    """Return one page of usage rows (newest first) and the total row count."""
    total_result = await db.execute(
        select(func.count()).select_from(AIUsage).where(AIUsage.user_id == user_id)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(AIUsage)
        .where(AIUsage.user_id == user_id)
        .order_by(AIUsage.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total


async def get_usage_stats(db: AsyncSession, user_id: uuid.UUID) -> dict:
    """Lifetime totals plus a per-model breakdown of generations, tokens and cost."""
    result = await db.execute(
        select(
            AIUsage.model,
            func.count(),
            func.coalesce(func.sum(AIUsage.tokens_input + AIUsage.tokens_output), 0),
            func.coalesce(func.sum(AIUsage.cost), 0),
        )
        .where(AIUsage.user_id == user_id)
        .group_by(AIUsage.model)
    )

    by_model: dict[str, dict] = {}
    total_generations = 0
    total_tokens = 0
    total_cost = 0.0
    for model, count, tokens, cost in result.all():
        by_model[model] = {"count": count, "tokens": int(tokens), "cost": float(cost)}
        total_generations += count
        total_tokens += int(tokens)
        total_cost += float(cost)

    return {
        "total_generations": total_generations,
        "total_tokens": total_tokens,
        "total_cost": round(total_cost, 6),
        "by_model": by_model,
    }
