"""Pydantic v2 request/response schemas for quota and usage endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from launchkit.billing.quota import Quota


class QuotaStatusResponse(BaseModel):
    """Derived quota values for the current month."""

    tier: str
    limit: int  # -1 = unlimited
    used: int
    remaining: int | None  # None = unlimited
    percentage: int
    can_generate: bool
    is_exceeded: bool
    is_near_limit: bool
    reset_date: datetime
    days_until_reset: int
    message: str

    @classmethod
    def from_quota(cls, quota: Quota) -> "QuotaStatusResponse":
        return cls(**quota.get_status(), days_until_reset=quota.get_days_until_reset())


class RecordUsageRequest(BaseModel):
    """One AI generation to count against the quota."""

    model_config = ConfigDict(populate_by_name=True)

    model: str = Field(min_length=1, max_length=255)
    task_id: str | None = Field(default=None, alias="taskId", max_length=255)
    tokens_input: int = Field(default=0, ge=0, alias="tokensInput")
    tokens_output: int = Field(default=0, ge=0, alias="tokensOutput")
    cost: float = Field(default=0, ge=0)


class UsageRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    task_id: str | None
    model: str
    tokens_input: int
    tokens_output: int
    cost: float
    created_at: datetime


class RecordUsageResponse(BaseModel):
    """The stored usage row and the quota after counting it."""

    usage: UsageRecordResponse
    quota: QuotaStatusResponse


class UsageHistoryResponse(BaseModel):
    records: list[UsageRecordResponse]
    total: int
    limit: int
    offset: int


class ModelUsageStats(BaseModel):
    count: int
    tokens: int
    cost: float


class UsageStatsResponse(BaseModel):
    """Lifetime usage totals with a per-model breakdown."""

    total_generations: int
    total_tokens: int
    total_cost: float
    by_model: dict[str, ModelUsageStats]
