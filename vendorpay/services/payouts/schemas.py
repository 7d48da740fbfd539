"""API request/response schemas for the payout admin endpoints."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class ManualPayoutRequest(BaseModel):
    """Manual trigger; without `amount` the whole pending balance is requested."""

    amount: int | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    description: str = "Manual payout"
    force: bool = False


class ScheduleUpdateRequest(BaseModel):
    interval: Literal["daily", "weekly", "biweekly", "monthly"] | None = None
    minimum_amount: int | None = Field(default=None, gt=0)
    enabled: bool | None = None


class BatchPayoutItem(BaseModel):
    vendor_account_id: str = Field(min_length=1)
    amount: int = Field(gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    description: str = "Batch payout"


class BatchPayoutRequest(BaseModel):
    payouts: list[BatchPayoutItem] = Field(min_length=1)


class ReconcileRequest(BaseModel):
    action: Literal["resume", "abandon"]
    note: str | None = None


class HoldRequest(BaseModel):
    reason: str = Field(min_length=1)
    hold_type: Literal["manual", "automatic", "dispute", "compliance", "risk"] = "manual"
    description: str | None = None
    placed_by: str | None = None
    duration_days: int | None = Field(default=None, gt=0)


class LiftHoldRequest(BaseModel):
    reason: str | None = None
    lifted_by: str | None = None


class ExtendHoldRequest(BaseModel):
    additional_days: int = Field(gt=0)
    reason: str | None = None


class HoldResponse(BaseModel):
    id: str
    vendor_account_id: str
    hold_type: str
    reason: str
    description: str | None = None
    status: str
    placed_by: str | None = None
    placed_at: datetime | None = None
    release_date: datetime | None = None
    lifted_at: datetime | None = None
    lift_reason: str | None = None
    lifted_by: str | None = None


class PayoutOutcomeResponse(BaseModel):
    """Result of one processor run."""

    success: bool
    vendor_account_id: str
    payout_id: str | None = None
    status: str | None = None
    amount: int = 0
    fee_amount: int = 0
    currency: str | None = None
    booking_count: int = 0
    external_payout_ref: str | None = None
    arrival_date: datetime | None = None
    error: dict[str, Any] | None = None
    should_retry: bool = False


class PayoutResponse(BaseModel):
    id: str
    vendor_account_id: str
    amount: int
    fee_amount: int
    currency: str
    status: str
    booking_count: int
    description: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    external_transfer_ref: str | None = None
    external_payout_ref: str | None = None
    arrival_date: datetime | None = None
    failure_reason: str | None = None
    created_at: datetime | None = None


class PayoutStatisticsResponse(BaseModel):
    vendor_account_id: str
    total_payouts: int
    total_amount: int
    total_fees: int
    pending_amount: int
    status_breakdown: dict[str, int]
    average_payout_amount: int


class BatchPayoutResponse(BaseModel):
    total_processed: int
    successful: int
    failed: int
    total_amount: int
    results: list[PayoutOutcomeResponse]


class ErrorResponse(BaseModel):
    """Body returned for every `PayoutError`."""

    kind: str
    message: str
    retryable: bool
    details: dict[str, Any] = Field(default_factory=dict)
