"""
Pydantic models for the payout engine API.

Models:
  - TierRate / SkuConfig: resolved catalog entries (a point-in-time version)
  - BonusLine: one applied bonus {code, amount}
  - PayoutBreakdown: per project x editor earnings, read verbatim by the
    earnings view — field names are a stable contract
  - PayoutPreview / ProjectedEarnings: invitation range and live projection
  - UnlockResult: outcome of a project unlock
  - ProjectStatusResponse: status change, with the unlock result or the
    reason it is still pending (UnlockPending)
  - PayoutMethod, PayoutRequestCreate, PayoutRequestOut, review actions
  - Wallet, PendingPayoutStats, EarningsReportRow, ReportResponse

All API fields serialize in camelCase (basePayout, finalPayout, ...).
Decimals serialize as strings so amounts never pass through floats.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from models.db_models import (
    BreakdownStatus, PayoutRequestStatus, ProjectStatus, Tier,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ---------------------------------------------------------------------------
# Catalog entries — the version in effect when a computation ran
# ---------------------------------------------------------------------------
class TierRate(ApiModel):
    version_id: Optional[int] = None  # None for a personal override
    tier: Optional[Tier] = None
    rate_per_minute: Decimal
    rush_eligible: bool = False
    active: bool = True
    effective_from: datetime


class SkuConfig(ApiModel):
    version_id: int
    sku_code: str
    name: Optional[str] = None
    billable_minutes_base: Decimal
    difficulty_factor_default: Decimal
    editor_budget_pct: Decimal = Field(ge=0, le=1)
    incentive_pool_pct: Decimal = Field(ge=0, le=1)
    active: bool = True
    effective_from: datetime


# ---------------------------------------------------------------------------
# Breakdown
#
# billable_minutes × tier_rate = base_payout
# base_payout × reliability_factor × quality_factor = after_factors
# min(after_factors, editor_budget_cap) = capped_payout
# capped_payout + bonus_amount = final_payout
# ---------------------------------------------------------------------------
class BonusLine(ApiModel):
    code: str
    amount: Decimal


class PayoutBreakdown(ApiModel):
    project_id: str
    editor_id: str
    billable_minutes: Decimal
    tier_rate: Decimal
    base_payout: Decimal
    reliability_factor: Decimal
    late_minutes: Decimal
    quality_factor: Decimal
    qc_average: Decimal
    after_factors: Decimal
    editor_budget_cap: Decimal
    capped_payout: Decimal
    bonuses_applied: list[BonusLine] = []
    bonus_amount: Decimal
    final_payout: Decimal
    status: BreakdownStatus = BreakdownStatus.PENDING
    unlocked_at: Optional[datetime] = None


class ProjectedEarnings(PayoutBreakdown):
    milestones_scored: int = 0
    total_milestones: int = 0


class PayoutPreview(ApiModel):
    project_id: str
    editor_id: str
    billable_minutes: Decimal
    tier_rate: Decimal
    base: Decimal
    min_payout: Decimal
    max_payout: Decimal
    editor_cap: Decimal
    eligible_bonuses: list[BonusLine] = []


class UnlockResult(ApiModel):
    project_id: str
    unlocked_count: int
    total_amount: Decimal
    already_unlocked: bool = False


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------
class ProjectStatusUpdate(ApiModel):
    status: ProjectStatus


class UnlockPending(ApiModel):
    """Why a completed project's unlock did not run; the unlock can be retried."""
    code: str
    message: str


class ProjectStatusResponse(ApiModel):
    project_id: str
    status: ProjectStatus
    unlock: Optional[UnlockResult] = None
    unlock_pending: Optional[UnlockPending] = None


# ---------------------------------------------------------------------------
# Wallet / payout requests
# ---------------------------------------------------------------------------
class Wallet(ApiModel):
    editor_id: str
    unlocked_balance: Decimal
    lifetime_earnings: Decimal


class PayoutMethod(ApiModel):
    method: Literal["UPI", "BANK"]
    upi_id: Optional[str] = None
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    ifsc_code: Optional[str] = None


class PayoutRequestCreate(ApiModel):
    editor_id: str
    amount: Decimal = Field(gt=0)
    payout_method: PayoutMethod


class PayoutRequestOut(ApiModel):
    id: str
    editor_id: str
    editor_name: str
    amount: Decimal
    payout_method: PayoutMethod
    status: PayoutRequestStatus
    processed_by: Optional[str] = None
    processed_at: Optional[datetime] = None
    transaction_ref: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None


class ReviewAction(ApiModel):
    reviewer_id: str


class MarkPaidAction(ReviewAction):
    transaction_ref: str = Field(min_length=1)


class RejectAction(ReviewAction):
    reason: str = Field(min_length=1)


class PendingPayoutStats(ApiModel):
    count: int
    total_amount: Decimal


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
class EarningsReportRow(ApiModel):
    """One UNLOCKED breakdown with display names, for the payout workbook."""
    project_id: str
    project_name: str
    editor_id: str
    editor_name: str
    billable_minutes: Decimal
    base_payout: Decimal
    reliability_factor: Decimal
    quality_factor: Decimal
    capped_payout: Decimal
    bonus_amount: Decimal
    final_payout: Decimal
    unlocked_at: Optional[datetime] = None


class ReportResponse(ApiModel):
    status: str
    filename: str
    summary: dict
