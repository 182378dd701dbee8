"""
SQLAlchemy ORM models for the payout engine.

Tables:
  - users               editors, PMs and admins; the editor wallet lives here
  - tier_rates          versioned per-tier rates (append-only)
  - sku_configs         versioned per-SKU budget configuration (append-only)
  - projects            completed projects are the unit of unlock
  - project_editors     project <-> editor assignment with optional budget share
  - milestones          units of work; lateness and QC facts
  - bonus_grants        mission / promo rewards recorded by other collaborators
  - payout_breakdowns   one immutable-once-unlocked breakdown per project x editor
  - payout_requests     withdrawal workflow
  - audit_events        append-only log of money-affecting transitions
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON,
    Numeric, String, UniqueConstraint, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from database import Base
from services.adjustments import milestone_late_minutes, milestone_qc_average


def utcnow() -> datetime:
    """Naive UTC timestamp (what the DateTime columns store)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Column types
Money = Numeric(14, 2)
Minutes = Numeric(12, 2)
Factor = Numeric(8, 4)
Score = Numeric(4, 2)


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    PM = "PM"
    EDITOR = "EDITOR"


class Tier(str, Enum):
    JUNIOR = "JUNIOR"
    STANDARD = "STANDARD"
    SENIOR = "SENIOR"
    ELITE = "ELITE"


class ProjectStatus(str, Enum):
    ACTIVE = "ACTIVE"
    AT_RISK = "AT_RISK"
    DELAYED = "DELAYED"
    COMPLETED = "COMPLETED"


class MilestoneStatus(str, Enum):
    LOCKED = "LOCKED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


TERMINAL_MILESTONE_STATUSES = (MilestoneStatus.APPROVED, MilestoneStatus.REJECTED)


class BreakdownStatus(str, Enum):
    PENDING = "PENDING"
    UNLOCKED = "UNLOCKED"


class PayoutRequestStatus(str, Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"


class BonusSource(str, Enum):
    MISSION = "MISSION"
    PROMO = "PROMO"


# =============================================================================
# USERS / WALLET
# =============================================================================

class UserDB(Base):
    """Platform user. Editors carry a tier and the embedded wallet."""
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("unlocked_balance >= 0", name="ck_users_unlocked_balance_non_negative"),
        CheckConstraint("lifetime_earnings >= 0", name="ck_users_lifetime_earnings_non_negative"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.EDITOR)
    tier = Column(SQLEnum(Tier), nullable=True)
    tier_rate_override = Column(Money, nullable=True)  # personal rate per minute

    # Wallet
    unlocked_balance = Column(Money, nullable=False, default=Decimal("0"))
    lifetime_earnings = Column(Money, nullable=False, default=Decimal("0"))

    # {"method": "UPI"|"BANK", "upi_id": ..., "bank_name": ..., ...}
    payout_details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)


# =============================================================================
# RATE CATALOG (append-only versions)
# =============================================================================

class TierRateDB(Base):
    """One version of a tier's per-minute rate."""
    __tablename__ = "tier_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tier = Column(SQLEnum(Tier), nullable=False, index=True)
    rate_per_minute = Column(Money, nullable=False)
    rush_eligible = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    effective_from = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime, default=utcnow)


class SkuConfigDB(Base):
    """One version of a service SKU's billing configuration."""
    __tablename__ = "sku_configs"
    __table_args__ = (
        CheckConstraint("editor_budget_pct >= 0 AND editor_budget_pct <= 1", name="ck_sku_editor_budget_pct"),
        CheckConstraint("incentive_pool_pct >= 0 AND incentive_pool_pct <= 1", name="ck_sku_incentive_pool_pct"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    sku_code = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    billable_minutes_base = Column(Minutes, nullable=False)
    difficulty_factor_default = Column(Factor, nullable=False, default=Decimal("1"))
    editor_budget_pct = Column(Factor, nullable=False)
    incentive_pool_pct = Column(Factor, nullable=False, default=Decimal("0"))
    active = Column(Boolean, nullable=False, default=True)
    effective_from = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime, default=utcnow)


# =============================================================================
# PROJECTS / MILESTONES
# =============================================================================

class ProjectDB(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True)  # UUID
    name = Column(String(255), nullable=False)
    sku_code = Column(String(64), nullable=False)
    total_price = Column(Money, nullable=False)
    status = Column(SQLEnum(ProjectStatus), nullable=False, default=ProjectStatus.ACTIVE, index=True)
    is_rush = Column(Boolean, nullable=False, default=False)

    # Idempotency guard: set exactly once, in the same transaction as the wallet credits
    payouts_unlocked_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    editors = relationship(
        "ProjectEditorDB", back_populates="project",
        cascade="all, delete-orphan", order_by="ProjectEditorDB.id",
    )
    milestones = relationship("MilestoneDB", back_populates="project", cascade="all, delete-orphan")
    bonus_grants = relationship("BonusGrantDB", back_populates="project", cascade="all, delete-orphan")

    @property
    def editor_ids(self) -> list[str]:
        return [pe.editor_id for pe in self.editors]


class ProjectEditorDB(Base):
    """Editor assigned to a project. budget_share is a fraction of the editor budget."""
    __tablename__ = "project_editors"
    __table_args__ = (
        UniqueConstraint("project_id", "editor_id", name="uq_project_editor"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    editor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    budget_share = Column(Factor, nullable=True)  # None = equal split of the remainder
    assigned_at = Column(DateTime, default=utcnow)

    project = relationship("ProjectDB", back_populates="editors")
    editor = relationship("UserDB")


class MilestoneDB(Base):
    __tablename__ = "milestones"

    id = Column(String(36), primary_key=True)  # UUID
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False, default="")
    assigned_editor_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    status = Column(SQLEnum(MilestoneStatus), nullable=False, default=MilestoneStatus.LOCKED)

    due_date = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)

    # QC review scores, each 0-5
    qc_guidelines_score = Column(Score, nullable=True)
    qc_av_quality_score = Column(Score, nullable=True)
    qc_self_reliance_score = Column(Score, nullable=True)
    qc_weight = Column(Factor, nullable=True)  # None = weight 1

    late_minutes = Column(Minutes, nullable=True)  # None = derive from due/submitted

    # Overrides of the SKU defaults
    billable_minutes = Column(Minutes, nullable=True)
    difficulty_factor = Column(Factor, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    project = relationship("ProjectDB", back_populates="milestones")

    @property
    def qc_average(self) -> Optional[Decimal]:
        """Mean of the three QC scores, or None until all three are present."""
        return milestone_qc_average(
            self.qc_guidelines_score,
            self.qc_av_quality_score,
            self.qc_self_reliance_score,
        )

    @property
    def effective_late_minutes(self) -> Decimal:
        return milestone_late_minutes(self.late_minutes, self.due_date, self.submitted_at)


class BonusGrantDB(Base):
    """A reward earned on a project (mission completion, promo code)."""
    __tablename__ = "bonus_grants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    editor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    code = Column(String(64), nullable=False)
    amount = Column(Money, nullable=False)
    source = Column(SQLEnum(BonusSource), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    project = relationship("ProjectDB", back_populates="bonus_grants")


# =============================================================================
# PAYOUT BREAKDOWNS
# =============================================================================

class PayoutBreakdownDB(Base):
    """
    Earnings breakdown for one editor on one project.

    Overwritten while PENDING; frozen once UNLOCKED. The rate/SKU version ids
    make the numbers reproducible after later catalog edits.
    """
    __tablename__ = "payout_breakdowns"
    __table_args__ = (
        UniqueConstraint("project_id", "editor_id", name="uq_breakdown_project_editor"),
        CheckConstraint("final_payout >= 0", name="ck_breakdown_final_payout_non_negative"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    editor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    billable_minutes = Column(Minutes, nullable=False)
    tier_rate = Column(Money, nullable=False)
    base_payout = Column(Money, nullable=False)
    late_minutes = Column(Minutes, nullable=False)
    reliability_factor = Column(Factor, nullable=False)
    qc_average = Column(Factor, nullable=False)
    quality_factor = Column(Factor, nullable=False)
    after_factors = Column(Money, nullable=False)
    editor_budget_cap = Column(Money, nullable=False)
    capped_payout = Column(Money, nullable=False)
    bonuses_applied = Column(JSON, nullable=False, default=list)  # [{"code", "amount"}]
    bonus_amount = Column(Money, nullable=False)
    final_payout = Column(Money, nullable=False)

    status = Column(SQLEnum(BreakdownStatus), nullable=False, default=BreakdownStatus.PENDING)
    unlocked_at = Column(DateTime, nullable=True)

    tier_rate_version_id = Column(Integer, ForeignKey("tier_rates.id"), nullable=True)
    sku_config_version_id = Column(Integer, ForeignKey("sku_configs.id"), nullable=True)
    computed_at = Column(DateTime, default=utcnow)


# =============================================================================
# PAYOUT REQUESTS
# =============================================================================

class PayoutRequestDB(Base):
    __tablename__ = "payout_requests"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payout_request_amount_positive"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    editor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    editor_name = Column(String(255), nullable=False)
    amount = Column(Money, nullable=False)
    payout_method = Column(JSON, nullable=False)
    status = Column(SQLEnum(PayoutRequestStatus), nullable=False, default=PayoutRequestStatus.REQUESTED, index=True)

    processed_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    processed_at = Column(DateTime, nullable=True)
    transaction_ref = Column(String(255), nullable=True)
    rejection_reason = Column(String(1000), nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)


# =============================================================================
# AUDIT TRAIL
# =============================================================================

class AuditEventDB(Base):
    """Append-only. Rows are never updated or deleted."""
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(36), nullable=True)  # None for SYSTEM
    actor_role = Column(String(32), nullable=False)
    action = Column(String(64), nullable=False, index=True)  # e.g. "payout.unlocked"
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=False, index=True)
    event_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
