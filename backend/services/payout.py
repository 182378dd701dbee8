"""
Payout computation — one breakdown per (project, editor).

CRITICAL: All arithmetic is Decimal. Money is rounded to paise (0.01) at each
step that produces a displayed amount, so the stored fields satisfy
finalPayout == cappedPayout + bonusAmount exactly.

Pipeline (compute_breakdown):
  1. billable_minutes = Σ over APPROVED milestones of
                        (milestone.billable_minutes or sku.billable_minutes_base)
                        × (milestone.difficulty_factor or sku.difficulty_factor_default)
  2. tier_rate        = editor's personal rate, else the tier rate in effect now
  3. base_payout      = billable_minutes × tier_rate
  4. late_minutes     = Σ lateness over the editor's milestones
     reliability      = reliability_factor(late_minutes)
  5. qc_average       = weighted mean of milestone QC averages
     quality          = quality_factor(qc_average)
  6. after_factors    = base_payout × reliability × quality
  7. editor_budget_cap= total_price × sku.editor_budget_pct × editor share
  8. capped_payout    = min(after_factors, editor_budget_cap)
  9. bonuses          = bonus rules, fitted into the incentive pool (not capped)
 10. final_payout     = capped_payout + bonus_amount

Editor share of the budget:
  explicit budget_share on the assignment wins; editors without one split
  whatever the explicit shares leave over equally (all None → equal split).
  A negative share or explicit shares summing past 1 raise InvalidInput.
  Caps round down to the paisa.

Persistence:
  no breakdown yet  → insert PENDING
  PENDING           → overwrite (upstream corrections before unlock)
  UNLOCKED          → AlreadyUnlocked
"""

import logging
from decimal import Decimal
from typing import Iterable, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from database import transaction
from models.db_models import (
    BreakdownStatus, MilestoneDB, MilestoneStatus, PayoutBreakdownDB,
    ProjectDB, ProjectEditorDB, ProjectStatus, TERMINAL_MILESTONE_STATUSES,
    UserDB, utcnow,
)
from models.schemas import (
    BonusLine, PayoutBreakdown, PayoutPreview, ProjectedEarnings, SkuConfig,
)
import config
from services import audit
from services.adjustments import (
    ONE, ZERO, aggregate_qc_average, as_decimal, quality_factor,
    reliability_factor, to_factor, to_minutes, to_money, to_money_floor,
    total_late_minutes,
)
from services.bonus_rules import (
    BonusRule, default_bonus_rules, evaluate_bonus_rules, fit_to_incentive_pool,
)
from services.errors import AlreadyUnlocked, InvalidInput, NotFound, NotReady
from services.rate_catalog import RateCatalog

logger = logging.getLogger(__name__)


# ===========================================================================
# Step 1: Billable minutes
# ===========================================================================

def calculate_billable_minutes(milestones: Iterable[MilestoneDB], sku: SkuConfig) -> Decimal:
    """Scaled minutes across the given milestones (callers pass APPROVED ones)."""
    total = ZERO
    for m in milestones:
        minutes = sku.billable_minutes_base if m.billable_minutes is None else as_decimal(m.billable_minutes)
        difficulty = (
            sku.difficulty_factor_default if m.difficulty_factor is None
            else as_decimal(m.difficulty_factor)
        )
        total += minutes * difficulty
    return to_minutes(total)


# ===========================================================================
# Steps 3 + 6: Base payout and adjustment factors
# ===========================================================================

def calculate_base_payout(billable_minutes: Decimal, tier_rate: Decimal) -> Decimal:
    return to_money(billable_minutes * tier_rate)


def calculate_after_factors(
    base_payout: Decimal,
    reliability: Decimal,
    quality: Decimal,
) -> Decimal:
    return to_money(base_payout * reliability * quality)


# ===========================================================================
# Step 7: Editor budget cap
# ===========================================================================

def calculate_budget_share(
    assignments: Iterable[ProjectEditorDB],
    editor_id: str,
) -> Decimal:
    """
    Fraction of the project's editor budget available to one editor.

    An editor not (yet) assigned is treated as one more equal-split
    participant, which is what an invitation preview needs.

    Raises:
        InvalidInput: a negative share, or explicit shares summing past 1.
    """
    assignments = list(assignments)
    explicit = {
        a.editor_id: as_decimal(a.budget_share)
        for a in assignments if a.budget_share is not None
    }
    for assigned_id, share in explicit.items():
        if share < ZERO:
            raise InvalidInput(f"budget_share must be >= 0, got {share} for editor {assigned_id}")
    allocated = sum(explicit.values(), ZERO)
    if allocated > ONE:
        raise InvalidInput(f"Explicit budget shares sum to {allocated}, more than the whole budget")

    if editor_id in explicit:
        return explicit[editor_id]

    equal_split = [a for a in assignments if a.budget_share is None]
    participants = len(equal_split)
    if editor_id not in {a.editor_id for a in assignments}:
        participants += 1
    if participants == 0:
        return ZERO

    remainder = ONE - allocated
    return remainder / Decimal(participants)


def calculate_editor_budget_cap(
    total_price: Decimal,
    editor_budget_pct: Decimal,
    share: Decimal,
) -> Decimal:
    return to_money_floor(as_decimal(total_price) * editor_budget_pct * share)


# ===========================================================================
# Step 8: Cap
# ===========================================================================

def apply_budget_cap(after_factors: Decimal, editor_budget_cap: Decimal) -> Decimal:
    return min(after_factors, editor_budget_cap)


# ===========================================================================
# PayoutComputer
# ===========================================================================

class PayoutComputer:
    """
    Builds and persists PayoutBreakdown rows.

    compute_breakdown() runs in its own transaction; compute_and_store()
    leaves the transaction to the caller (the unlock uses it).
    """

    def __init__(
        self,
        db: Session,
        catalog: Optional[RateCatalog] = None,
        bonus_rules: Optional[list[BonusRule]] = None,
    ):
        self.db = db
        self.catalog = catalog or RateCatalog(db)
        self.bonus_rules = default_bonus_rules() if bonus_rules is None else list(bonus_rules)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def compute_breakdown(self, project_id: str, editor_id: str) -> PayoutBreakdown:
        """
        Compute and persist the breakdown for one editor on a completed project.

        Raises:
            NotFound:        unknown project or editor
            NotReady:        project not COMPLETED, editor not on the project,
                             or one of the editor's milestones not terminal
            AlreadyUnlocked: the breakdown was already unlocked
            ConfigNotFound:  no active tier rate / SKU config
            InvalidInput:    corrupt QC scores or lateness
        """
        with transaction(self.db):
            row = self.compute_and_store(project_id, editor_id)
            return PayoutBreakdown.model_validate(row)

    def get_breakdown(self, project_id: str, editor_id: str) -> PayoutBreakdown:
        with transaction(self.db):
            row = self.find_breakdown(project_id, editor_id)
            if row is None:
                raise NotFound(f"No breakdown for editor {editor_id} on project {project_id}")
            return PayoutBreakdown.model_validate(row)

    def projected_earnings(self, project_id: str, editor_id: str) -> ProjectedEarnings:
        """
        Live projection over the current facts; nothing is persisted and
        milestones still in progress are simply not counted yet.
        """
        with transaction(self.db):
            project = self._load_project(project_id)
            editor = self._load_editor(editor_id)
            if editor.id not in project.editor_ids:
                raise NotReady(f"Editor {editor_id} is not assigned to project {project_id}")

            values, scored, total = self._build(project, editor)
            values.pop("_versions")
            return ProjectedEarnings(
                **values,
                status=BreakdownStatus.PENDING,
                milestones_scored=scored,
                total_milestones=total,
            )

    def preview_payout(self, project_id: str, editor_id: str) -> PayoutPreview:
        """
        Invitation range: best and worst case before any work is done.

        Billable minutes come from the milestones assigned to the editor in
        any status, or one SKU unit when none are assigned yet.
        """
        with transaction(self.db):
            project = self._load_project(project_id)
            editor = self._load_editor(editor_id)
            sku = self.catalog.resolve_sku_config(project.sku_code)
            rate = self.catalog.resolve_editor_rate(editor)

            milestones = self._editor_milestones(project, editor)
            if milestones:
                billable_minutes = calculate_billable_minutes(milestones, sku)
            else:
                billable_minutes = to_minutes(sku.billable_minutes_base * sku.difficulty_factor_default)

            base = calculate_base_payout(billable_minutes, rate.rate_per_minute)
            share = calculate_budget_share(project.editors, editor.id)
            editor_cap = calculate_editor_budget_cap(project.total_price, sku.editor_budget_pct, share)

            min_gross = calculate_after_factors(
                base, config.PREVIEW_MIN_RELIABILITY_FACTOR, config.PREVIEW_MIN_QUALITY_FACTOR
            )
            max_gross = calculate_after_factors(
                base, config.PREVIEW_MAX_RELIABILITY_FACTOR, config.PREVIEW_MAX_QUALITY_FACTOR
            )

            return PayoutPreview(
                project_id=project.id,
                editor_id=editor.id,
                billable_minutes=billable_minutes,
                tier_rate=rate.rate_per_minute,
                base=base,
                min_payout=apply_budget_cap(min_gross, editor_cap),
                max_payout=apply_budget_cap(max_gross, editor_cap),
                editor_cap=editor_cap,
                eligible_bonuses=evaluate_bonus_rules(self.bonus_rules, project, editor),
            )

    # =========================================================================
    # TRANSACTION-FREE CORE (caller commits)
    # =========================================================================

    def compute_and_store(self, project_id: str, editor_id: str) -> PayoutBreakdownDB:
        project = self._load_project(project_id)
        editor = self._load_editor(editor_id)

        existing = self.find_breakdown(project_id, editor_id, lock=True)
        if existing is not None and existing.status == BreakdownStatus.UNLOCKED:
            logger.warning(f"Recompute refused: breakdown for {editor_id} on {project_id} is UNLOCKED")
            raise AlreadyUnlocked(
                f"Payout for editor {editor_id} on project {project_id} is already unlocked"
            )

        self._check_ready(project, editor)
        values, _, _ = self._build(project, editor)
        version_ids = values.pop("_versions")

        row = existing or PayoutBreakdownDB(id=str(uuid4()))
        for field, value in values.items():
            if field == "bonuses_applied":
                value = [{"code": line.code, "amount": str(line.amount)} for line in value]
            setattr(row, field, value)
        row.status = BreakdownStatus.PENDING
        row.unlocked_at = None
        row.tier_rate_version_id = version_ids["tier_rate"]
        row.sku_config_version_id = version_ids["sku_config"]
        row.computed_at = utcnow()
        if existing is None:
            self.db.add(row)

        audit.record(
            self.db,
            action="breakdown.computed",
            entity_type="payout_breakdown",
            entity_id=row.id,
            metadata={
                "project_id": project_id,
                "editor_id": editor_id,
                "final_payout": row.final_payout,
                "recomputed": existing is not None,
            },
        )
        self.db.flush()

        logger.info(
            f"Breakdown [{project_id} / {editor_id}]: "
            f"{row.billable_minutes} min × {row.tier_rate} = {row.base_payout} "
            f"× rel {row.reliability_factor} × qual {row.quality_factor} = {row.after_factors}, "
            f"cap {row.editor_budget_cap} → {row.capped_payout} + bonus {row.bonus_amount} "
            f"= {row.final_payout}"
        )
        return row

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _load_project(self, project_id: str) -> ProjectDB:
        project = self.db.get(ProjectDB, project_id)
        if project is None:
            raise NotFound(f"Project not found: {project_id}")
        return project

    def _load_editor(self, editor_id: str) -> UserDB:
        editor = self.db.get(UserDB, editor_id)
        if editor is None:
            raise NotFound(f"Editor not found: {editor_id}")
        return editor

    def find_breakdown(
        self, project_id: str, editor_id: str, lock: bool = False
    ) -> Optional[PayoutBreakdownDB]:
        query = self.db.query(PayoutBreakdownDB).filter(
            PayoutBreakdownDB.project_id == project_id,
            PayoutBreakdownDB.editor_id == editor_id,
        )
        if lock:
            query = query.with_for_update().populate_existing()
        return query.one_or_none()

    @staticmethod
    def _editor_milestones(project: ProjectDB, editor: UserDB) -> list[MilestoneDB]:
        return [m for m in project.milestones if m.assigned_editor_id == editor.id]

    def _check_ready(self, project: ProjectDB, editor: UserDB) -> None:
        if editor.id not in project.editor_ids:
            raise NotReady(f"Editor {editor.id} is not assigned to project {project.id}")
        if project.status != ProjectStatus.COMPLETED:
            raise NotReady(f"Project {project.id} is {project.status.value}, not COMPLETED")

        open_milestones = [
            m for m in self._editor_milestones(project, editor)
            if m.status not in TERMINAL_MILESTONE_STATUSES
        ]
        if open_milestones:
            raise NotReady(
                f"Editor {editor.id} has {len(open_milestones)} milestone(s) on project "
                f"{project.id} not yet approved or rejected"
            )

    def _incentive_pool_remaining(self, project: ProjectDB, editor: UserDB, sku: SkuConfig) -> Decimal:
        """Project pool minus bonuses already allotted to the other editors."""
        pool = to_money(as_decimal(project.total_price) * sku.incentive_pool_pct)
        allotted = sum(
            (
                as_decimal(b.bonus_amount)
                for b in self.db.query(PayoutBreakdownDB).filter(
                    PayoutBreakdownDB.project_id == project.id,
                    PayoutBreakdownDB.editor_id != editor.id,
                )
            ),
            ZERO,
        )
        return max(pool - allotted, ZERO)

    def _build(self, project: ProjectDB, editor: UserDB) -> tuple[dict, int, int]:
        """
        Run steps 1-10 over the current facts.

        Returns:
            (breakdown field values, scored milestone count, milestone count)
        """
        milestones = self._editor_milestones(project, editor)
        approved = [m for m in milestones if m.status == MilestoneStatus.APPROVED]

        sku = self.catalog.resolve_sku_config(project.sku_code)
        rate = self.catalog.resolve_editor_rate(editor)

        # Steps 1-3
        billable_minutes = calculate_billable_minutes(approved, sku)
        base_payout = calculate_base_payout(billable_minutes, rate.rate_per_minute)

        # Steps 4-6
        late_minutes = total_late_minutes(milestones)
        reliability = reliability_factor(late_minutes)
        qc_average, scored = aggregate_qc_average(milestones)
        quality = quality_factor(qc_average)
        after_factors = calculate_after_factors(base_payout, reliability, quality)

        # Steps 7-8
        share = calculate_budget_share(project.editors, editor.id)
        editor_budget_cap = calculate_editor_budget_cap(project.total_price, sku.editor_budget_pct, share)
        capped_payout = apply_budget_cap(after_factors, editor_budget_cap)

        # Steps 9-10
        candidates = evaluate_bonus_rules(self.bonus_rules, project, editor)
        applied, bonus_amount = fit_to_incentive_pool(
            candidates, self._incentive_pool_remaining(project, editor, sku)
        )
        final_payout = to_money(capped_payout + bonus_amount)

        values = {
            "project_id": project.id,
            "editor_id": editor.id,
            "billable_minutes": billable_minutes,
            "tier_rate": rate.rate_per_minute,
            "base_payout": base_payout,
            "late_minutes": late_minutes,
            "reliability_factor": reliability,
            "qc_average": to_factor(qc_average),
            "quality_factor": quality,
            "after_factors": after_factors,
            "editor_budget_cap": editor_budget_cap,
            "capped_payout": capped_payout,
            "bonuses_applied": applied,
            "bonus_amount": bonus_amount,
            "final_payout": final_payout,
            "_versions": {"tier_rate": rate.version_id, "sku_config": sku.version_id},
        }
        return values, scored, len(milestones)
