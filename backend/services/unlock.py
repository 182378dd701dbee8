"""
Wallet unlock — move a completed project's earnings into editor wallets.

Runs once per project, in ONE transaction:
  1. Re-read the project under a lock. payouts_unlocked_at set → return the
     recorded totals, credit nothing. Status != COMPLETED → NotReady.
  2. Per editor: reuse the PENDING breakdown or compute one, mark it UNLOCKED.
  3. Credit final_payout to unlocked_balance and lifetime_earnings.
  4. Stamp payouts_unlocked_at.
  5. One payout.unlocked audit event per editor.

Any exception rolls back all of it, so a failed unlock can simply be retried.
Two concurrent unlocks serialize on the project lock; the loser sees
payouts_unlocked_at and returns the winner's totals.

Completion hook: the COMPLETED status commits first, in its own transaction.
set_project_status reports an unlock that could not run (open milestones,
missing rate) as unlock_pending instead of failing the status change.
"""

import logging
import time
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import config
from database import transaction
from models.db_models import (
    BreakdownStatus, PayoutBreakdownDB, ProjectDB, ProjectStatus, UserDB, utcnow,
)
from models.schemas import ProjectStatusResponse, UnlockPending, UnlockResult
from services import audit
from services.adjustments import ZERO, as_decimal, to_money
from services.errors import (
    AlreadyUnlocked, ConfigNotFound, InvalidInput, NotFound, NotReady, PayoutEngineError,
)
from services.payout import PayoutComputer

logger = logging.getLogger(__name__)


class UnlockCoordinator:
    def __init__(self, db: Session, computer: Optional[PayoutComputer] = None):
        self.db = db
        self.computer = computer or PayoutComputer(db)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def unlock_project_payouts(
        self,
        project_id: str,
        actor_id: Optional[str] = None,
        actor_role: str = audit.SYSTEM_ROLE,
    ) -> UnlockResult:
        """
        Unlock every editor's payout on a completed project (idempotent).

        Raises:
            NotFound:       unknown project
            NotReady:       project not COMPLETED, or an editor's milestones
                            are still open
            ConfigNotFound / InvalidInput: from computing a missing breakdown
        """
        with transaction(self.db):
            project = self._lock_project(project_id)
            return self._unlock(project, actor_id, actor_role)

    def unlock_with_retry(
        self,
        project_id: str,
        max_retries: Optional[int] = None,
        backoff: Optional[float] = None,
        actor_id: Optional[str] = None,
        actor_role: str = audit.SYSTEM_ROLE,
    ) -> UnlockResult:
        """
        Unlock, retrying transient database conflicts (lock timeouts,
        serialization failures) with exponential backoff.

        Engine errors (NotReady, ConfigNotFound, ...) are not retried here.
        """
        max_retries = config.UNLOCK_MAX_RETRIES if max_retries is None else max_retries
        backoff = config.UNLOCK_RETRY_BACKOFF if backoff is None else backoff

        for attempt in range(1, max_retries + 1):
            try:
                return self.unlock_project_payouts(project_id, actor_id, actor_role)
            except OperationalError as e:
                if attempt >= max_retries:
                    logger.error(
                        f"Unlock of project {project_id} failed after {max_retries} attempts: {e}"
                    )
                    raise
                wait_time = backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"Unlock of project {project_id} hit a database conflict, "
                    f"attempt {attempt}/{max_retries}, retrying in {wait_time:.1f}s: {e}"
                )
                time.sleep(wait_time)

        raise RuntimeError(f"Unlock of project {project_id} was not attempted (max_retries={max_retries})")

    def complete_project(
        self,
        project_id: str,
        actor_id: Optional[str] = None,
        actor_role: str = audit.SYSTEM_ROLE,
    ) -> UnlockResult:
        """
        Mark a project COMPLETED, then unlock its payouts.

        The status change commits on its own; a failed unlock (NotReady,
        ConfigNotFound, ...) leaves the project COMPLETED and can be retried.
        """
        self._mark_completed(project_id)
        return self.unlock_project_payouts(project_id, actor_id, actor_role)

    def set_project_status(
        self,
        project_id: str,
        status: ProjectStatus,
        actor_id: Optional[str] = None,
        actor_role: str = audit.SYSTEM_ROLE,
    ) -> ProjectStatusResponse:
        """Status update entry point; reaching COMPLETED triggers the unlock."""
        if status == ProjectStatus.COMPLETED:
            self._mark_completed(project_id)
            try:
                result = self.unlock_with_retry(project_id, actor_id=actor_id, actor_role=actor_role)
            except PayoutEngineError as e:
                if isinstance(e, (ConfigNotFound, InvalidInput)):
                    logger.error(f"Project {project_id} completed but unlock failed: {e.code}: {e.message}")
                else:
                    logger.warning(f"Project {project_id} completed, unlock deferred: {e.code}: {e.message}")
                return ProjectStatusResponse(
                    project_id=project_id,
                    status=status,
                    unlock_pending=UnlockPending(code=e.code, message=e.message),
                )
            return ProjectStatusResponse(project_id=project_id, status=status, unlock=result)

        with transaction(self.db):
            project = self._lock_project(project_id)
            if project.payouts_unlocked_at is not None:
                raise AlreadyUnlocked(
                    f"Project {project_id} payouts are unlocked; status can no longer change"
                )
            project.status = status
        logger.info(f"Project {project_id} status set to {status.value}")
        return ProjectStatusResponse(project_id=project_id, status=status)

    def _mark_completed(self, project_id: str) -> None:
        with transaction(self.db):
            project = self._lock_project(project_id)
            if project.status != ProjectStatus.COMPLETED:
                logger.info(f"Project {project_id}: {project.status.value} → COMPLETED")
                project.status = ProjectStatus.COMPLETED

    # =========================================================================
    # INTERNALS (caller owns the transaction)
    # =========================================================================

    def _lock_project(self, project_id: str) -> ProjectDB:
        project = (
            self.db.query(ProjectDB)
            .filter(ProjectDB.id == project_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if project is None:
            raise NotFound(f"Project not found: {project_id}")
        return project

    def _unlock(self, project: ProjectDB, actor_id: Optional[str], actor_role: str) -> UnlockResult:
        if project.payouts_unlocked_at is not None:
            logger.info(
                f"Project {project.id} already unlocked at {project.payouts_unlocked_at}; "
                f"returning recorded totals"
            )
            return self._recorded_result(project)

        if project.status != ProjectStatus.COMPLETED:
            raise NotReady(f"Project {project.id} is {project.status.value}, not COMPLETED")

        now = utcnow()
        total = ZERO
        count = 0

        for editor_id in project.editor_ids:
            row = self.computer.find_breakdown(project.id, editor_id, lock=True)
            if row is None:
                row = self.computer.compute_and_store(project.id, editor_id)
            elif row.status == BreakdownStatus.UNLOCKED:
                # a stray UNLOCKED row on a project that was never unlocked
                raise AlreadyUnlocked(
                    f"Breakdown for editor {editor_id} on project {project.id} is already unlocked"
                )

            amount = self._credit_wallet(row, now)
            audit.record(
                self.db,
                action="payout.unlocked",
                entity_type="payout_breakdown",
                entity_id=row.id,
                actor_id=actor_id,
                actor_role=actor_role,
                metadata={
                    "project_id": project.id,
                    "editor_id": editor_id,
                    "amount": amount,
                },
            )
            total += amount
            count += 1

        project.payouts_unlocked_at = now
        self.db.flush()

        logger.info(f"Unlocked project {project.id}: {count} editor(s), total ₹{to_money(total)}")
        return UnlockResult(
            project_id=project.id,
            unlocked_count=count,
            total_amount=to_money(total),
            already_unlocked=False,
        )

    def _credit_wallet(self, row: PayoutBreakdownDB, now) -> Decimal:
        editor = (
            self.db.query(UserDB)
            .filter(UserDB.id == row.editor_id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        amount = to_money(row.final_payout)
        editor.unlocked_balance = to_money(as_decimal(editor.unlocked_balance) + amount)
        editor.lifetime_earnings = to_money(as_decimal(editor.lifetime_earnings) + amount)

        row.status = BreakdownStatus.UNLOCKED
        row.unlocked_at = now

        logger.info(
            f"Credited ₹{amount} to editor {editor.id} "
            f"(balance ₹{editor.unlocked_balance}, lifetime ₹{editor.lifetime_earnings})"
        )
        return amount

    def _recorded_result(self, project: ProjectDB) -> UnlockResult:
        rows = (
            self.db.query(PayoutBreakdownDB)
            .filter(
                PayoutBreakdownDB.project_id == project.id,
                PayoutBreakdownDB.status == BreakdownStatus.UNLOCKED,
            )
            .all()
        )
        total = sum((as_decimal(r.final_payout) for r in rows), ZERO)
        return UnlockResult(
            project_id=project.id,
            unlocked_count=len(rows),
            total_amount=to_money(total),
            already_unlocked=True,
        )
