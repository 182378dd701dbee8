"""
Payout requests — editor withdrawals from the unlocked wallet.

State machine:
  REQUESTED → APPROVED → PAID
  REQUESTED → REJECTED
Anything else (APPROVED → REJECTED, PAID → *, ...) raises InvalidTransition.

Money moves exactly once, at approval: the balance is re-checked and debited
under the wallet lock in the same transaction as REQUESTED → APPROVED. A
request never debits on creation, so rejecting it needs no refund.

Rules at creation:
  - amount >= MIN_PAYOUT                      else BelowMinimum
  - amount <= unlocked balance                else InsufficientBalance
  - UPI needs upi_id; BANK needs bank_name,
    account_number and ifsc_code              else InvalidPayoutMethod
  - at most one REQUESTED request per editor  else DuplicatePendingRequest
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

import config
from database import transaction
from models.db_models import PayoutRequestDB, PayoutRequestStatus, UserDB, UserRole, utcnow
from models.schemas import PayoutMethod, PayoutRequestOut, PendingPayoutStats, Wallet
from services import audit
from services.adjustments import ZERO, as_decimal, to_money
from services.errors import (
    BelowMinimum, DuplicatePendingRequest, InsufficientBalance, InvalidPayoutMethod,
    InvalidTransition, NotAuthorized, NotFound,
)

logger = logging.getLogger(__name__)


# =============================================================================
# STATE CONFIGURATION
# =============================================================================

ALLOWED_TRANSITIONS = {
    PayoutRequestStatus.REQUESTED: [PayoutRequestStatus.APPROVED, PayoutRequestStatus.REJECTED],
    PayoutRequestStatus.APPROVED: [PayoutRequestStatus.PAID],
    PayoutRequestStatus.PAID: [],
    PayoutRequestStatus.REJECTED: [],
}

REQUIRED_METHOD_FIELDS = {
    "UPI": ["upi_id"],
    "BANK": ["bank_name", "account_number", "ifsc_code"],
}


def can_transition(from_status: PayoutRequestStatus, to_status: PayoutRequestStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, [])


def validate_payout_method(method: PayoutMethod) -> None:
    missing = [
        field for field in REQUIRED_METHOD_FIELDS[method.method]
        if not (getattr(method, field) or "").strip()
    ]
    if missing:
        raise InvalidPayoutMethod(f"{method.method} payout requires: {', '.join(missing)}")


class PayoutRequestWorkflow:
    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # EDITOR SIDE
    # =========================================================================

    def create_request(
        self,
        editor_id: str,
        amount: Decimal,
        payout_method: PayoutMethod,
    ) -> PayoutRequestOut:
        """
        Open a withdrawal request. Nothing is debited until approval.

        Raises:
            BelowMinimum, InsufficientBalance, InvalidPayoutMethod,
            DuplicatePendingRequest, NotFound
        """
        amount = to_money(amount)
        if amount < config.MIN_PAYOUT:
            raise BelowMinimum(f"Minimum payout amount is ₹{config.MIN_PAYOUT}")
        validate_payout_method(payout_method)

        with transaction(self.db):
            editor = self._lock_user(editor_id)
            balance = as_decimal(editor.unlocked_balance)
            if amount > balance:
                logger.warning(
                    f"Payout request refused for editor {editor_id}: ₹{amount} > balance ₹{balance}"
                )
                raise InsufficientBalance(
                    f"Requested ₹{amount} exceeds unlocked balance ₹{to_money(balance)}"
                )

            pending = (
                self.db.query(PayoutRequestDB)
                .filter(
                    PayoutRequestDB.editor_id == editor_id,
                    PayoutRequestDB.status == PayoutRequestStatus.REQUESTED,
                )
                .first()
            )
            if pending is not None:
                raise DuplicatePendingRequest(
                    f"Editor {editor_id} already has a pending payout request ({pending.id})"
                )

            method_details = payout_method.model_dump()
            if not editor.payout_details:
                editor.payout_details = method_details

            request = PayoutRequestDB(
                id=str(uuid4()),
                editor_id=editor.id,
                editor_name=editor.name,
                amount=amount,
                payout_method=method_details,
                status=PayoutRequestStatus.REQUESTED,
                created_at=utcnow(),
            )
            self.db.add(request)
            audit.record(
                self.db,
                action="payout.requested",
                entity_type="payout_request",
                entity_id=request.id,
                actor_id=editor.id,
                actor_role=editor.role.value,
                metadata={"amount": amount, "method": payout_method.method},
            )
            self.db.flush()
            logger.info(f"Payout request {request.id}: editor {editor_id} requested ₹{amount}")
            return PayoutRequestOut.model_validate(request)

    # =========================================================================
    # REVIEWER SIDE
    # =========================================================================

    def approve(self, request_id: str, reviewer_id: str) -> PayoutRequestOut:
        """REQUESTED → APPROVED, debiting the wallet atomically."""
        with transaction(self.db):
            reviewer = self._require_admin(reviewer_id)
            request = self._lock_request(request_id)
            self._check_transition(request, PayoutRequestStatus.APPROVED)

            editor = self._lock_user(request.editor_id)
            amount = as_decimal(request.amount)
            balance = as_decimal(editor.unlocked_balance)
            if amount > balance:
                logger.warning(
                    f"Approval of {request_id} refused: ₹{amount} > balance ₹{balance}"
                )
                raise InsufficientBalance(
                    f"Editor balance ₹{to_money(balance)} no longer covers ₹{to_money(amount)}"
                )

            editor.unlocked_balance = to_money(balance - amount)
            request.status = PayoutRequestStatus.APPROVED
            request.processed_by = reviewer.id
            request.processed_at = utcnow()

            audit.record(
                self.db,
                action="payout.approved",
                entity_type="payout_request",
                entity_id=request.id,
                actor_id=reviewer.id,
                actor_role=reviewer.role.value,
                metadata={
                    "editor_id": editor.id,
                    "amount": amount,
                    "balance_after": editor.unlocked_balance,
                },
            )
            self.db.flush()
            logger.info(
                f"Payout request {request_id} approved by {reviewer_id}: "
                f"debited ₹{to_money(amount)}, balance now ₹{editor.unlocked_balance}"
            )
            return PayoutRequestOut.model_validate(request)

    def mark_paid(self, request_id: str, reviewer_id: str, transaction_ref: str) -> PayoutRequestOut:
        """APPROVED → PAID. The money already left the wallet at approval."""
        with transaction(self.db):
            reviewer = self._require_admin(reviewer_id)
            request = self._lock_request(request_id)
            self._check_transition(request, PayoutRequestStatus.PAID)

            request.status = PayoutRequestStatus.PAID
            request.transaction_ref = transaction_ref
            request.processed_by = reviewer.id
            request.processed_at = utcnow()

            audit.record(
                self.db,
                action="payout.processed",
                entity_type="payout_request",
                entity_id=request.id,
                actor_id=reviewer.id,
                actor_role=reviewer.role.value,
                metadata={"transaction_ref": transaction_ref, "amount": as_decimal(request.amount)},
            )
            self.db.flush()
            logger.info(f"Payout request {request_id} marked PAID (ref {transaction_ref})")
            return PayoutRequestOut.model_validate(request)

    def reject(self, request_id: str, reviewer_id: str, reason: str) -> PayoutRequestOut:
        """REQUESTED → REJECTED. No balance effect."""
        with transaction(self.db):
            reviewer = self._require_admin(reviewer_id)
            request = self._lock_request(request_id)
            self._check_transition(request, PayoutRequestStatus.REJECTED)

            request.status = PayoutRequestStatus.REJECTED
            request.rejection_reason = reason
            request.processed_by = reviewer.id
            request.processed_at = utcnow()

            audit.record(
                self.db,
                action="payout.rejected",
                entity_type="payout_request",
                entity_id=request.id,
                actor_id=reviewer.id,
                actor_role=reviewer.role.value,
                metadata={"reason": reason},
            )
            self.db.flush()
            logger.info(f"Payout request {request_id} rejected by {reviewer_id}: {reason}")
            return PayoutRequestOut.model_validate(request)

    # =========================================================================
    # READ PATHS
    # =========================================================================

    def list_requests(self, status: Optional[PayoutRequestStatus] = None) -> list[PayoutRequestOut]:
        with transaction(self.db):
            query = self.db.query(PayoutRequestDB)
            if status is not None:
                query = query.filter(PayoutRequestDB.status == status)
            rows = query.order_by(PayoutRequestDB.created_at.desc()).all()
            return [PayoutRequestOut.model_validate(r) for r in rows]

    def editor_history(self, editor_id: str) -> list[PayoutRequestOut]:
        with transaction(self.db):
            rows = (
                self.db.query(PayoutRequestDB)
                .filter(PayoutRequestDB.editor_id == editor_id)
                .order_by(PayoutRequestDB.created_at.desc())
                .all()
            )
            return [PayoutRequestOut.model_validate(r) for r in rows]

    def pending_stats(self) -> PendingPayoutStats:
        with transaction(self.db):
            count, total = (
                self.db.query(func.count(PayoutRequestDB.id), func.sum(PayoutRequestDB.amount))
                .filter(PayoutRequestDB.status == PayoutRequestStatus.REQUESTED)
                .one()
            )
            return PendingPayoutStats(
                count=count or 0,
                total_amount=to_money(total if total is not None else ZERO),
            )

    def get_wallet(self, editor_id: str) -> Wallet:
        with transaction(self.db):
            editor = self.db.get(UserDB, editor_id)
            if editor is None:
                raise NotFound(f"Editor not found: {editor_id}")
            return Wallet(
                editor_id=editor.id,
                unlocked_balance=to_money(editor.unlocked_balance),
                lifetime_earnings=to_money(editor.lifetime_earnings),
            )

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _lock_user(self, user_id: str) -> UserDB:
        user = (
            self.db.query(UserDB)
            .filter(UserDB.id == user_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if user is None:
            raise NotFound(f"User not found: {user_id}")
        return user

    def _lock_request(self, request_id: str) -> PayoutRequestDB:
        request = (
            self.db.query(PayoutRequestDB)
            .filter(PayoutRequestDB.id == request_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if request is None:
            raise NotFound(f"Payout request not found: {request_id}")
        return request

    def _require_admin(self, reviewer_id: str) -> UserDB:
        reviewer = self.db.get(UserDB, reviewer_id)
        if reviewer is None or reviewer.role != UserRole.SUPER_ADMIN:
            logger.warning(f"User {reviewer_id} is not allowed to review payout requests")
            raise NotAuthorized("Only a SUPER_ADMIN can review payout requests")
        return reviewer

    def _check_transition(self, request: PayoutRequestDB, to_status: PayoutRequestStatus) -> None:
        if not can_transition(request.status, to_status):
            logger.warning(
                f"Payout request {request.id}: refused {request.status.value} → {to_status.value}"
            )
            raise InvalidTransition(
                f"Cannot move payout request from {request.status.value} to {to_status.value}"
            )
