"""
Audit trail — append-only log of money-affecting transitions.

Entries are added to the caller's session and commit or roll back together
with the state change they describe. Nothing here updates or deletes rows.

Actions written by the engine:
  breakdown.computed   PayoutComputer persisted a PENDING breakdown
  payout.unlocked      UnlockCoordinator credited an editor's wallet
  payout.requested     editor created a withdrawal request
  payout.approved      reviewer approved (wallet debited)
  payout.processed     reviewer marked an approved request paid
  payout.rejected      reviewer rejected a request
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from models.db_models import AuditEventDB, utcnow

logger = logging.getLogger(__name__)

SYSTEM_ROLE = "SYSTEM"


def _jsonable(value: Any) -> Any:
    """Decimals become strings so JSON metadata keeps exact amounts."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value  # Enum
    return value


def record(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: str,
    actor_id: Optional[str] = None,
    actor_role: str = SYSTEM_ROLE,
    metadata: Optional[dict] = None,
) -> AuditEventDB:
    event = AuditEventDB(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        event_metadata=_jsonable(metadata or {}),
        created_at=utcnow(),
    )
    db.add(event)
    logger.debug(f"Audit: {action} {entity_type}:{entity_id} by {actor_role}:{actor_id}")
    return event


def events_for(db: Session, entity_type: str, entity_id: str) -> list[AuditEventDB]:
    return (
        db.query(AuditEventDB)
        .filter(AuditEventDB.entity_type == entity_type, AuditEventDB.entity_id == entity_id)
        .order_by(AuditEventDB.id)
        .all()
    )


def events_by_action(db: Session, action: str) -> list[AuditEventDB]:
    return db.query(AuditEventDB).filter(AuditEventDB.action == action).order_by(AuditEventDB.id).all()
