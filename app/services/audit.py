from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.audit import AuditLog


class TimeEntryActions:
    START = "START_TIMER"
    STOP = "STOP_TIMER"
    AUTO_STOP = "AUTO_STOP"
    APPROVE = "APPROVE"
    LOCK = "LOCK"
    UNLOCK = "UNLOCK_FOR_CORRECTION"
    EDIT = "EDIT"
    DELETE = "DELETE"


class WorkOrderActions:
    CREATE = "CREATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    MARK_READY_TO_BILL = "MARK_READY_TO_BILL"
    QC_APPROVE = "QC_APPROVE"
    QC_REJECT = "QC_REJECT"
    KANBAN_MOVE = "KANBAN_MOVE"
    TOGGLE_OOS = "TOGGLE_OUT_OF_SERVICE"
    CLOSE = "CLOSE"


class LineItemActions:
    CREATE = "CREATE"
    EDIT = "EDIT"
    MARK_DONE = "MARK_DONE"
    ASSIGN = "ASSIGN_TECH"
    UNASSIGN = "UNASSIGN_TECH"


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Cannot serialize {type(value).__name__} in audit payload")


def _dump(payload: Optional[dict]) -> Optional[str]:
    if payload is None:
        return None
    return json.dumps(payload, default=_json_default, sort_keys=True)


def write_audit_log(
    db: Session,
    *,
    entity_type: str,
    entity_id: object,
    action: str,
    actor_id: int,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
) -> AuditLog:
    """
    Stage one audit row in the caller's transaction.

    Nothing is committed here; the row lands or disappears together with the
    mutation it describes.
    """
    row = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_id=actor_id,
        before_json=_dump(before),
        after_json=_dump(after),
    )
    db.add(row)
    return row


def list_audit_log(db: Session, entity_type: str, entity_id: object) -> List[AuditLog]:
    stmt = (
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
    )
    return list(db.execute(stmt).scalars().all())
