from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.db.session import lock_rows, transaction
from app.models.work import UNAPPROVED_STATES, ApprovalState, TimeEntry
from app.schemas.auth import SessionUser
from app.services.audit import TimeEntryActions, write_audit_log
from app.services.errors import ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from app.services.permissions import can_manage_time, ensure_admin

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 10


def assert_not_locked(state: ApprovalState, context: str) -> None:
    if state == ApprovalState.LOCKED:
        raise InvalidStateError(f"Cannot {context}: Time entry is LOCKED. Must unlock for correction first.")


def _require_reason(reason: Optional[str], label: str) -> str:
    cleaned = (reason or "").strip()
    if len(cleaned) < MIN_REASON_LENGTH:
        raise ValidationError(f"{label} must be at least {MIN_REASON_LENGTH} characters")
    return cleaned


def _bulk_transition(
    db: Session,
    admin: SessionUser,
    work_order_id: int,
    *,
    from_states: tuple,
    to_state: ApprovalState,
    action: str,
    values: dict,
) -> int:
    """Move every live entry on the order from ``from_states`` to ``to_state``, auditing each."""
    with transaction(db):
        selected = db.execute(
            lock_rows(
                db,
                select(TimeEntry.id, TimeEntry.approval_state).where(
                    TimeEntry.work_order_id == work_order_id,
                    TimeEntry.deleted_at.is_(None),
                    TimeEntry.approval_state.in_(from_states),
                ),
            )
        ).all()
        if not selected:
            return 0

        ids = [row.id for row in selected]
        result = db.execute(
            update(TimeEntry)
            .where(TimeEntry.id.in_(ids), TimeEntry.approval_state.in_(from_states))
            .values(approval_state=to_state, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(ids):
            # Another writer moved some of the selected rows between the read and the update.
            raise InvalidStateError("Time entries changed while being processed; retry")

        for row in selected:
            write_audit_log(
                db,
                entity_type="TimeEntry",
                entity_id=row.id,
                action=action,
                actor_id=admin.id,
                before={"approval_state": row.approval_state},
                after={"approval_state": to_state},
            )
    return len(selected)


def approve_time_entries(
    db: Session,
    admin: SessionUser,
    work_order_id: int,
    *,
    now: Optional[datetime] = None,
) -> int:
    """
    Approve all DRAFT and SUBMITTED entries on a work order.

    Returns how many entries moved; zero is a valid no-op.
    """
    ensure_admin(admin)
    count = _bulk_transition(
        db,
        admin,
        work_order_id,
        from_states=UNAPPROVED_STATES,
        to_state=ApprovalState.APPROVED,
        action=TimeEntryActions.APPROVE,
        values={"approved_by_id": admin.id, "approved_at": now or datetime.utcnow()},
    )
    logger.info("Approved %s time entries on work order %s (admin %s)", count, work_order_id, admin.id)
    return count


def lock_time_entries(db: Session, admin: SessionUser, work_order_id: int) -> int:
    ensure_admin(admin)
    count = _bulk_transition(
        db,
        admin,
        work_order_id,
        from_states=(ApprovalState.APPROVED,),
        to_state=ApprovalState.LOCKED,
        action=TimeEntryActions.LOCK,
        values={},
    )
    logger.info("Locked %s time entries on work order %s (admin %s)", count, work_order_id, admin.id)
    return count


def unlock_for_correction(
    db: Session,
    admin: SessionUser,
    time_entry_id: int,
    reason: str,
    *,
    now: Optional[datetime] = None,
) -> TimeEntry:
    ensure_admin(admin)
    reason = _require_reason(reason, "Unlock reason")

    with transaction(db):
        entry = db.execute(lock_rows(db, select(TimeEntry).where(TimeEntry.id == time_entry_id))).scalars().first()
        if entry is None:
            raise NotFoundError("Time entry not found")
        if entry.approval_state != ApprovalState.LOCKED:
            raise InvalidStateError("Time entry is not locked")

        entry.approval_state = ApprovalState.APPROVED
        entry.edited_reason = reason
        entry.edited_at = now or datetime.utcnow()
        db.add(entry)
        write_audit_log(
            db,
            entity_type="TimeEntry",
            entity_id=entry.id,
            action=TimeEntryActions.UNLOCK,
            actor_id=admin.id,
            before={"approval_state": ApprovalState.LOCKED},
            after={"approval_state": ApprovalState.APPROVED, "reason": reason},
        )
    db.refresh(entry)
    return entry


def adjust_time_entry(
    db: Session,
    user: SessionUser,
    time_entry_id: int,
    new_duration_seconds: int,
    reason: str,
    *,
    now: Optional[datetime] = None,
) -> TimeEntry:
    if not can_manage_time(user):
        raise ForbiddenError("Forbidden")
    if not new_duration_seconds or new_duration_seconds <= 0:
        raise ValidationError("Duration must be greater than 0")
    reason = _require_reason(reason, "Reason")

    with transaction(db):
        entry = db.execute(lock_rows(db, select(TimeEntry).where(TimeEntry.id == time_entry_id))).scalars().first()
        if entry is None or entry.deleted_at is not None:
            raise NotFoundError("Time entry not found")
        assert_not_locked(entry.approval_state, "adjust time entry")

        original = entry.duration_seconds or 0
        entry.duration_seconds = new_duration_seconds
        entry.edited_reason = reason
        entry.edited_at = now or datetime.utcnow()
        db.add(entry)
        write_audit_log(
            db,
            entity_type="TimeEntry",
            entity_id=entry.id,
            action=TimeEntryActions.EDIT,
            actor_id=user.id,
            before={"duration_seconds": original},
            after={"duration_seconds": new_duration_seconds, "reason": reason},
        )
    db.refresh(entry)
    return entry
