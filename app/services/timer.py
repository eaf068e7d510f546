from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import Select, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.db.session import lock_rows, transaction
from app.models.work import (
    ApprovalState,
    LineItem,
    LineItemAssignment,
    LineItemStatus,
    TimeEntry,
    WorkOrder,
    WorkOrderStatus,
)
from app.schemas.auth import SessionUser
from app.services.audit import TimeEntryActions, WorkOrderActions, write_audit_log
from app.services.errors import InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)

ONE_SECOND = timedelta(seconds=1)


def duration_seconds(started_at: datetime, ended_at: datetime) -> int:
    """Whole seconds between two instants, rounded down."""
    return (ended_at - started_at) // ONE_SECOND


def close_entry(entry: TimeEntry, ended_at: datetime) -> int:
    seconds = duration_seconds(entry.started_at, ended_at)
    entry.ended_at = ended_at
    entry.duration_seconds = seconds
    return seconds


def _with_context(stmt: Select) -> Select:
    return stmt.options(
        joinedload(TimeEntry.work_order).joinedload(WorkOrder.customer),
        joinedload(TimeEntry.line_item),
    )


def load_timer(db: Session, entry_id: int) -> TimeEntry:
    stmt = _with_context(select(TimeEntry).where(TimeEntry.id == entry_id))
    return db.execute(stmt).scalars().one()


def _running_entry(db: Session, user_id: int, *, lock: bool = False) -> Optional[TimeEntry]:
    stmt = select(TimeEntry).where(
        TimeEntry.user_id == user_id,
        TimeEntry.ended_at.is_(None),
        TimeEntry.deleted_at.is_(None),
    )
    if lock:
        stmt = lock_rows(db, stmt)
    return db.execute(stmt).scalars().first()


def get_active_timer(db: Session, user: SessionUser) -> Optional[TimeEntry]:
    # Unlike stop_active_timer this lookup does not skip soft-deleted rows.
    stmt = _with_context(
        select(TimeEntry)
        .where(TimeEntry.user_id == user.id, TimeEntry.ended_at.is_(None))
        .order_by(TimeEntry.started_at.desc())
    )
    return db.execute(stmt).scalars().first()


def stop_active_timer(
    db: Session,
    user: SessionUser,
    *,
    notes: Optional[str] = None,
    pause_reason: Optional[str] = None,
    is_goodwill: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> TimeEntry:
    """
    Stop the caller's running timer and record the stop in the audit log.

    The update and the audit row commit together. Returns the entry with its
    work order, customer and line item loaded.
    """
    with transaction(db):
        entry = _running_entry(db, user.id, lock=True)
        if entry is None:
            raise NotFoundError("No active timer found")

        seconds = close_entry(entry, now or datetime.utcnow())
        entry.notes = notes or entry.notes
        entry.pause_reason = pause_reason or None
        entry.is_goodwill = bool(is_goodwill)
        db.add(entry)
        write_audit_log(
            db,
            entity_type="TimeEntry",
            entity_id=entry.id,
            action=TimeEntryActions.STOP,
            actor_id=user.id,
            after={
                "duration_seconds": seconds,
                "notes": notes or None,
                "pause_reason": pause_reason or None,
            },
        )
        entry_id = entry.id

    logger.info("Stopped timer %s for user %s after %ss", entry_id, user.id, seconds)
    return load_timer(db, entry_id)


def start_timer(
    db: Session,
    user: SessionUser,
    line_item_id: int,
    *,
    now: Optional[datetime] = None,
) -> TimeEntry:
    """
    Start a timer on an assigned line item, switching off any timer already running.

    A concurrent start that wins the race on the one-running-timer index is not an
    error: the caller gets back whichever timer is running.
    """
    line_item = (
        db.execute(
            select(LineItem)
            .options(joinedload(LineItem.work_order))
            .where(
                LineItem.id == line_item_id,
                LineItem.deleted_at.is_(None),
                LineItem.assignments.any(LineItemAssignment.user_id == user.id),
            )
        )
        .scalars()
        .first()
    )
    if line_item is None:
        raise NotFoundError("Line item not found or not assigned to you")
    if line_item.status == LineItemStatus.DONE:
        raise InvalidStateError("Cannot start timer on completed line item")

    started_at = now or datetime.utcnow()
    try:
        with transaction(db):
            stopped_id: Optional[int] = None
            running = _running_entry(db, user.id, lock=True)
            if running is not None:
                seconds = close_entry(running, started_at)
                db.add(running)
                db.flush()
                stopped_id = running.id
                write_audit_log(
                    db,
                    entity_type="TimeEntry",
                    entity_id=running.id,
                    action=TimeEntryActions.AUTO_STOP,
                    actor_id=user.id,
                    after={"duration_seconds": seconds, "reason": "Timer switched to new task"},
                )

            entry = TimeEntry(
                user_id=user.id,
                work_order_id=line_item.work_order_id,
                line_item_id=line_item.id,
                started_at=started_at,
                approval_state=ApprovalState.DRAFT,
            )
            db.add(entry)
            db.flush()
            write_audit_log(
                db,
                entity_type="TimeEntry",
                entity_id=entry.id,
                action=TimeEntryActions.START,
                actor_id=user.id,
                after={
                    "line_item_id": line_item.id,
                    "work_order_id": line_item.work_order_id,
                    "stopped_timer": stopped_id,
                },
            )

            order = line_item.work_order
            if order.status == WorkOrderStatus.OPEN:
                order.status = WorkOrderStatus.IN_PROGRESS
                db.add(order)
                write_audit_log(
                    db,
                    entity_type="WorkOrder",
                    entity_id=order.id,
                    action=WorkOrderActions.STATUS_CHANGE,
                    actor_id=user.id,
                    before={"status": WorkOrderStatus.OPEN},
                    after={"status": WorkOrderStatus.IN_PROGRESS},
                )
            entry_id = entry.id
    except IntegrityError:
        existing = _running_entry(db, user.id)
        if existing is None:
            raise
        logger.warning("Concurrent timer start for user %s; returning running timer %s", user.id, existing.id)
        return load_timer(db, existing.id)

    logger.info("Started timer %s for user %s on line item %s", entry_id, user.id, line_item_id)
    return load_timer(db, entry_id)


@dataclass(slots=True)
class WorkOrderTime:
    work_order_id: int
    wo_number: str
    customer_name: str
    total_seconds: int = 0
    entry_count: int = 0


@dataclass(slots=True)
class WeeklySummary:
    total_seconds: int
    start_of_week: datetime
    end_of_week: datetime
    entry_count: int
    work_order_summaries: List[WorkOrderTime] = field(default_factory=list)


def week_bounds(day: date) -> Tuple[datetime, datetime]:
    # Weeks run Sunday through Saturday.
    start = day - timedelta(days=(day.weekday() + 1) % 7)
    start_dt = datetime.combine(start, time.min)
    return start_dt, start_dt + timedelta(days=7)


def weekly_summary(db: Session, user: SessionUser, *, today: Optional[date] = None) -> WeeklySummary:
    start, end = week_bounds(today or datetime.utcnow().date())
    entries = (
        db.execute(
            select(TimeEntry)
            .options(joinedload(TimeEntry.work_order).joinedload(WorkOrder.customer))
            .where(
                TimeEntry.user_id == user.id,
                TimeEntry.started_at >= start,
                TimeEntry.started_at < end,
                TimeEntry.deleted_at.is_(None),
            )
            .order_by(TimeEntry.started_at.desc())
        )
        .scalars()
        .all()
    )

    by_order: Dict[int, WorkOrderTime] = {}
    total = 0
    for entry in entries:
        seconds = entry.duration_seconds or 0
        total += seconds
        bucket = by_order.get(entry.work_order_id)
        if bucket is None:
            order = entry.work_order
            bucket = WorkOrderTime(
                work_order_id=order.id,
                wo_number=order.wo_number,
                customer_name=order.customer.name,
            )
            by_order[entry.work_order_id] = bucket
        bucket.total_seconds += seconds
        bucket.entry_count += 1

    return WeeklySummary(
        total_seconds=total,
        start_of_week=start,
        end_of_week=end,
        entry_count=len(entries),
        work_order_summaries=sorted(by_order.values(), key=lambda b: b.total_seconds, reverse=True),
    )
