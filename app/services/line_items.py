from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.db.session import transaction
from app.models.user import User
from app.models.work import (
    LineItem,
    LineItemAssignment,
    LineItemStatus,
    TimeEntry,
    WorkOrder,
)
from app.schemas.auth import SessionUser
from app.services.audit import LineItemActions, TimeEntryActions, write_audit_log
from app.services.errors import ForbiddenError, NotFoundError, ValidationError
from app.services.permissions import can_manage_work_orders
from app.services.timer import close_entry

logger = logging.getLogger(__name__)


def _assigned_to(user_id: int):
    return LineItem.assignments.any(LineItemAssignment.user_id == user_id)


def mark_done(
    db: Session,
    user: SessionUser,
    line_item_id: int,
    *,
    now: Optional[datetime] = None,
) -> LineItem:
    """
    Mark an assigned line item DONE, stopping the caller's timer on it first.

    Callers who are not assigned get the same 404 as a missing line item. The
    timer stop and the status change commit as one unit.
    """
    line_item = db.execute(
        select(LineItem).where(LineItem.id == line_item_id, _assigned_to(user.id))
    ).scalars().first()
    if line_item is None:
        raise NotFoundError("Line item not found or not assigned to you")

    with transaction(db):
        running = (
            db.execute(
                select(TimeEntry).where(
                    TimeEntry.user_id == user.id,
                    TimeEntry.line_item_id == line_item.id,
                    TimeEntry.ended_at.is_(None),
                )
            )
            .scalars()
            .first()
        )
        if running is not None:
            seconds = close_entry(running, now or datetime.utcnow())
            db.add(running)
            write_audit_log(
                db,
                entity_type="TimeEntry",
                entity_id=running.id,
                action=TimeEntryActions.AUTO_STOP,
                actor_id=user.id,
                after={"duration_seconds": seconds, "reason": "Line item marked done"},
            )

        previous = line_item.status
        line_item.status = LineItemStatus.DONE
        db.add(line_item)
        write_audit_log(
            db,
            entity_type="LineItem",
            entity_id=line_item.id,
            action=LineItemActions.MARK_DONE,
            actor_id=user.id,
            before={"status": previous},
            after={"status": LineItemStatus.DONE},
        )

    logger.info("Line item %s marked done by user %s", line_item_id, user.id)
    db.refresh(line_item)
    return line_item


@dataclass(slots=True)
class MyWorkItem:
    line_item: LineItem
    work_order: WorkOrder
    last_time_entry: Optional[TimeEntry]


def my_work(db: Session, user: SessionUser) -> List[MyWorkItem]:
    rows = (
        db.execute(
            select(LineItem)
            .join(WorkOrder, LineItem.work_order_id == WorkOrder.id)
            .options(joinedload(LineItem.work_order).joinedload(WorkOrder.customer))
            .where(
                LineItem.status == LineItemStatus.OPEN,
                LineItem.deleted_at.is_(None),
                _assigned_to(user.id),
            )
            .order_by(WorkOrder.priority.asc(), LineItem.sort_order.asc(), LineItem.id.asc())
        )
        .scalars()
        .all()
    )
    items: List[MyWorkItem] = []
    for line_item in rows:
        last_entry = (
            db.execute(
                select(TimeEntry)
                .where(TimeEntry.line_item_id == line_item.id, TimeEntry.user_id == user.id)
                .order_by(TimeEntry.started_at.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )
        items.append(MyWorkItem(line_item=line_item, work_order=line_item.work_order, last_time_entry=last_entry))
    return items


@dataclass(slots=True)
class LineItemCounts:
    open_count: int
    done_count: int
    total_count: int


def my_counts(db: Session, user: SessionUser) -> LineItemCounts:
    def _count(status: Optional[LineItemStatus]) -> int:
        stmt = select(func.count(LineItem.id)).where(LineItem.deleted_at.is_(None), _assigned_to(user.id))
        if status is not None:
            stmt = stmt.where(LineItem.status == status)
        return int(db.scalar(stmt) or 0)

    return LineItemCounts(
        open_count=_count(LineItemStatus.OPEN),
        done_count=_count(LineItemStatus.DONE),
        total_count=_count(None),
    )


def create_line_item(
    db: Session,
    user: SessionUser,
    work_order_id: int,
    *,
    description: str,
    estimate_minutes: Optional[int] = None,
    billable: bool = True,
    assigned_user_ids: Iterable[int] = (),
) -> LineItem:
    description = (description or "").strip()
    if not description:
        raise ValidationError("Description is required")
    if db.get(WorkOrder, work_order_id) is None:
        raise NotFoundError("Work order not found")

    assignees = list(dict.fromkeys(assigned_user_ids))
    with transaction(db):
        last_sort = db.scalar(select(func.max(LineItem.sort_order)).where(LineItem.work_order_id == work_order_id))
        line_item = LineItem(
            work_order_id=work_order_id,
            description=description,
            estimate_minutes=estimate_minutes,
            billable=billable,
            sort_order=(last_sort or 0) + 1,
            status=LineItemStatus.OPEN,
        )
        db.add(line_item)
        db.flush()
        for assignee_id in assignees:
            db.add(LineItemAssignment(line_item_id=line_item.id, user_id=assignee_id))
        write_audit_log(
            db,
            entity_type="LineItem",
            entity_id=line_item.id,
            action=LineItemActions.CREATE,
            actor_id=user.id,
            after={
                "description": description,
                "estimate_minutes": estimate_minutes,
                "billable": billable,
                "assigned_user_ids": assignees,
            },
        )
    db.refresh(line_item)
    return line_item


def assign_technician(db: Session, user: SessionUser, line_item_id: int, tech_id: int) -> LineItemAssignment:
    if not can_manage_work_orders(user):
        raise ForbiddenError("Forbidden - Work order management access required")
    if db.get(LineItem, line_item_id) is None:
        raise NotFoundError("Line item not found")
    if db.get(User, tech_id) is None:
        raise NotFoundError("User not found")
    existing = db.scalar(
        select(LineItemAssignment).where(
            LineItemAssignment.line_item_id == line_item_id, LineItemAssignment.user_id == tech_id
        )
    )
    if existing is not None:
        raise ValidationError("Technician is already assigned to this line item")

    try:
        with transaction(db):
            assignment = LineItemAssignment(line_item_id=line_item_id, user_id=tech_id)
            db.add(assignment)
            db.flush()
            write_audit_log(
                db,
                entity_type="LineItemAssignment",
                entity_id=assignment.id,
                action=LineItemActions.ASSIGN,
                actor_id=user.id,
                after={"line_item_id": line_item_id, "user_id": tech_id},
            )
    except IntegrityError as exc:
        raise ValidationError("Technician is already assigned to this line item") from exc

    return db.execute(
        select(LineItemAssignment)
        .options(joinedload(LineItemAssignment.user))
        .where(LineItemAssignment.id == assignment.id)
    ).scalars().one()


def unassign_technician(db: Session, user: SessionUser, line_item_id: int, tech_id: int) -> None:
    if not can_manage_work_orders(user):
        raise ForbiddenError("Forbidden - Work order management access required")
    assignment = db.scalar(
        select(LineItemAssignment).where(
            LineItemAssignment.line_item_id == line_item_id, LineItemAssignment.user_id == tech_id
        )
    )
    if assignment is None:
        raise NotFoundError("Assignment not found")

    with transaction(db):
        write_audit_log(
            db,
            entity_type="LineItemAssignment",
            entity_id=assignment.id,
            action=LineItemActions.UNASSIGN,
            actor_id=user.id,
            before={"line_item_id": line_item_id, "user_id": tech_id},
        )
        db.delete(assignment)
