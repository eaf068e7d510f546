from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, joinedload, selectinload

from app.db.session import lock_rows, transaction
from app.models.work import (
    UNAPPROVED_STATES,
    Customer,
    KanbanColumn,
    LineItem,
    LineItemAssignment,
    LineItemStatus,
    TimeEntry,
    WorkOrder,
    WorkOrderStatus,
)
from app.schemas.auth import SessionUser
from app.services.audit import WorkOrderActions, write_audit_log
from app.services.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from app.services.permissions import (
    can_review_qc,
    can_toggle_out_of_service,
    can_view_kanban,
    ensure_admin,
    is_admin,
)

logger = logging.getLogger(__name__)

MIN_REJECT_REASON_LENGTH = 10
DEFAULT_KANBAN_POSITION = 999


def _ensure_work_order(db: Session, work_order_id: int, *, lock: bool = False) -> WorkOrder:
    stmt = select(WorkOrder).where(WorkOrder.id == work_order_id)
    if lock:
        stmt = lock_rows(db, stmt)
    order = db.execute(stmt).scalars().first()
    if order is None:
        raise NotFoundError("Work order not found")
    return order


def load_work_order(db: Session, work_order_id: int) -> WorkOrder:
    stmt = (
        select(WorkOrder)
        .options(joinedload(WorkOrder.customer), joinedload(WorkOrder.qc_approved_by))
        .where(WorkOrder.id == work_order_id)
    )
    return db.execute(stmt).scalars().one()


def _ensure_in_qc(order: WorkOrder) -> None:
    if order.status != WorkOrderStatus.QC:
        raise InvalidStateError("Work order must be in QC status")


def count_unapproved_entries(db: Session, work_order_id: int) -> int:
    stmt = select(func.count(TimeEntry.id)).where(
        TimeEntry.work_order_id == work_order_id,
        TimeEntry.deleted_at.is_(None),
        TimeEntry.approval_state.in_(UNAPPROVED_STATES),
    )
    return int(db.scalar(stmt) or 0)


def qc_approve(
    db: Session,
    actor: SessionUser,
    work_order_id: int,
    *,
    now: Optional[datetime] = None,
) -> WorkOrder:
    """QC sign-off: QC -> READY_TO_BILL, with the board column following the status."""
    if not can_review_qc(actor):
        raise ForbiddenError("Only admins and managers can review QC")

    with transaction(db):
        order = _ensure_work_order(db, work_order_id, lock=True)
        _ensure_in_qc(order)

        approved_at = now or datetime.utcnow()
        order.status = WorkOrderStatus.READY_TO_BILL
        order.kanban_column = KanbanColumn.READY_TO_BILL
        order.qc_approved_by_id = actor.id
        order.qc_approved_at = approved_at
        order.qc_rejected_reason = None
        db.add(order)
        write_audit_log(
            db,
            entity_type="WorkOrder",
            entity_id=order.id,
            action=WorkOrderActions.QC_APPROVE,
            actor_id=actor.id,
            after={
                "status": WorkOrderStatus.READY_TO_BILL,
                "qc_approved_by_id": actor.id,
                "qc_approved_at": approved_at,
            },
        )

    logger.info("Work order %s passed QC (reviewer %s)", work_order_id, actor.id)
    return load_work_order(db, work_order_id)


def qc_reject(db: Session, actor: SessionUser, work_order_id: int, reason: Optional[str]) -> WorkOrder:
    """QC rejection: QC -> IN_PROGRESS, clearing any earlier approval stamp."""
    if not can_review_qc(actor):
        raise ForbiddenError("Only admins and managers can review QC")
    if not reason or len(reason.strip()) < MIN_REJECT_REASON_LENGTH:
        raise ValidationError(f"Rejection reason must be at least {MIN_REJECT_REASON_LENGTH} characters")

    with transaction(db):
        order = _ensure_work_order(db, work_order_id, lock=True)
        _ensure_in_qc(order)

        order.status = WorkOrderStatus.IN_PROGRESS
        order.kanban_column = KanbanColumn.IN_PROGRESS
        order.qc_rejected_reason = reason
        order.qc_approved_by_id = None
        order.qc_approved_at = None
        db.add(order)
        write_audit_log(
            db,
            entity_type="WorkOrder",
            entity_id=order.id,
            action=WorkOrderActions.QC_REJECT,
            actor_id=actor.id,
            before={"status": WorkOrderStatus.QC},
            after={"status": WorkOrderStatus.IN_PROGRESS, "qc_rejected_reason": reason},
        )

    logger.info("Work order %s rejected in QC (reviewer %s)", work_order_id, actor.id)
    return load_work_order(db, work_order_id)


def mark_ready_to_bill(db: Session, admin: SessionUser, work_order_id: int) -> WorkOrder:
    """
    Billing path that bypasses QC: any status -> READY_TO_BILL once all live time is approved.

    Only the status moves; kanban_column is left where it was, unlike qc_approve.
    """
    ensure_admin(admin)

    with transaction(db):
        order = _ensure_work_order(db, work_order_id, lock=True)
        pending = count_unapproved_entries(db, work_order_id)
        if pending > 0:
            raise ConflictError(f"Cannot mark as ready to bill: {pending} time entries are not approved")

        previous = order.status
        order.status = WorkOrderStatus.READY_TO_BILL
        db.add(order)
        write_audit_log(
            db,
            entity_type="WorkOrder",
            entity_id=order.id,
            action=WorkOrderActions.MARK_READY_TO_BILL,
            actor_id=admin.id,
            before={"status": previous},
            after={"status": WorkOrderStatus.READY_TO_BILL},
        )

    logger.info("Work order %s marked ready to bill (admin %s)", work_order_id, admin.id)
    return load_work_order(db, work_order_id)


def move_on_board(
    db: Session,
    user: SessionUser,
    work_order_id: int,
    kanban_column: KanbanColumn,
    kanban_position: Optional[int] = None,
) -> WorkOrder:
    if not can_view_kanban(user):
        raise ForbiddenError("Forbidden - Kanban board access required")

    with transaction(db):
        order = _ensure_work_order(db, work_order_id, lock=True)
        before = {
            "kanban_column": order.kanban_column,
            "kanban_position": order.kanban_position,
            "status": order.status,
        }
        column = KanbanColumn(kanban_column)
        order.kanban_column = column
        order.kanban_position = kanban_position or DEFAULT_KANBAN_POSITION
        order.status = WorkOrderStatus(column.value)
        db.add(order)
        write_audit_log(
            db,
            entity_type="WorkOrder",
            entity_id=order.id,
            action=WorkOrderActions.KANBAN_MOVE,
            actor_id=user.id,
            before=before,
            after={
                "kanban_column": order.kanban_column,
                "kanban_position": order.kanban_position,
                "status": order.status,
            },
        )
    return load_work_order(db, work_order_id)


def toggle_out_of_service(db: Session, user: SessionUser, work_order_id: int, is_out_of_service: bool) -> WorkOrder:
    if not can_toggle_out_of_service(user):
        raise ForbiddenError("Forbidden")

    with transaction(db):
        order = _ensure_work_order(db, work_order_id, lock=True)
        before = {"is_out_of_service": order.is_out_of_service}
        order.is_out_of_service = bool(is_out_of_service)
        db.add(order)
        write_audit_log(
            db,
            entity_type="WorkOrder",
            entity_id=order.id,
            action=WorkOrderActions.TOGGLE_OOS,
            actor_id=user.id,
            before=before,
            after={"is_out_of_service": order.is_out_of_service},
        )
    return load_work_order(db, work_order_id)


@dataclass(slots=True)
class WorkOrderListing:
    work_order: WorkOrder
    line_items: List[LineItem]
    time_entry_count: int


def list_work_orders(
    db: Session,
    user: SessionUser,
    *,
    search: Optional[str] = None,
    status: Optional[WorkOrderStatus] = None,
    priority: Optional[int] = None,
) -> List[WorkOrderListing]:
    """
    Work orders newest first. Admins see every order and line item; everyone
    else sees only orders they are assigned on, with just their own line items.
    """
    stmt = (
        select(WorkOrder)
        .join(Customer, WorkOrder.customer_id == Customer.id)
        .options(joinedload(WorkOrder.customer), selectinload(WorkOrder.line_items))
    )
    if status is not None:
        stmt = stmt.where(WorkOrder.status == status)
    if priority is not None:
        stmt = stmt.where(WorkOrder.priority == priority)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(or_(func.lower(WorkOrder.wo_number).like(pattern), func.lower(Customer.name).like(pattern)))

    admin_view = is_admin(user)
    if not admin_view:
        stmt = stmt.where(
            WorkOrder.line_items.any(LineItem.assignments.any(LineItemAssignment.user_id == user.id))
        )
    orders = db.execute(stmt.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc())).scalars().unique().all()

    counts = dict(
        db.execute(
            select(TimeEntry.work_order_id, func.count(TimeEntry.id))
            .where(TimeEntry.work_order_id.in_([order.id for order in orders]))
            .group_by(TimeEntry.work_order_id)
        ).all()
    )
    listings: List[WorkOrderListing] = []
    for order in orders:
        items = [
            li
            for li in order.line_items
            if li.deleted_at is None and (admin_view or any(a.user_id == user.id for a in li.assignments))
        ]
        listings.append(WorkOrderListing(work_order=order, line_items=items, time_entry_count=counts.get(order.id, 0)))
    return listings


@dataclass(slots=True)
class BoardTech:
    id: int
    name: str


@dataclass(slots=True)
class BoardCard:
    id: int
    wo_number: str
    customer_id: int
    customer_name: str
    status: WorkOrderStatus
    priority: int
    kanban_position: int
    is_out_of_service: bool
    progress_done: int
    progress_total: int
    total_hours: float
    assigned_techs: List[BoardTech] = field(default_factory=list)


def board(db: Session, user: SessionUser) -> Dict[KanbanColumn, List[BoardCard]]:
    """Open work grouped by kanban column, each column ordered by position."""
    if not can_view_kanban(user):
        raise ForbiddenError("Forbidden - Kanban board access required")

    orders = (
        db.execute(
            select(WorkOrder)
            .options(
                joinedload(WorkOrder.customer),
                selectinload(WorkOrder.line_items)
                .selectinload(LineItem.assignments)
                .joinedload(LineItemAssignment.user),
            )
            .where(WorkOrder.status != WorkOrderStatus.CLOSED)
            .order_by(WorkOrder.kanban_position.asc(), WorkOrder.id.asc())
        )
        .scalars()
        .unique()
        .all()
    )
    seconds_by_order = dict(
        db.execute(
            select(TimeEntry.work_order_id, func.coalesce(func.sum(TimeEntry.duration_seconds), 0))
            .where(TimeEntry.deleted_at.is_(None))
            .group_by(TimeEntry.work_order_id)
        ).all()
    )

    columns: Dict[KanbanColumn, List[BoardCard]] = {column: [] for column in KanbanColumn}
    for order in orders:
        live_items = [li for li in order.line_items if li.deleted_at is None]
        techs: Dict[int, BoardTech] = {}
        for line_item in live_items:
            for assignment in line_item.assignments:
                techs.setdefault(assignment.user_id, BoardTech(id=assignment.user.id, name=assignment.user.name))
        columns[order.kanban_column].append(
            BoardCard(
                id=order.id,
                wo_number=order.wo_number,
                customer_id=order.customer_id,
                customer_name=order.customer.name,
                status=order.status,
                priority=order.priority,
                kanban_position=order.kanban_position,
                is_out_of_service=order.is_out_of_service,
                progress_done=sum(1 for li in live_items if li.status == LineItemStatus.DONE),
                progress_total=len(live_items),
                total_hours=seconds_by_order.get(order.id, 0) / 3600,
                assigned_techs=list(techs.values()),
            )
        )
    return columns
