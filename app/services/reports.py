from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session, joinedload, selectinload

from app.models.user import User, UserRole
from app.models.work import (
    UNAPPROVED_STATES,
    ApprovalState,
    LineItem,
    LineItemStatus,
    TimeEntry,
    WorkOrder,
    WorkOrderStatus,
)
from app.schemas.auth import SessionUser
from app.services.errors import ForbiddenError
from app.services.permissions import can_view_reports, can_view_tech_performance, ensure_admin

logger = logging.getLogger(__name__)

STALE_TIMER_AFTER = timedelta(hours=8)
EXCEPTION_LIMIT = 50

# Upper bound (inclusive, in whole days) for each WIP age bucket; anything older is CRITICAL.
AGE_BUCKETS = (
    (2, "NEW"),
    (7, "RECENT"),
    (14, "AGING"),
    (30, "STALE"),
)
CRITICAL = "CRITICAL"


def _percent(part: float, whole: float) -> float:
    if not whole:
        return 0.0
    return round(part / whole * 100, 1)


def _live_seconds(entries) -> int:
    return sum(e.duration_seconds or 0 for e in entries if e.deleted_at is None)


@dataclass(slots=True)
class PendingBillingOrder:
    work_order: WorkOrder
    entries: List[TimeEntry]


@dataclass(slots=True)
class ExceptionsReport:
    stale_timers: List[TimeEntry] = field(default_factory=list)
    ready_to_bill_with_pending: List[PendingBillingOrder] = field(default_factory=list)
    edited_after_approval: List[TimeEntry] = field(default_factory=list)
    done_without_time: List[LineItem] = field(default_factory=list)
    orphaned_entries: List[TimeEntry] = field(default_factory=list)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "stale_timers": len(self.stale_timers),
            "ready_to_bill_with_pending": len(self.ready_to_bill_with_pending),
            "edited_after_approval": len(self.edited_after_approval),
            "done_without_time": len(self.done_without_time),
            "orphaned_entries": len(self.orphaned_entries),
        }


def _entry_context(stmt):
    return stmt.options(
        joinedload(TimeEntry.user),
        joinedload(TimeEntry.work_order).joinedload(WorkOrder.customer),
        joinedload(TimeEntry.line_item),
    )


def admin_exceptions(db: Session, admin: SessionUser, *, now: Optional[datetime] = None) -> ExceptionsReport:
    """
    Records an admin should look at before billing.

    Timers left running past ``STALE_TIMER_AFTER``, ready-to-bill orders that
    still carry unapproved time, approved time edited afterwards, finished line
    items with no recorded time, and live entries whose line item was deleted.
    """
    ensure_admin(admin)
    now = now or datetime.utcnow()

    stale = (
        db.execute(
            _entry_context(select(TimeEntry))
            .where(
                TimeEntry.ended_at.is_(None),
                TimeEntry.deleted_at.is_(None),
                TimeEntry.started_at < now - STALE_TIMER_AFTER,
            )
            .order_by(TimeEntry.started_at.asc())
        )
        .scalars()
        .all()
    )

    pending_orders = (
        db.execute(
            select(WorkOrder)
            .options(joinedload(WorkOrder.customer), selectinload(WorkOrder.time_entries))
            .where(
                WorkOrder.status == WorkOrderStatus.READY_TO_BILL,
                WorkOrder.time_entries.any(
                    and_(TimeEntry.deleted_at.is_(None), TimeEntry.approval_state.in_(UNAPPROVED_STATES))
                ),
            )
            .order_by(WorkOrder.id.asc())
        )
        .scalars()
        .unique()
        .all()
    )
    pending = [
        PendingBillingOrder(
            work_order=order,
            entries=[
                e for e in order.time_entries if e.deleted_at is None and e.approval_state in UNAPPROVED_STATES
            ],
        )
        for order in pending_orders
    ]

    edited = (
        db.execute(
            _entry_context(select(TimeEntry))
            .where(
                TimeEntry.deleted_at.is_(None),
                TimeEntry.edited_at.is_not(None),
                TimeEntry.approval_state.in_((ApprovalState.APPROVED, ApprovalState.LOCKED)),
            )
            .order_by(TimeEntry.edited_at.desc())
            .limit(EXCEPTION_LIMIT)
        )
        .scalars()
        .all()
    )

    has_time = exists().where(
        TimeEntry.line_item_id == LineItem.id,
        TimeEntry.deleted_at.is_(None),
        TimeEntry.duration_seconds > 0,
    )
    done_without_time = (
        db.execute(
            select(LineItem)
            .options(joinedload(LineItem.work_order).joinedload(WorkOrder.customer))
            .where(LineItem.status == LineItemStatus.DONE, LineItem.deleted_at.is_(None), ~has_time)
            .order_by(LineItem.id.asc())
            .limit(EXCEPTION_LIMIT)
        )
        .scalars()
        .all()
    )

    orphaned = (
        db.execute(
            _entry_context(select(TimeEntry))
            .join(LineItem, TimeEntry.line_item_id == LineItem.id)
            .where(TimeEntry.deleted_at.is_(None), LineItem.deleted_at.is_not(None))
            .order_by(TimeEntry.started_at.asc())
            .limit(EXCEPTION_LIMIT)
        )
        .scalars()
        .all()
    )

    report = ExceptionsReport(
        stale_timers=list(stale),
        ready_to_bill_with_pending=pending,
        edited_after_approval=list(edited),
        done_without_time=list(done_without_time),
        orphaned_entries=list(orphaned),
    )
    logger.info("Exceptions report for admin %s: %s", admin.id, report.counts)
    return report


def age_category(age_in_days: int) -> str:
    for upper, label in AGE_BUCKETS:
        if age_in_days <= upper:
            return label
    return CRITICAL


@dataclass(slots=True)
class WipAgingRow:
    work_order: WorkOrder
    age_in_days: int
    age_category: str
    progress_done: int
    progress_total: int
    progress_percent: int


@dataclass(slots=True)
class WipAgingReport:
    work_orders: List[WipAgingRow]
    total_wip: int
    average_age: float
    oldest_wo: Optional[WipAgingRow]
    aging_stats: Dict[str, int]


def wip_aging(db: Session, user: SessionUser, *, now: Optional[datetime] = None) -> WipAgingReport:
    """Every order not yet closed, oldest first, bucketed by age."""
    if not can_view_reports(user):
        raise ForbiddenError("Forbidden - Report access required")
    now = now or datetime.utcnow()

    orders = (
        db.execute(
            select(WorkOrder)
            .options(joinedload(WorkOrder.customer), selectinload(WorkOrder.line_items))
            .where(WorkOrder.status != WorkOrderStatus.CLOSED)
            .order_by(WorkOrder.created_at.asc(), WorkOrder.id.asc())
        )
        .scalars()
        .unique()
        .all()
    )

    rows: List[WipAgingRow] = []
    for order in orders:
        age = int((now - order.created_at).total_seconds() // 86400)
        live_items = [li for li in order.line_items if li.deleted_at is None]
        done = sum(1 for li in live_items if li.status == LineItemStatus.DONE)
        rows.append(
            WipAgingRow(
                work_order=order,
                age_in_days=age,
                age_category=age_category(age),
                progress_done=done,
                progress_total=len(live_items),
                progress_percent=round(done / len(live_items) * 100) if live_items else 0,
            )
        )

    stats = {label: 0 for _, label in AGE_BUCKETS}
    stats[CRITICAL] = 0
    for row in rows:
        stats[row.age_category] += 1

    return WipAgingReport(
        work_orders=rows,
        total_wip=len(rows),
        average_age=round(sum(r.age_in_days for r in rows) / len(rows), 1) if rows else 0.0,
        oldest_wo=rows[0] if rows else None,
        aging_stats=stats,
    )


@dataclass(slots=True)
class EstimateRow:
    work_order: WorkOrder
    estimate_minutes: int
    actual_minutes: int
    variance_minutes: int
    variance_percent: float
    efficiency: float


@dataclass(slots=True)
class EstimateReport:
    work_orders: List[EstimateRow]
    total_estimate_minutes: int
    total_actual_minutes: int
    total_variance_minutes: int
    over_estimate: int
    under_estimate: int
    on_target: int
    average_efficiency: float


def _line_item_minutes(line_item: LineItem) -> int:
    return _live_seconds(line_item.time_entries) // 60


def actual_vs_estimated(
    db: Session,
    user: SessionUser,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    status: Optional[WorkOrderStatus] = None,
) -> EstimateReport:
    """
    Estimated against recorded minutes per work order.

    Actual minutes are floored per line item, so a line item with 90 seconds
    of time counts as one minute.
    """
    if not can_view_reports(user):
        raise ForbiddenError("Forbidden - Report access required")

    stmt = select(WorkOrder).options(
        joinedload(WorkOrder.customer),
        selectinload(WorkOrder.line_items).selectinload(LineItem.time_entries),
    )
    if start is not None:
        stmt = stmt.where(WorkOrder.created_at >= start)
    if end is not None:
        stmt = stmt.where(WorkOrder.created_at <= end)
    if status is not None:
        stmt = stmt.where(WorkOrder.status == status)
    orders = db.execute(stmt.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc())).scalars().unique().all()

    rows: List[EstimateRow] = []
    for order in orders:
        live_items = [li for li in order.line_items if li.deleted_at is None]
        estimate = sum(li.estimate_minutes or 0 for li in live_items)
        actual = sum(_line_item_minutes(li) for li in live_items)
        rows.append(
            EstimateRow(
                work_order=order,
                estimate_minutes=estimate,
                actual_minutes=actual,
                variance_minutes=actual - estimate,
                variance_percent=_percent(actual - estimate, estimate),
                efficiency=_percent(actual, estimate),
            )
        )

    total_estimate = sum(r.estimate_minutes for r in rows)
    total_actual = sum(r.actual_minutes for r in rows)
    rated = [r.efficiency for r in rows]
    return EstimateReport(
        work_orders=rows,
        total_estimate_minutes=total_estimate,
        total_actual_minutes=total_actual,
        total_variance_minutes=total_actual - total_estimate,
        over_estimate=sum(1 for r in rows if r.variance_minutes > 0),
        under_estimate=sum(1 for r in rows if r.variance_minutes < 0),
        on_target=sum(1 for r in rows if r.variance_minutes == 0),
        average_efficiency=round(sum(rated) / len(rated), 1) if rated else 0.0,
    )


@dataclass(slots=True)
class TechPerformanceRow:
    user_id: int
    name: str
    email: str
    total_hours: float
    total_minutes: int
    entry_count: int
    approved_entries: int
    pending_entries: int
    work_order_count: int
    line_item_count: int
    estimate_minutes: int
    actual_minutes: int
    efficiency: float
    variance_minutes: int


@dataclass(slots=True)
class TechPerformanceReport:
    techs: List[TechPerformanceRow]
    total_hours: float
    total_entries: int
    average_efficiency: float
    most_efficient: Optional[TechPerformanceRow]
    most_productive: Optional[TechPerformanceRow]


def tech_performance(
    db: Session,
    user: SessionUser,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> TechPerformanceReport:
    """Completed, live time per active technician, most minutes first."""
    if not can_view_tech_performance(user):
        raise ForbiddenError("Forbidden - Manager access required")

    techs = (
        db.execute(
            select(User).where(User.role == UserRole.TECH, User.active.is_(True)).order_by(User.name.asc())
        )
        .scalars()
        .all()
    )
    stmt = (
        select(TimeEntry)
        .options(joinedload(TimeEntry.line_item))
        .where(
            TimeEntry.user_id.in_([t.id for t in techs]),
            TimeEntry.ended_at.is_not(None),
            TimeEntry.deleted_at.is_(None),
        )
    )
    if start is not None:
        stmt = stmt.where(TimeEntry.started_at >= start)
    if end is not None:
        stmt = stmt.where(TimeEntry.started_at <= end)

    by_user: Dict[int, List[TimeEntry]] = defaultdict(list)
    for entry in db.execute(stmt).scalars().all():
        by_user[entry.user_id].append(entry)

    rows: List[TechPerformanceRow] = []
    for tech in techs:
        entries = by_user.get(tech.id, [])
        seconds = sum(e.duration_seconds or 0 for e in entries)

        seconds_by_item: Dict[int, int] = defaultdict(int)
        line_items: Dict[int, LineItem] = {}
        for entry in entries:
            if entry.line_item_id is None:
                continue
            seconds_by_item[entry.line_item_id] += entry.duration_seconds or 0
            line_items[entry.line_item_id] = entry.line_item
        estimate = sum(li.estimate_minutes or 0 for li in line_items.values())
        actual = sum(s // 60 for s in seconds_by_item.values())

        rows.append(
            TechPerformanceRow(
                user_id=tech.id,
                name=tech.name,
                email=tech.email,
                total_hours=round(seconds / 3600, 2),
                total_minutes=seconds // 60,
                entry_count=len(entries),
                approved_entries=sum(
                    1 for e in entries if e.approval_state in (ApprovalState.APPROVED, ApprovalState.LOCKED)
                ),
                pending_entries=sum(1 for e in entries if e.approval_state in UNAPPROVED_STATES),
                work_order_count=len({e.work_order_id for e in entries}),
                line_item_count=len(line_items),
                estimate_minutes=estimate,
                actual_minutes=actual,
                efficiency=_percent(actual, estimate),
                variance_minutes=actual - estimate,
            )
        )

    rows.sort(key=lambda r: r.total_minutes, reverse=True)
    # Efficiency is actual over estimate, so the lowest rated tech is the most efficient.
    rated = [r for r in rows if r.estimate_minutes > 0]
    return TechPerformanceReport(
        techs=rows,
        total_hours=round(sum(r.total_hours for r in rows), 2),
        total_entries=sum(r.entry_count for r in rows),
        average_efficiency=round(sum(r.efficiency for r in rows) / len(rows), 1) if rows else 0.0,
        most_efficient=min(rated, key=lambda r: r.efficiency) if rated else None,
        most_productive=rows[0] if rows and rows[0].total_minutes > 0 else None,
    )
