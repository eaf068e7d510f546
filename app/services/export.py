from __future__ import annotations

import csv
import io
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from app.models.work import ApprovalState, TimeEntry, WorkOrder
from app.schemas.auth import SessionUser
from app.services.errors import NotFoundError
from app.services.permissions import ensure_admin

BILLED_STATES = (ApprovalState.APPROVED, ApprovalState.LOCKED)
CSV_HEADER = ["WO Number", "Customer", "Line Item Description", "Total Hours", "Rate", "Memo"]


def seconds_to_hours(seconds: int) -> str:
    hours = Decimal(seconds) / Decimal(3600)
    return str(hours.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def format_minutes(minutes: Optional[int]) -> str:
    if minutes is None:
        return "0h 0m"
    sign = "-" if minutes < 0 else ""
    hours, mins = divmod(abs(minutes), 60)
    return f"{sign}{hours}h {mins}m"


def _memo(entries: List[TimeEntry]) -> str:
    techs = ", ".join(dict.fromkeys(entry.user.name for entry in entries))
    notes = "; ".join(entry.notes for entry in entries if entry.notes)
    parts = []
    if techs:
        parts.append(f"Techs: {techs}")
    if notes:
        parts.append(notes)
    return ". ".join(parts)


def export_work_order_csv(db: Session, admin: SessionUser, work_order_id: int) -> str:
    """
    Billing sheet for one work order: approved hours per billable line item.

    Draft or submitted time is not billable yet and never appears here.
    """
    ensure_admin(admin)
    order = (
        db.execute(
            select(WorkOrder).options(joinedload(WorkOrder.customer)).where(WorkOrder.id == work_order_id)
        )
        .scalars()
        .first()
    )
    if order is None:
        raise NotFoundError("Work order not found")

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for line_item in order.line_items:
        if not line_item.billable or line_item.deleted_at is not None:
            continue
        entries = (
            db.execute(
                select(TimeEntry)
                .options(joinedload(TimeEntry.user))
                .where(
                    TimeEntry.line_item_id == line_item.id,
                    TimeEntry.deleted_at.is_(None),
                    TimeEntry.approval_state.in_(BILLED_STATES),
                )
                .order_by(TimeEntry.started_at.asc())
            )
            .scalars()
            .all()
        )
        total_seconds = sum(entry.duration_seconds or 0 for entry in entries)
        writer.writerow(
            [
                order.wo_number,
                order.customer.name,
                line_item.description,
                seconds_to_hours(total_seconds),
                "",
                _memo(list(entries)),
            ]
        )
    return buffer.getvalue()
