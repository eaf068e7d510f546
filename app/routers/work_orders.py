from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps.auth import require_admin, require_auth
from app.models.work import WorkOrderStatus
from app.schemas.auth import SessionUser
from app.schemas.work import (
    ApprovalResult,
    BoardOut,
    BoardStatusUpdate,
    LineItemCreate,
    LineItemOut,
    LockResult,
    OutOfServiceToggle,
    QcRejectRequest,
    WorkOrderDetailOut,
    WorkOrderListItemOut,
)
from app.services import approval as approval_service
from app.services import line_items as line_item_service
from app.services import work_orders as work_order_service
from app.services.export import export_work_order_csv

router = APIRouter(prefix="/api/work-orders", tags=["work-orders"])


@router.get("", response_model=List[WorkOrderListItemOut])
def list_work_orders(
    search: Optional[str] = None,
    status_filter: Optional[WorkOrderStatus] = Query(None, alias="status"),
    priority: Optional[int] = None,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    listings = work_order_service.list_work_orders(db, user, search=search, status=status_filter, priority=priority)
    return [WorkOrderListItemOut.model_validate(listing, from_attributes=True) for listing in listings]


@router.get("/board", response_model=BoardOut)
def board(db: Session = Depends(get_db), user: SessionUser = Depends(require_auth)):
    return BoardOut.model_validate({"columns": work_order_service.board(db, user)}, from_attributes=True)


@router.post("/{work_order_id}/line-items", response_model=LineItemOut, status_code=status.HTTP_201_CREATED)
def create_line_item(
    work_order_id: int,
    payload: LineItemCreate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    return line_item_service.create_line_item(
        db,
        user,
        work_order_id,
        description=payload.description,
        estimate_minutes=payload.estimate_minutes,
        billable=payload.billable,
        assigned_user_ids=payload.assigned_user_ids,
    )


@router.post("/{work_order_id}/approve", response_model=ApprovalResult)
def approve_time_entries(work_order_id: int, db: Session = Depends(get_db), admin: SessionUser = Depends(require_admin)):
    count = approval_service.approve_time_entries(db, admin, work_order_id)
    return ApprovalResult(approved_count=count)


@router.post("/{work_order_id}/lock", response_model=LockResult)
def lock_time_entries(work_order_id: int, db: Session = Depends(get_db), admin: SessionUser = Depends(require_admin)):
    count = approval_service.lock_time_entries(db, admin, work_order_id)
    return LockResult(locked_count=count)


@router.post("/{work_order_id}/qc-approve", response_model=WorkOrderDetailOut)
def qc_approve(work_order_id: int, db: Session = Depends(get_db), user: SessionUser = Depends(require_auth)):
    return work_order_service.qc_approve(db, user, work_order_id)


@router.post("/{work_order_id}/qc-reject", response_model=WorkOrderDetailOut)
def qc_reject(
    work_order_id: int,
    payload: QcRejectRequest,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    return work_order_service.qc_reject(db, user, work_order_id, payload.reason)


@router.post("/{work_order_id}/ready-to-bill", response_model=WorkOrderDetailOut)
def mark_ready_to_bill(work_order_id: int, db: Session = Depends(get_db), admin: SessionUser = Depends(require_admin)):
    return work_order_service.mark_ready_to_bill(db, admin, work_order_id)


@router.put("/{work_order_id}/board-status", response_model=WorkOrderDetailOut)
def move_on_board(
    work_order_id: int,
    payload: BoardStatusUpdate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    return work_order_service.move_on_board(
        db, user, work_order_id, payload.kanban_column, payload.kanban_position
    )


@router.post("/{work_order_id}/toggle-oos", response_model=WorkOrderDetailOut)
def toggle_out_of_service(
    work_order_id: int,
    payload: OutOfServiceToggle,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    return work_order_service.toggle_out_of_service(db, user, work_order_id, payload.is_out_of_service)


@router.get("/{work_order_id}/export.csv")
def export_csv(work_order_id: int, db: Session = Depends(get_db), admin: SessionUser = Depends(require_admin)):
    body = export_work_order_csv(db, admin, work_order_id)
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="work-order-{work_order_id}.csv"'},
    )
