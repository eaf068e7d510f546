from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, conint, constr

from app.models.work import ApprovalState, KanbanColumn, LineItemStatus, WorkOrderStatus


class CustomerOut(BaseModel):
    id: int
    name: str
    email: Optional[str]
    phone: Optional[str]

    class Config:
        from_attributes = True


class UserSummary(BaseModel):
    id: int
    name: str
    email: str

    class Config:
        from_attributes = True


class WorkOrderOut(BaseModel):
    id: int
    wo_number: str
    customer_id: int
    title: str
    description: Optional[str]
    status: WorkOrderStatus
    kanban_column: KanbanColumn
    kanban_position: int
    priority: int
    is_out_of_service: bool
    qc_approved_by_id: Optional[int]
    qc_approved_at: Optional[datetime]
    qc_rejected_reason: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WorkOrderDetailOut(WorkOrderOut):
    customer: CustomerOut


class LineItemOut(BaseModel):
    id: int
    work_order_id: int
    description: str
    estimate_minutes: Optional[int]
    billable: bool
    status: LineItemStatus
    sort_order: int
    deleted_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class LineItemCreate(BaseModel):
    description: constr(strip_whitespace=True, min_length=1)
    estimate_minutes: Optional[conint(ge=0)] = None
    billable: bool = True
    assigned_user_ids: List[int] = Field(default_factory=list)


class AssignmentCreate(BaseModel):
    user_id: int


class AssignmentOut(BaseModel):
    id: int
    line_item_id: int
    user_id: int
    created_at: datetime
    user: UserSummary

    class Config:
        from_attributes = True


class TimeEntryOut(BaseModel):
    id: int
    user_id: int
    work_order_id: int
    line_item_id: Optional[int]
    started_at: datetime
    ended_at: Optional[datetime]
    duration_seconds: Optional[int]
    approval_state: ApprovalState
    approved_by_id: Optional[int]
    approved_at: Optional[datetime]
    notes: Optional[str]
    pause_reason: Optional[str]
    is_goodwill: bool
    edited_reason: Optional[str]
    edited_at: Optional[datetime]
    deleted_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class TimerOut(TimeEntryOut):
    """A time entry joined with its work order, customer and line item."""

    work_order: WorkOrderDetailOut
    line_item: Optional[LineItemOut]


class TimerStartRequest(BaseModel):
    line_item_id: int


class TimerStopRequest(BaseModel):
    notes: Optional[str] = None
    pause_reason: Optional[str] = None
    is_goodwill: Optional[bool] = None


class WorkOrderTimeSummary(BaseModel):
    work_order_id: int
    wo_number: str
    customer_name: str
    total_seconds: int
    entry_count: int

    class Config:
        from_attributes = True


class WeeklySummaryOut(BaseModel):
    total_seconds: int
    start_of_week: datetime
    end_of_week: datetime
    entry_count: int
    work_order_summaries: List[WorkOrderTimeSummary]

    class Config:
        from_attributes = True


class MyWorkItemOut(BaseModel):
    line_item: LineItemOut
    work_order: WorkOrderDetailOut
    last_time_entry: Optional[TimeEntryOut]

    class Config:
        from_attributes = True


class LineItemCountsOut(BaseModel):
    open_count: int
    done_count: int
    total_count: int

    class Config:
        from_attributes = True


class WorkOrderListItemOut(BaseModel):
    work_order: WorkOrderDetailOut
    line_items: List[LineItemOut]
    time_entry_count: int

    class Config:
        from_attributes = True


class BoardTechOut(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class BoardCardOut(BaseModel):
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
    assigned_techs: List[BoardTechOut]

    class Config:
        from_attributes = True


class BoardOut(BaseModel):
    columns: Dict[KanbanColumn, List[BoardCardOut]]

    class Config:
        from_attributes = True


class ApprovalResult(BaseModel):
    success: bool = True
    approved_count: int


class LockResult(BaseModel):
    success: bool = True
    locked_count: int


class QcRejectRequest(BaseModel):
    # Length is checked by the workflow so a short reason maps to a 400, not a 422.
    reason: str = ""


class BoardStatusUpdate(BaseModel):
    kanban_column: KanbanColumn
    kanban_position: Optional[int] = None


class OutOfServiceToggle(BaseModel):
    is_out_of_service: bool


class TimeEntryAdjustRequest(BaseModel):
    new_duration_seconds: int
    reason: str = ""


class TimeEntryUnlockRequest(BaseModel):
    reason: str = ""
