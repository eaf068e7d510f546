from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel

from app.schemas.work import LineItemOut, TimeEntryOut, UserSummary, WorkOrderDetailOut


class ExceptionEntryOut(TimeEntryOut):
    user: UserSummary
    work_order: WorkOrderDetailOut
    line_item: Optional[LineItemOut]


class ExceptionLineItemOut(LineItemOut):
    work_order: WorkOrderDetailOut


class PendingBillingOrderOut(BaseModel):
    work_order: WorkOrderDetailOut
    entries: List[TimeEntryOut]

    class Config:
        from_attributes = True


class ExceptionsReportOut(BaseModel):
    stale_timers: List[ExceptionEntryOut]
    ready_to_bill_with_pending: List[PendingBillingOrderOut]
    edited_after_approval: List[ExceptionEntryOut]
    done_without_time: List[ExceptionLineItemOut]
    orphaned_entries: List[ExceptionEntryOut]
    counts: Dict[str, int]

    class Config:
        from_attributes = True


class WipAgingRowOut(BaseModel):
    work_order: WorkOrderDetailOut
    age_in_days: int
    age_category: str
    progress_done: int
    progress_total: int
    progress_percent: int

    class Config:
        from_attributes = True


class WipAgingReportOut(BaseModel):
    work_orders: List[WipAgingRowOut]
    total_wip: int
    average_age: float
    oldest_wo: Optional[WipAgingRowOut]
    aging_stats: Dict[str, int]

    class Config:
        from_attributes = True


class EstimateRowOut(BaseModel):
    work_order: WorkOrderDetailOut
    estimate_minutes: int
    actual_minutes: int
    variance_minutes: int
    variance_percent: float
    efficiency: float

    class Config:
        from_attributes = True


class EstimateReportOut(BaseModel):
    work_orders: List[EstimateRowOut]
    total_estimate_minutes: int
    total_actual_minutes: int
    total_variance_minutes: int
    over_estimate: int
    under_estimate: int
    on_target: int
    average_efficiency: float

    class Config:
        from_attributes = True


class TechPerformanceRowOut(BaseModel):
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

    class Config:
        from_attributes = True


class TechPerformanceReportOut(BaseModel):
    techs: List[TechPerformanceRowOut]
    total_hours: float
    total_entries: int
    average_efficiency: float
    most_efficient: Optional[TechPerformanceRowOut]
    most_productive: Optional[TechPerformanceRowOut]

    class Config:
        from_attributes = True
