from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps.auth import require_admin, require_auth
from app.models.work import WorkOrderStatus
from app.schemas.auth import SessionUser
from app.schemas.reports import (
    EstimateReportOut,
    ExceptionsReportOut,
    TechPerformanceReportOut,
    WipAgingReportOut,
)
from app.services import reports as report_service

router = APIRouter(prefix="/api/reports", tags=["reports"])
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/wip-aging", response_model=WipAgingReportOut)
def wip_aging(db: Session = Depends(get_db), user: SessionUser = Depends(require_auth)):
    return WipAgingReportOut.model_validate(report_service.wip_aging(db, user), from_attributes=True)


@router.get("/actual-vs-estimated", response_model=EstimateReportOut)
def actual_vs_estimated(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    status_filter: Optional[WorkOrderStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    report = report_service.actual_vs_estimated(db, user, start=start_date, end=end_date, status=status_filter)
    return EstimateReportOut.model_validate(report, from_attributes=True)


@router.get("/tech-performance", response_model=TechPerformanceReportOut)
def tech_performance(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    report = report_service.tech_performance(db, user, start=start_date, end=end_date)
    return TechPerformanceReportOut.model_validate(report, from_attributes=True)


@admin_router.get("/exceptions", response_model=ExceptionsReportOut)
def admin_exceptions(db: Session = Depends(get_db), admin: SessionUser = Depends(require_admin)):
    return ExceptionsReportOut.model_validate(report_service.admin_exceptions(db, admin), from_attributes=True)
