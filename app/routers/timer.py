from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps.auth import require_auth
from app.schemas.auth import SessionUser
from app.schemas.work import TimerOut, TimerStartRequest, TimerStopRequest, WeeklySummaryOut
from app.services import timer as timer_service

router = APIRouter(prefix="/api/timer", tags=["timer"])


@router.post("/start", response_model=TimerOut)
def start_timer(
    payload: TimerStartRequest,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    return timer_service.start_timer(db, user, payload.line_item_id)


@router.post("/stop", response_model=TimerOut)
def stop_timer(
    payload: Optional[TimerStopRequest] = None,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    payload = payload or TimerStopRequest()
    return timer_service.stop_active_timer(
        db,
        user,
        notes=payload.notes,
        pause_reason=payload.pause_reason,
        is_goodwill=payload.is_goodwill,
    )


@router.get("/active", response_model=Optional[TimerOut])
def active_timer(db: Session = Depends(get_db), user: SessionUser = Depends(require_auth)):
    return timer_service.get_active_timer(db, user)


@router.get("/weekly-summary", response_model=WeeklySummaryOut)
def weekly_summary(db: Session = Depends(get_db), user: SessionUser = Depends(require_auth)):
    summary = timer_service.weekly_summary(db, user)
    return WeeklySummaryOut.model_validate(summary, from_attributes=True)
