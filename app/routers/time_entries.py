from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps.auth import require_admin, require_auth
from app.schemas.auth import SessionUser
from app.schemas.work import TimeEntryAdjustRequest, TimeEntryOut, TimeEntryUnlockRequest
from app.services import approval as approval_service

router = APIRouter(prefix="/api/time-entries", tags=["time-entries"])


@router.post("/{time_entry_id}/adjust", response_model=TimeEntryOut)
def adjust_time_entry(
    time_entry_id: int,
    payload: TimeEntryAdjustRequest,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    return approval_service.adjust_time_entry(db, user, time_entry_id, payload.new_duration_seconds, payload.reason)


@router.post("/{time_entry_id}/unlock", response_model=TimeEntryOut)
def unlock_time_entry(
    time_entry_id: int,
    payload: TimeEntryUnlockRequest,
    db: Session = Depends(get_db),
    admin: SessionUser = Depends(require_admin),
):
    return approval_service.unlock_for_correction(db, admin, time_entry_id, payload.reason)
