from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps.auth import require_auth
from app.schemas.auth import SessionUser
from app.schemas.work import (
    AssignmentCreate,
    AssignmentOut,
    LineItemCountsOut,
    LineItemOut,
    MyWorkItemOut,
)
from app.services import line_items as line_item_service

router = APIRouter(prefix="/api/line-items", tags=["line-items"])


@router.get("/my-work", response_model=List[MyWorkItemOut])
def my_work(db: Session = Depends(get_db), user: SessionUser = Depends(require_auth)):
    items = line_item_service.my_work(db, user)
    return [MyWorkItemOut.model_validate(item, from_attributes=True) for item in items]


@router.get("/my-counts", response_model=LineItemCountsOut)
def my_counts(db: Session = Depends(get_db), user: SessionUser = Depends(require_auth)):
    counts = line_item_service.my_counts(db, user)
    return LineItemCountsOut.model_validate(counts, from_attributes=True)


@router.post("/{line_item_id}/done", response_model=LineItemOut)
def mark_done(line_item_id: int, db: Session = Depends(get_db), user: SessionUser = Depends(require_auth)):
    return line_item_service.mark_done(db, user, line_item_id)


@router.post("/{line_item_id}/assign", response_model=AssignmentOut, status_code=status.HTTP_201_CREATED)
def assign_technician(
    line_item_id: int,
    payload: AssignmentCreate,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    return line_item_service.assign_technician(db, user, line_item_id, payload.user_id)


@router.delete("/{line_item_id}/assign", status_code=status.HTTP_204_NO_CONTENT)
def unassign_technician(
    line_item_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    line_item_service.unassign_technician(db, user, line_item_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
