from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps.auth import require_auth
from app.schemas.auth import SessionUser
from app.schemas.parts import PartAdjustRequest, PartAdjustResponse, PartCreate, PartOut
from app.services import parts as parts_service

router = APIRouter(prefix="/api/parts", tags=["parts"])


@router.get("", response_model=List[PartOut])
def list_parts(
    search: Optional[str] = None,
    low_stock: bool = False,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    return parts_service.list_parts(db, user, search=search, low_stock=low_stock)


@router.get("/search", response_model=List[PartOut])
def search_parts(q: Optional[str] = None, db: Session = Depends(get_db), user: SessionUser = Depends(require_auth)):
    return parts_service.search_parts(db, q)


@router.post("", response_model=PartOut, status_code=status.HTTP_201_CREATED)
def create_part(payload: PartCreate, db: Session = Depends(get_db), user: SessionUser = Depends(require_auth)):
    return parts_service.create_part(db, user, **payload.model_dump())


@router.post("/{part_id}/adjust", response_model=PartAdjustResponse)
def adjust_inventory(
    part_id: int,
    payload: PartAdjustRequest,
    db: Session = Depends(get_db),
    user: SessionUser = Depends(require_auth),
):
    result = parts_service.adjust_inventory(
        db,
        user,
        part_id,
        type=payload.type,
        quantity=payload.quantity,
        unit_cost=payload.unit_cost,
        reason=payload.reason,
    )
    return PartAdjustResponse.model_validate(result, from_attributes=True)
