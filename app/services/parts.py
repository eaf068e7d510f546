from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.db.session import lock_rows, transaction
from app.models.parts import Part, PartTransaction, PartTransactionType
from app.schemas.auth import SessionUser
from app.services.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.services.permissions import can_manage_parts

TWO_PLACES = Decimal("0.01")
MIN_SEARCH_LENGTH = 2
SEARCH_LIMIT = 20


def _as_decimal(value: object | None) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        result = value
    else:
        result = Decimal(str(value))
    return result.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _ensure_parts_access(user: SessionUser) -> None:
    if not can_manage_parts(user):
        raise ForbiddenError("Forbidden - Parts access required")


def _matches(search: str):
    pattern = f"%{search.lower()}%"
    return or_(
        func.lower(Part.part_number).like(pattern),
        func.lower(Part.description).like(pattern),
        func.lower(Part.manufacturer).like(pattern),
    )


@dataclass(slots=True)
class AdjustmentResult:
    part: Part
    transaction: PartTransaction


def list_parts(
    db: Session,
    user: SessionUser,
    *,
    search: Optional[str] = None,
    low_stock: bool = False,
) -> List[Part]:
    _ensure_parts_access(user)
    stmt = select(Part)
    if search:
        stmt = stmt.where(_matches(search))
    parts = db.execute(stmt.order_by(Part.part_number.asc())).scalars().all()
    # Availability is derived, so the low-stock filter runs after loading.
    if low_stock:
        return [part for part in parts if part.is_low_stock]
    return list(parts)


def search_parts(db: Session, query: Optional[str]) -> List[Part]:
    """Part picker lookup for any signed-in user; needs at least two characters."""
    query = (query or "").strip()
    if len(query) < MIN_SEARCH_LENGTH:
        return []
    stmt = select(Part).where(_matches(query)).order_by(Part.part_number.asc()).limit(SEARCH_LIMIT)
    return list(db.execute(stmt).scalars().all())


def create_part(
    db: Session,
    user: SessionUser,
    *,
    part_number: str,
    description: str,
    manufacturer: Optional[str] = None,
    unit_cost: object = 0,
    unit_price: object = 0,
    quantity_on_hand: int = 0,
    reorder_level: int = 0,
    location: Optional[str] = None,
) -> Part:
    _ensure_parts_access(user)
    part_number = (part_number or "").strip()
    description = (description or "").strip()
    if not part_number or not description:
        raise ValidationError("Part number and description are required")
    if quantity_on_hand < 0:
        raise ValidationError("Quantity on hand cannot be negative")
    if db.scalar(select(Part).where(Part.part_number == part_number)) is not None:
        raise ConflictError("Part number already exists")

    cost = _as_decimal(unit_cost)
    with transaction(db):
        part = Part(
            part_number=part_number,
            description=description,
            manufacturer=manufacturer or None,
            unit_cost=cost,
            unit_price=_as_decimal(unit_price),
            quantity_on_hand=quantity_on_hand,
            quantity_reserved=0,
            reorder_level=reorder_level,
            location=location or None,
        )
        db.add(part)
        db.flush()
        if quantity_on_hand > 0:
            db.add(
                PartTransaction(
                    part_id=part.id,
                    type=PartTransactionType.PURCHASE,
                    quantity=quantity_on_hand,
                    unit_cost=cost,
                    user_id=user.id,
                )
            )
    db.refresh(part)
    return part


def adjust_inventory(
    db: Session,
    user: SessionUser,
    part_id: int,
    *,
    type: str,
    quantity: int,
    unit_cost: object | None = None,
    reason: Optional[str] = None,
) -> AdjustmentResult:
    _ensure_parts_access(user)
    try:
        txn_type = PartTransactionType(type)
    except ValueError as exc:
        raise ValidationError("Invalid transaction type") from exc
    if not quantity:
        raise ValidationError("Quantity must be non-zero")

    with transaction(db):
        part = db.execute(lock_rows(db, select(Part).where(Part.id == part_id))).scalars().first()
        if part is None:
            raise NotFoundError("Part not found")
        new_qty = part.quantity_on_hand + quantity
        if new_qty < 0:
            raise ConflictError("Adjustment would result in negative inventory")

        part.quantity_on_hand = new_qty
        db.add(part)
        txn = PartTransaction(
            part_id=part.id,
            type=txn_type,
            quantity=quantity,
            unit_cost=_as_decimal(unit_cost) if unit_cost is not None else part.unit_cost,
            user_id=user.id,
            notes=reason or None,
        )
        db.add(txn)
    db.refresh(part)
    db.refresh(txn)
    return AdjustmentResult(part=part, transaction=txn)
