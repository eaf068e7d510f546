from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, condecimal, conint

from app.models.parts import PartTransactionType


class PartCreate(BaseModel):
    part_number: str = ""
    description: str = ""
    manufacturer: Optional[str] = None
    unit_cost: condecimal(max_digits=12, decimal_places=2, ge=0) = 0
    unit_price: condecimal(max_digits=12, decimal_places=2, ge=0) = 0
    quantity_on_hand: conint(ge=0) = 0
    reorder_level: conint(ge=0) = 0
    location: Optional[str] = None


class PartOut(BaseModel):
    id: int
    part_number: str
    description: str
    manufacturer: Optional[str]
    unit_cost: condecimal(max_digits=12, decimal_places=2)
    unit_price: condecimal(max_digits=12, decimal_places=2)
    quantity_on_hand: int
    quantity_reserved: int
    quantity_available: int
    reorder_level: int
    is_low_stock: bool
    location: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class PartAdjustRequest(BaseModel):
    type: str
    quantity: int
    unit_cost: Optional[condecimal(max_digits=12, decimal_places=2, ge=0)] = None
    reason: Optional[str] = None


class PartTransactionOut(BaseModel):
    id: int
    part_id: int
    type: PartTransactionType
    quantity: int
    unit_cost: condecimal(max_digits=12, decimal_places=2)
    user_id: int
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class PartAdjustResponse(BaseModel):
    part: PartOut
    transaction: PartTransactionOut

    class Config:
        from_attributes = True
