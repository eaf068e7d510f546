from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base


class PartTransactionType(str, Enum):
    PURCHASE = "PURCHASE"
    RETURN = "RETURN"
    ADJUSTMENT = "ADJUSTMENT"


class Part(Base):
    __tablename__ = "parts"
    __table_args__ = (
        Index("ix_parts_part_number_unique", "part_number", unique=True),
        CheckConstraint("part_number <> ''", name="ck_parts_part_number_nonempty"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_parts_on_hand_nonnegative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_parts_reserved_nonnegative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    part_number: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    manufacturer: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    quantity_on_hand: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reorder_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    location: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    transactions: Mapped[List["PartTransaction"]] = relationship(
        "PartTransaction", back_populates="part", cascade="all, delete-orphan"
    )

    @property
    def quantity_available(self) -> int:
        return (self.quantity_on_hand or 0) - (self.quantity_reserved or 0)

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_available <= (self.reorder_level or 0)

    def __repr__(self) -> str:
        return f"Part(id={self.id!r}, part_number={self.part_number!r}, on_hand={self.quantity_on_hand!r})"


class PartTransaction(Base):
    __tablename__ = "part_transactions"
    __table_args__ = (
        CheckConstraint("quantity <> 0", name="ck_part_transactions_quantity_nonzero"),
        Index("ix_part_transactions_part_id", "part_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    part_id: Mapped[int] = mapped_column(ForeignKey("parts.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[PartTransactionType] = mapped_column(
        SAEnum(PartTransactionType, name="part_transaction_type"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    part: Mapped[Part] = relationship("Part", back_populates="transactions")

    def __repr__(self) -> str:
        return f"PartTransaction(id={self.id!r}, part_id={self.part_id!r}, type={self.type!r}, qty={self.quantity!r})"
