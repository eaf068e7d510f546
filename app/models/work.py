from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base


class WorkOrderStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    ON_HOLD_PARTS = "on_hold_parts"
    ON_HOLD_DELAY = "on_hold_delay"
    QC = "qc"
    READY_TO_BILL = "ready_to_bill"
    CLOSED = "closed"


class KanbanColumn(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    ON_HOLD_PARTS = "on_hold_parts"
    ON_HOLD_DELAY = "on_hold_delay"
    QC = "qc"
    READY_TO_BILL = "ready_to_bill"


class LineItemStatus(str, Enum):
    OPEN = "open"
    DONE = "done"


class ApprovalState(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    LOCKED = "locked"


# Entries in these states still need an approver before the order can be billed.
UNAPPROVED_STATES = (ApprovalState.DRAFT, ApprovalState.SUBMITTED)


class Customer(Base):
    __tablename__ = "customers"
    __table_args__ = (Index("ix_customers_name", "name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    work_orders: Mapped[List["WorkOrder"]] = relationship("WorkOrder", back_populates="customer")

    def __repr__(self) -> str:
        return f"Customer(id={self.id!r}, name={self.name!r})"


class WorkOrder(Base):
    __tablename__ = "work_orders"
    __table_args__ = (
        Index("ix_work_orders_status", "status"),
        Index("ix_work_orders_wo_number_unique", "wo_number", unique=True),
        CheckConstraint("title <> ''", name="ck_work_orders_title_nonempty"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    wo_number: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="RESTRICT"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[WorkOrderStatus] = mapped_column(
        SAEnum(WorkOrderStatus, name="work_order_status"), nullable=False, default=WorkOrderStatus.OPEN
    )
    kanban_column: Mapped[KanbanColumn] = mapped_column(
        SAEnum(KanbanColumn, name="kanban_column"), nullable=False, default=KanbanColumn.OPEN
    )
    kanban_position: Mapped[int] = mapped_column(Integer, nullable=False, default=999)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    is_out_of_service: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    qc_approved_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    qc_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    qc_rejected_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    customer: Mapped[Customer] = relationship("Customer", back_populates="work_orders")
    qc_approved_by: Mapped[Optional["User"]] = relationship("User", foreign_keys=[qc_approved_by_id])
    line_items: Mapped[List["LineItem"]] = relationship(
        "LineItem", back_populates="work_order", cascade="all, delete-orphan", order_by="LineItem.sort_order"
    )
    time_entries: Mapped[List["TimeEntry"]] = relationship(
        "TimeEntry", back_populates="work_order", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"WorkOrder(id={self.id!r}, wo_number={self.wo_number!r}, status={self.status!r})"


class LineItem(Base):
    __tablename__ = "line_items"
    __table_args__ = (Index("ix_line_items_work_order_id", "work_order_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    work_order_id: Mapped[int] = mapped_column(ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    estimate_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[LineItemStatus] = mapped_column(
        SAEnum(LineItemStatus, name="line_item_status"), nullable=False, default=LineItemStatus.OPEN
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    work_order: Mapped[WorkOrder] = relationship("WorkOrder", back_populates="line_items")
    assignments: Mapped[List["LineItemAssignment"]] = relationship(
        "LineItemAssignment", back_populates="line_item", cascade="all, delete-orphan"
    )
    time_entries: Mapped[List["TimeEntry"]] = relationship("TimeEntry", back_populates="line_item")

    def __repr__(self) -> str:
        return f"LineItem(id={self.id!r}, work_order_id={self.work_order_id!r}, status={self.status!r})"


class LineItemAssignment(Base):
    __tablename__ = "line_item_assignments"
    __table_args__ = (UniqueConstraint("line_item_id", "user_id", name="uq_line_item_assignments_pair"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    line_item_id: Mapped[int] = mapped_column(
        ForeignKey("line_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    line_item: Mapped[LineItem] = relationship("LineItem", back_populates="assignments")
    user: Mapped["User"] = relationship("User")

    def __repr__(self) -> str:
        return f"LineItemAssignment(line_item_id={self.line_item_id!r}, user_id={self.user_id!r})"


class TimeEntry(Base):
    __tablename__ = "time_entries"
    __table_args__ = (
        CheckConstraint("duration_seconds >= 0", name="ck_time_entries_duration_nonnegative"),
        Index("ix_time_entries_work_order_id", "work_order_id"),
        Index("ix_time_entries_user_id_started_at", "user_id", "started_at"),
        # At most one live running timer per user; soft-deleted rows do not count.
        Index(
            "uq_time_entries_one_active_timer_per_user",
            "user_id",
            unique=True,
            sqlite_where=text("ended_at IS NULL AND deleted_at IS NULL"),
            postgresql_where=text("ended_at IS NULL AND deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    work_order_id: Mapped[int] = mapped_column(ForeignKey("work_orders.id", ondelete="CASCADE"), nullable=False)
    line_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("line_items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approval_state: Mapped[ApprovalState] = mapped_column(
        SAEnum(ApprovalState, name="approval_state"), nullable=False, default=ApprovalState.DRAFT
    )
    approved_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pause_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_goodwill: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    edited_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])
    approved_by: Mapped[Optional["User"]] = relationship("User", foreign_keys=[approved_by_id])
    work_order: Mapped[WorkOrder] = relationship("WorkOrder", back_populates="time_entries")
    line_item: Mapped[Optional[LineItem]] = relationship("LineItem", back_populates="time_entries")

    def __repr__(self) -> str:
        return (
            f"TimeEntry(id={self.id!r}, user_id={self.user_id!r}, "
            f"approval_state={self.approval_state!r}, ended_at={self.ended_at!r})"
        )


# Late imports to avoid circular references.
from app.models.user import User  # noqa: E402  # pylint: disable=wrong-import-position
