import os
import sys
from datetime import datetime, timedelta
from itertools import count
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("TZ", "UTC")

from app.db.session import Base  # noqa: E402
from app.models import audit as audit_model  # noqa: E402,F401
from app.models import parts as parts_model  # noqa: E402,F401
from app.models.user import User, UserRole  # noqa: E402
from app.models.work import (  # noqa: E402
    ApprovalState,
    Customer,
    LineItem,
    LineItemAssignment,
    LineItemStatus,
    TimeEntry,
    WorkOrder,
    WorkOrderStatus,
)
from app.schemas.auth import SessionUser  # noqa: E402

T0 = datetime(2025, 1, 6, 9, 0, 0)

_seq = count(1)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def db_session(engine):
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def as_session_user(user: User) -> SessionUser:
    return SessionUser.model_validate(user)


def make_user(db, *, role=UserRole.TECH, name=None, active=True) -> User:
    n = next(_seq)
    user = User(email=f"user{n}@shop.test", name=name or f"User {n}", role=role, active=active)
    db.add(user)
    db.commit()
    return user


def make_work_order(db, *, status=WorkOrderStatus.OPEN, customer_name="Acme Fleet", **kwargs) -> WorkOrder:
    n = next(_seq)
    customer = Customer(name=customer_name)
    db.add(customer)
    db.flush()
    order = WorkOrder(
        wo_number=kwargs.pop("wo_number", f"WO-{n:05d}"),
        customer_id=customer.id,
        title=kwargs.pop("title", f"Service job {n}"),
        status=status,
        **kwargs,
    )
    db.add(order)
    db.commit()
    return order


def make_line_item(db, order: WorkOrder, *, assignees=(), status=LineItemStatus.OPEN, **kwargs) -> LineItem:
    line_item = LineItem(
        work_order_id=order.id,
        description=kwargs.pop("description", "Replace brake pads"),
        status=status,
        **kwargs,
    )
    db.add(line_item)
    db.flush()
    for assignee in assignees:
        db.add(LineItemAssignment(line_item_id=line_item.id, user_id=assignee.id))
    db.commit()
    return line_item


def make_entry(
    db,
    user: User,
    line_item: LineItem,
    *,
    started_at=T0,
    seconds=3600,
    state=ApprovalState.DRAFT,
    running=False,
    **kwargs,
) -> TimeEntry:
    entry = TimeEntry(
        user_id=user.id,
        work_order_id=line_item.work_order_id,
        line_item_id=line_item.id,
        started_at=started_at,
        ended_at=None if running else started_at + timedelta(seconds=seconds),
        duration_seconds=None if running else seconds,
        approval_state=state,
        **kwargs,
    )
    db.add(entry)
    db.commit()
    return entry


@pytest.fixture()
def admin(db_session):
    return make_user(db_session, role=UserRole.ADMIN, name="Alice Admin")


@pytest.fixture()
def manager(db_session):
    return make_user(db_session, role=UserRole.MANAGER, name="Morgan Manager")


@pytest.fixture()
def tech(db_session):
    return make_user(db_session, role=UserRole.TECH, name="Terry Tech")
