from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Select, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.core.config import settings


class Base(DeclarativeBase):
    pass


connect_args = {}
if settings.DB_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.DB_URL, echo=settings.SQL_ECHO, connect_args=connect_args, future=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Commit everything done inside the block as one unit.

    Any exception rolls the session back before it propagates, so callers never
    observe a half-applied mutation.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def lock_rows(db: Session, stmt: Select) -> Select:
    """
    Row-lock the selected rows for the rest of the transaction.

    Loaded objects are refreshed from the row, so a check made after the lock
    never sees state cached from an earlier read. SQLite has no FOR UPDATE and
    serialises writers itself.
    """
    stmt = stmt.execution_options(populate_existing=True)
    bind = db.get_bind()
    if bind is not None and bind.dialect.name != "sqlite":
        return stmt.with_for_update()
    return stmt
