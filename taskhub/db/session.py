from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from taskhub.settings import get_settings


_settings = get_settings()

engine = create_engine(
    _settings.resolved_db_url(),
    connect_args={"check_same_thread": False} if _settings.resolved_db_url().startswith("sqlite") else {},
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=Session)


def get_db() -> Generator[Session, None, None]:
    """
    Read-side DB dependency.

    Soft-deleted rows are hidden from every ORM query issued on this session
    (see taskhub/db/filters.py) unless the statement opts in with
    `include_deleted` / `only_deleted`.
    """

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker[Session]:
    """Write-side dependency: lifecycle operations open their own transactions."""
    return SessionLocal
