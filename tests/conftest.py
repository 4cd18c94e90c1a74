"""
Pytest fixtures for the test suite.

Every test gets a fresh in-memory SQLite database. `StaticPool` keeps one
connection alive so separate sessions (the read session and the sessions the
transaction runner opens) see the same data, and committed seed data
survives between them.
"""
from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from taskhub.db import filters as _filters  # noqa: F401  (register lifecycle session events)
from taskhub.db.base import Base
from taskhub.db.init_db import SeedData, seed
from taskhub.models import org as _org  # noqa: F401
from taskhub.models import work as _work  # noqa: F401
from taskhub.security.context import Actor
from taskhub.security.matrix import PermissionMatrix, load_permission_matrix

MATRIX_PATH = Path(__file__).resolve().parents[1] / "config" / "permission_matrix.yaml"


@pytest.fixture
def engine():
    """Create a fresh in-memory SQLite engine (tables included) for each test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=Session)


@pytest.fixture
def db_session(session_factory):
    """Plain session on the test database; closed after the test."""
    with session_factory() as session:
        yield session


@pytest.fixture
def seeded(session_factory) -> SeedData:
    """Demo organizations, departments, users, tasks (see taskhub/db/init_db.py)."""
    with session_factory() as session:
        return seed(session)


@pytest.fixture(scope="session")
def matrix() -> PermissionMatrix:
    return load_permission_matrix(MATRIX_PATH)


@pytest.fixture
def make_actor():
    def _make(role, org_id=1, dept_id=10, actor_id=100, platform=False) -> Actor:
        return Actor(
            id=actor_id,
            role=role,
            organization_id=org_id,
            department_id=dept_id,
            is_platform_user=platform,
        )

    return _make
