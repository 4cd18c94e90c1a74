from __future__ import annotations

import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer
from sqlalchemy.orm import Mapped, declared_attr, mapped_column


class LifecycleState(str, Enum):
    ACTIVE = "Active"
    DELETED = "Deleted"


# Columns that only the sanctioned transitions may change.
LIFECYCLE_FIELDS: tuple[str, ...] = ("is_deleted", "deleted_at", "deleted_by_id")

_sanctioned: weakref.WeakSet[Any] = weakref.WeakSet()


class SoftDeleteMixin:
    """
    Soft-delete state carried by every lifecycle-bearing entity.

    `version_id` is the mapper's version counter: every flushed change is a
    compare-and-set UPDATE, so two concurrent transitions cannot both win.
    """

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deleted_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", use_alter=True), nullable=True)

    restored_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    restored_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", use_alter=True), nullable=True)
    restore_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    @declared_attr.directive
    def __mapper_args__(cls) -> dict[str, Any]:
        return {"version_id_col": cls.version_id}

    @property
    def lifecycle_state(self) -> LifecycleState:
        return LifecycleState.DELETED if self.is_deleted else LifecycleState.ACTIVE


@contextmanager
def lifecycle_transition(entity: SoftDeleteMixin) -> Iterator[SoftDeleteMixin]:
    """Mark `entity` so the flush guard accepts changes to its lifecycle fields."""

    _sanctioned.add(entity)
    try:
        yield entity
    finally:
        _sanctioned.discard(entity)


def is_sanctioned(entity: object) -> bool:
    return entity in _sanctioned
