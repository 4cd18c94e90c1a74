"""
Active/Deleted state machine for lifecycle-bearing entities.

Transitions are the only sanctioned way to change `is_deleted`,
`deleted_at` and `deleted_by_id`; the session guards in
taskhub/db/filters.py reject any other change at flush time.

Each transition flushes one UPDATE guarded by the row's version counter.
If another transaction won the race the flush raises `StaleDataError`,
which the transaction runner treats as transient.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from taskhub.db import filters as _filters  # noqa: F401  (register session guards)
from taskhub.db.filters import read_options
from taskhub.errors import AlreadyDeletedError, NotDeletedError, NotFoundError
from taskhub.models.lifecycle import SoftDeleteMixin, lifecycle_transition

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=SoftDeleteMixin)


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def load_any(session: Session, model: type[E], entity_id: int) -> E | None:
    """Point lookup that sees both states."""
    return session.execute(
        select(model).where(model.id == entity_id).execution_options(**read_options(include_deleted=True))
    ).scalar_one_or_none()


def soft_delete(session: Session, entity: E, actor_id: int) -> E:
    if entity.is_deleted:
        raise AlreadyDeletedError(f"{type(entity).__name__} {entity.id} is already deleted")

    with lifecycle_transition(entity):
        entity.is_deleted = True
        entity.deleted_at = _now()
        entity.deleted_by_id = actor_id
        session.flush()

    logger.debug("Soft-deleted %s id=%s actor_id=%s", type(entity).__name__, entity.id, actor_id)
    return entity


def restore(session: Session, entity: E, actor_id: int) -> E:
    if not entity.is_deleted:
        raise NotDeletedError(f"{type(entity).__name__} {entity.id} is not deleted")

    with lifecycle_transition(entity):
        entity.is_deleted = False
        entity.deleted_at = None
        entity.deleted_by_id = None
        entity.restored_at = _now()
        entity.restored_by_id = actor_id
        entity.restore_count = (entity.restore_count or 0) + 1
        session.flush()

    logger.debug(
        "Restored %s id=%s actor_id=%s restore_count=%s",
        type(entity).__name__,
        entity.id,
        actor_id,
        entity.restore_count,
    )
    return entity


def soft_delete_by_id(session: Session, model: type[E], entity_id: int, actor_id: int) -> E:
    entity = load_any(session, model, entity_id)
    if entity is None:
        raise NotFoundError(f"{model.__name__} {entity_id} not found")
    return soft_delete(session, entity, actor_id)


def restore_by_id(session: Session, model: type[E], entity_id: int, actor_id: int) -> E:
    entity = load_any(session, model, entity_id)
    if entity is None:
        raise NotFoundError(f"{model.__name__} {entity_id} not found")
    return restore(session, entity, actor_id)


def soft_delete_many(session: Session, model: type[E], actor_id: int, *criteria: Any) -> list[int]:
    """
    Soft-delete every active row matching `criteria`.

    Rows go through `soft_delete` one by one, so each is its own versioned
    UPDATE and the storage guard still sees a sanctioned transition. No
    dependents are touched; use the cascade orchestrator for that.
    """

    entities = session.scalars(select(model).where(*criteria).order_by(model.id)).all()
    for entity in entities:
        soft_delete(session, entity, actor_id)
    logger.debug("Soft-deleted %s %s row(s) actor_id=%s", len(entities), model.__name__, actor_id)
    return [entity.id for entity in entities]


def restore_many(session: Session, model: type[E], actor_id: int, *criteria: Any) -> list[int]:
    stmt = (
        select(model)
        .where(*criteria)
        .order_by(model.id)
        .execution_options(**read_options(only_deleted=True))
    )
    entities = session.scalars(stmt).all()
    for entity in entities:
        restore(session, entity, actor_id)
    logger.debug("Restored %s %s row(s) actor_id=%s", len(entities), model.__name__, actor_id)
    return [entity.id for entity in entities]


# ---- Audit and query helpers ---------------------------------------------------------


@dataclass(frozen=True)
class RestoreAudit:
    entity_id: int
    is_deleted: bool
    deleted_at: datetime | None
    deleted_by_id: int | None
    restored_at: datetime | None
    restored_by_id: int | None
    restore_count: int


def get_restore_audit(session: Session, model: type[SoftDeleteMixin], entity_id: int) -> RestoreAudit:
    entity = load_any(session, model, entity_id)
    if entity is None:
        raise NotFoundError(f"{model.__name__} {entity_id} not found")
    return RestoreAudit(
        entity_id=entity.id,
        is_deleted=entity.is_deleted,
        deleted_at=entity.deleted_at,
        deleted_by_id=entity.deleted_by_id,
        restored_at=entity.restored_at,
        restored_by_id=entity.restored_by_id,
        restore_count=entity.restore_count,
    )


def count_deleted(session: Session, model: type[SoftDeleteMixin], *criteria: Any) -> int:
    stmt = select(func.count(model.id)).where(*criteria).execution_options(**read_options(only_deleted=True))
    return session.scalar(stmt) or 0


def find_deleted_by_ids(session: Session, model: type[E], ids: Iterable[int]) -> list[E]:
    ids = list(ids)
    if not ids:
        return []
    stmt = (
        select(model)
        .where(model.id.in_(ids))
        .order_by(model.id)
        .execution_options(**read_options(only_deleted=True))
    )
    return list(session.scalars(stmt).all())
