from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria
from sqlalchemy.sql.expression import False_, Null

from taskhub.errors import HardDeleteDisabledError, IllegalMutationError
from taskhub.models.lifecycle import LIFECYCLE_FIELDS, SoftDeleteMixin, is_sanctioned

logger = logging.getLogger(__name__)

# Execution options understood by every read path.
INCLUDE_DELETED = "include_deleted"
ONLY_DELETED = "only_deleted"


def read_options(*, include_deleted: bool = False, only_deleted: bool = False) -> dict[str, bool]:
    """
    Build execution options for a read.

    `only_deleted` wins when both flags are set.
    """

    if only_deleted:
        return {ONLY_DELETED: True}
    if include_deleted:
        return {INCLUDE_DELETED: True}
    return {}


def _lifecycle_table_names() -> set[str]:
    names: set[str] = set()
    pending = list(SoftDeleteMixin.__subclasses__())
    while pending:
        cls = pending.pop()
        pending.extend(cls.__subclasses__())
        tablename = getattr(cls, "__tablename__", None)
        if tablename:
            names.add(tablename)
    return names


def _targets_lifecycle_table(statement: Any) -> bool:
    # Matches ORM entities (update(Task)) and bare tables (Task.__table__.delete()) alike.
    table = getattr(statement, "table", None)
    return getattr(table, "name", None) in _lifecycle_table_names()


def _column_name(key: Any) -> str | None:
    if isinstance(key, str):
        return key
    return getattr(key, "key", None) or getattr(key, "name", None)


def _assigned_values(execute_state: ORMExecuteState) -> list[tuple[str | None, Any]]:
    """(column, value) pairs from the SET / VALUES clause and from executemany parameters."""

    statement = execute_state.statement
    pairs: list[tuple[Any, Any]] = []

    if getattr(statement, "_values", None):
        pairs.extend(statement._values.items())
    # SQLAlchemy 2.0 keeps ordered_values() apart from values().
    if getattr(statement, "_ordered_values", None):
        pairs.extend(statement._ordered_values)
    for rows in getattr(statement, "_multi_values", None) or ():
        for row in rows:
            if isinstance(row, dict):
                pairs.extend(row.items())

    parameters = execute_state.parameters
    for row in parameters if isinstance(parameters, list) else [parameters or {}]:
        pairs.extend(row.items())

    return [(_column_name(key), value) for key, value in pairs]


def _is_blank(value: Any) -> bool:
    if isinstance(value, (Null, False_)):
        return True
    value = getattr(value, "value", value)
    return value is None or value is False


def _guard_bulk_statement(execute_state: ORMExecuteState) -> None:
    statement = execute_state.statement
    if not _targets_lifecycle_table(statement):
        return
    table = statement.table.name

    if execute_state.is_delete:
        logger.warning("Blocked bulk DELETE on %s", table)
        raise HardDeleteDisabledError()

    assigned = [(name, value) for name, value in _assigned_values(execute_state) if name in LIFECYCLE_FIELDS]
    if execute_state.is_update and assigned:
        touched = sorted({name for name, _value in assigned})
        logger.warning("Blocked bulk UPDATE of %s on %s", touched, table)
        raise IllegalMutationError(
            f"Bulk update of {touched} is not allowed. Use the soft-delete/restore operations."
        )
    if execute_state.is_insert and not all(_is_blank(value) for _name, value in assigned):
        raise IllegalMutationError(f"Rows of {table} cannot be inserted in the Deleted state")


@event.listens_for(Session, "do_orm_execute")
def _apply_lifecycle_filters(execute_state: ORMExecuteState) -> None:
    """
    Default read scoping plus the bulk-statement half of the storage guard.

    Existing query code stays unchanged:
        db.scalars(select(Task)).all()
    returns active rows only, and the same holds for point lookups and
    aggregates (`select(func.count(Task.id))`).
    """

    if execute_state.is_insert or execute_state.is_update or execute_state.is_delete:
        _guard_bulk_statement(execute_state)
        return

    if not execute_state.is_select:
        return
    if execute_state.is_column_load or execute_state.is_relationship_load:
        return

    options = execute_state.execution_options
    if options.get(ONLY_DELETED, False):
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(SoftDeleteMixin, lambda cls: cls.is_deleted.is_(True), include_aliases=True)
        )
    elif not options.get(INCLUDE_DELETED, False):
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(SoftDeleteMixin, lambda cls: cls.is_deleted.is_(False), include_aliases=True)
        )


@event.listens_for(Session, "before_flush")
def _guard_lifecycle_fields(session: Session, flush_context: Any, instances: Any) -> None:
    """Unit-of-work half of the storage guard: no hard deletes, no hand-set deletion state."""

    for obj in session.deleted:
        if isinstance(obj, SoftDeleteMixin):
            logger.warning("Blocked hard delete of %s id=%s", type(obj).__name__, obj.id)
            raise HardDeleteDisabledError()

    for obj in session.new:
        if isinstance(obj, SoftDeleteMixin) and (obj.is_deleted or obj.deleted_at or obj.deleted_by_id):
            raise IllegalMutationError(f"New {type(obj).__name__} cannot be created in the Deleted state")

    for obj in session.dirty:
        if not isinstance(obj, SoftDeleteMixin) or is_sanctioned(obj):
            continue
        state = inspect(obj)
        changed = [name for name in LIFECYCLE_FIELDS if state.attrs[name].history.has_changes()]
        if changed:
            logger.warning("Blocked direct mutation of %s on %s id=%s", changed, type(obj).__name__, obj.id)
            raise IllegalMutationError(
                f"Direct manipulation of {changed} is not allowed. Use the soft-delete/restore operations."
            )
