from __future__ import annotations

from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskhub.db.filters import read_options
from taskhub.db.transaction import RetryPolicy
from taskhub.errors import NotFoundError
from taskhub.models.lifecycle import SoftDeleteMixin
from taskhub.security.context import AuthorizationDecision
from taskhub.security.gate import check_resource_access
from taskhub.settings import Settings

E = TypeVar("E", bound=SoftDeleteMixin)


def fetch_authorized(
    db: Session,
    model: type[E],
    entity_id: int,
    decision: AuthorizationDecision,
    *,
    include_deleted: bool = False,
) -> E:
    """
    Load one document and run the document-level scope check.

    Absent documents (or deleted ones, unless `include_deleted`) are a 404
    before any scope error can leak their existence.
    """

    stmt: Any = select(model).where(model.id == entity_id)
    stmt = stmt.execution_options(**read_options(include_deleted=include_deleted))
    entity = db.scalars(stmt).first()
    if entity is None:
        raise NotFoundError(f"{model.__name__} {entity_id} not found")
    check_resource_access(entity, decision)
    return entity


def retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy.from_settings(settings)
