"""
Authorization gate.

Two layers, checked in order for every protected handler:

1. Role layer (`authorize(resource, operation)` dependency): does the
   actor's role grant the operation at any scope? Produces an
   `AuthorizationDecision` that the handler receives as a parameter.
2. Document layer (`check_resource_access`) for single-document handlers,
   or `build_auth_filter(...).apply(stmt, Model)` for list handlers. Both
   encode the same scope rules, so a document passes the check exactly
   when it matches the filter.

Usage:

    @router.get("/tasks/{task_id}")
    def get_task(
        task_id: int,
        decision: AuthorizationDecision = Depends(authorize(Resource.TASK, Operation.READ)),
        db: Session = Depends(get_db),
    ):
        task = ...
        check_resource_access(task, decision)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any

from fastapi import Depends
from sqlalchemy import Select, false, or_

from taskhub.constants import SELF_REFERENTIAL_RESOURCES, Operation, Resource, Role, Scope
from taskhub.errors import (
    AuthenticationRequiredError,
    DepartmentScopeError,
    InsufficientRoleError,
    OrganizationScopeError,
    UnknownResourceError,
)
from taskhub.security.context import Actor, AuthorizationDecision
from taskhub.security.dependencies import get_current_actor, get_optional_actor, get_permission_matrix
from taskhub.security.matrix import PermissionMatrix
from taskhub.security.scopes import resolve_scopes

logger = logging.getLogger(__name__)


# ---- Role layer ------------------------------------------------------------------------


def evaluate(
    matrix: PermissionMatrix,
    actor: Actor,
    resource: Resource | str,
    operation: Operation | str,
) -> AuthorizationDecision:
    resource = Resource(resource)
    operation = Operation(operation)

    if matrix.entry(resource, actor.role) is None:
        logger.info(
            "Denied unknown resource role=%s resource=%s actor_id=%s",
            actor.role.value,
            resource.value,
            actor.id,
        )
        raise UnknownResourceError(f"Role {actor.role.value} does not have access to {resource.value}")

    scopes = resolve_scopes(matrix, resource, operation, actor.role, actor.is_platform_user)
    if not scopes:
        logger.info(
            "Denied operation role=%s resource=%s operation=%s actor_id=%s",
            actor.role.value,
            resource.value,
            operation.value,
            actor.id,
        )
        raise InsufficientRoleError(
            f"Role {actor.role.value} cannot perform {operation.value} on {resource.value}"
        )

    return AuthorizationDecision(
        resource=resource,
        operation=operation,
        actor_id=actor.id,
        role=actor.role,
        organization_id=actor.organization_id,
        department_id=actor.department_id,
        is_platform_user=actor.is_platform_user,
        scopes=scopes,
    )


def authorize(resource: Resource | str, operation: Operation | str) -> Callable[..., AuthorizationDecision]:
    """Dependency factory: `Depends(authorize(Resource.TASK, Operation.DELETE))`."""

    resource = Resource(resource)
    operation = Operation(operation)

    def dependency(
        actor: Actor = Depends(get_current_actor),
        matrix: PermissionMatrix = Depends(get_permission_matrix),
    ) -> AuthorizationDecision:
        return evaluate(matrix, actor, resource, operation)

    dependency.__name__ = f"authorize_{resource.value.lower()}_{operation.value}"
    return dependency


def require_role(*roles: Role | str) -> Callable[..., Actor]:
    allowed = frozenset(Role(r) for r in roles)
    names = ", ".join(r.value for r in Role if r in allowed)

    def dependency(actor: Actor | None = Depends(get_optional_actor)) -> Actor:
        if actor is None:
            raise AuthenticationRequiredError()
        if actor.role not in allowed:
            logger.info("Denied role=%s required=%s actor_id=%s", actor.role.value, names, actor.id)
            raise InsufficientRoleError(f"This operation requires one of the following roles: {names}")
        return actor

    return dependency


def require_platform_user() -> Callable[..., Actor]:
    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.is_platform_user:
            logger.info("Denied non-platform actor_id=%s", actor.id)
            raise InsufficientRoleError("This operation is reserved for platform administrators")
        return actor

    return dependency


# ---- Document layer --------------------------------------------------------------------


def _owned_by(document: Any, actor_id: int, resource: Resource) -> bool:
    if getattr(document, "created_by_id", None) == actor_id:
        return True
    return resource in SELF_REFERENTIAL_RESOURCES and getattr(document, "id", None) == actor_id


def check_resource_access(document: Any, decision: AuthorizationDecision) -> bool:
    """
    Document-level scope check. Returns True or raises.

    Precedence is broadest to narrowest: crossOrg, crossDept, ownDept, own.
    An `ownDept` grant decides the outcome inside the actor's organization;
    a narrower `own` grant is not consulted once it applies.
    """

    if decision.grants(Scope.CROSS_ORG) and decision.is_platform_user:
        return True

    same_org = document.organization_id == decision.organization_id

    if decision.grants(Scope.CROSS_DEPT) and same_org:
        return True

    if decision.grants(Scope.OWN_DEPT) and same_org:
        if document.department_id == decision.department_id:
            return True
        raise DepartmentScopeError()

    if decision.grants(Scope.OWN) and same_org and _owned_by(document, decision.actor_id, decision.resource):
        return True

    if not same_org:
        raise OrganizationScopeError()
    if decision.grants(Scope.OWN):
        raise DepartmentScopeError("You can only access your own resources")
    raise DepartmentScopeError()


@dataclass(frozen=True)
class AuthFilter:
    """
    Visibility restriction derived from the broadest granted scope.

    `None` fields are unrestricted. `owner_fields` are OR-ed together and
    compared with `owner_id`.
    """

    organization_id: int | None = None
    department_id: int | None = None
    owner_fields: tuple[str, ...] = ()
    owner_id: int | None = None
    deny_all: bool = False

    @property
    def unrestricted(self) -> bool:
        return (
            not self.deny_all
            and self.organization_id is None
            and self.department_id is None
            and not self.owner_fields
        )

    def matches(self, document: Any) -> bool:
        if self.deny_all:
            return False
        if self.organization_id is not None and document.organization_id != self.organization_id:
            return False
        if self.department_id is not None and document.department_id != self.department_id:
            return False
        if self.owner_fields:
            return any(getattr(document, name, None) == self.owner_id for name in self.owner_fields)
        return True

    def apply(self, stmt: Select[Any], entity: type[Any]) -> Select[Any]:
        if self.deny_all:
            return stmt.where(false())
        if self.organization_id is not None:
            stmt = stmt.where(entity.organization_id == self.organization_id)
        if self.department_id is not None:
            stmt = stmt.where(entity.department_id == self.department_id)
        if self.owner_fields:
            columns = [getattr(entity, name) for name in self.owner_fields if hasattr(entity, name)]
            if not columns:
                return stmt.where(false())
            stmt = stmt.where(or_(*(column == self.owner_id for column in columns)))
        return stmt


def build_auth_filter(decision: AuthorizationDecision) -> AuthFilter:
    scope = decision.broadest_scope

    if scope is None:
        return AuthFilter(deny_all=True)
    if scope is Scope.CROSS_ORG:
        return AuthFilter()
    if scope is Scope.CROSS_DEPT:
        return AuthFilter(organization_id=decision.organization_id)
    if scope is Scope.OWN_DEPT:
        return AuthFilter(organization_id=decision.organization_id, department_id=decision.department_id)

    owner_fields: tuple[str, ...] = ("created_by_id",)
    if decision.resource in SELF_REFERENTIAL_RESOURCES:
        owner_fields += ("id",)
    return AuthFilter(
        organization_id=decision.organization_id,
        owner_fields=owner_fields,
        owner_id=decision.actor_id,
    )
