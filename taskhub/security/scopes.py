"""
Scope resolution over the permission matrix.

Pure functions: the same (resource, operation, role, platform flag) always
yields the same set of scopes, so they are safe to call from any request.
"""

from __future__ import annotations

from taskhub.constants import ORG_SCOPES, Operation, Resource, Role, Scope
from taskhub.security.context import Actor
from taskhub.security.matrix import PermissionMatrix


def resolve_scopes(
    matrix: PermissionMatrix,
    resource: Resource | str,
    operation: Operation | str,
    role: Role | str,
    is_platform_actor: bool,
) -> frozenset[Scope]:
    """
    Scopes at which `role` may perform `operation` on `resource`.

    Notes:
    - A missing (resource, role) entry resolves to the empty set.
    - `crossOrg` is only ever granted to platform actors.
    """

    entry = matrix.entry(resource, role)
    if entry is None:
        return frozenset()

    op = Operation(operation)
    scopes: set[Scope] = set()
    if is_platform_actor and op in entry.cross_org:
        scopes.add(Scope.CROSS_ORG)
    for scope in ORG_SCOPES:
        if op in entry.operations_for(scope):
            scopes.add(scope)
    return frozenset(scopes)


def has_permission(
    matrix: PermissionMatrix,
    actor: Actor,
    resource: Resource | str,
    operation: Operation | str,
    scope: Scope | None = None,
) -> bool:
    """True when the actor holds `operation` on `resource` (at `scope`, if given)."""

    scopes = resolve_scopes(matrix, resource, operation, actor.role, actor.is_platform_user)
    if scope is None:
        return bool(scopes)
    return scope in scopes


def allowed_operations(matrix: PermissionMatrix, actor: Actor, resource: Resource | str) -> frozenset[Operation]:
    return frozenset(
        op for op in Operation if resolve_scopes(matrix, resource, op, actor.role, actor.is_platform_user)
    )
