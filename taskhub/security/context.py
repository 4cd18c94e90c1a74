from __future__ import annotations

from dataclasses import dataclass

from taskhub.constants import SCOPE_PRECEDENCE, Operation, Resource, Role, Scope


@dataclass(frozen=True)
class Actor:
    """
    The authenticated caller.

    Produced by the authentication layer (taskhub/security/auth.py) before
    any authorization runs. Frozen: platform membership cannot change for
    the lifetime of a request.
    """

    id: int
    role: Role
    organization_id: int
    department_id: int
    is_platform_user: bool = False


@dataclass(frozen=True)
class AuthorizationDecision:
    """
    Per-request authorization result.

    Returned by the `authorize(...)` dependency and passed explicitly to the
    handler; never persisted and never stored in ambient state.
    """

    resource: Resource
    operation: Operation
    actor_id: int
    role: Role
    organization_id: int
    department_id: int
    is_platform_user: bool
    scopes: frozenset[Scope]

    def grants(self, scope: Scope) -> bool:
        return scope in self.scopes

    @property
    def broadest_scope(self) -> Scope | None:
        for scope in SCOPE_PRECEDENCE:
            if scope in self.scopes:
                if scope is Scope.CROSS_ORG and not self.is_platform_user:
                    continue
                return scope
        return None
