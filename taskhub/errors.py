"""
Typed, expected errors raised by the authorization gate and the lifecycle core.

Every error carries a stable machine-readable ``kind``, the name of the
violated ``rule`` and an HTTP ``status_code`` so callers can tell
"you have no role for this" apart from "this document is out of scope".
None of these represent programming defects.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TaskhubError(Exception):
    kind: str = "error"
    rule: str = "unspecified"
    status_code: int = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message())

    @classmethod
    def default_message(cls) -> str:
        return cls.kind.replace("_", " ")

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "rule": self.rule, "message": str(self)}


# ---- Authorization ---------------------------------------------------------------------


class AuthenticationRequiredError(TaskhubError):
    kind = "authentication_required"
    rule = "actor_present"
    status_code = 401

    @classmethod
    def default_message(cls) -> str:
        return "Authentication required"


class UnknownResourceError(TaskhubError):
    kind = "unknown_resource"
    rule = "matrix_entry_exists"
    status_code = 403


class InsufficientRoleError(TaskhubError):
    kind = "insufficient_role"
    rule = "role_grants_operation"
    status_code = 403


class OrganizationScopeError(TaskhubError):
    kind = "organization_scope"
    rule = "same_organization"
    status_code = 403

    @classmethod
    def default_message(cls) -> str:
        return "You cannot access resources from other organizations"


class DepartmentScopeError(TaskhubError):
    kind = "department_scope"
    rule = "same_department"
    status_code = 403

    @classmethod
    def default_message(cls) -> str:
        return "You cannot access resources from other departments"


# ---- Lifecycle ---------------------------------------------------------------------------


class AlreadyDeletedError(TaskhubError):
    kind = "already_deleted"
    rule = "transition_from_active"
    status_code = 409


class NotDeletedError(TaskhubError):
    kind = "not_deleted"
    rule = "transition_from_deleted"
    status_code = 409


class IllegalMutationError(TaskhubError):
    kind = "illegal_mutation"
    rule = "sanctioned_transition_only"
    status_code = 400


class HardDeleteDisabledError(TaskhubError):
    kind = "hard_delete_disabled"
    rule = "no_physical_removal"
    status_code = 405

    @classmethod
    def default_message(cls) -> str:
        return "Hard delete is disabled. Use the soft-delete operations instead."


class NotFoundError(TaskhubError):
    kind = "not_found"
    rule = "entity_exists"
    status_code = 404


# ---- Structural invariants ---------------------------------------------------------------


class LastAdminError(TaskhubError):
    kind = "last_admin"
    rule = "organization_keeps_super_admin"
    status_code = 409

    @classmethod
    def default_message(cls) -> str:
        return "Cannot delete the last SuperAdmin in the organization"


class LastDepartmentHeadError(TaskhubError):
    kind = "last_department_head"
    rule = "department_keeps_head"
    status_code = 409

    @classmethod
    def default_message(cls) -> str:
        return "Cannot delete the last Head of Department (SuperAdmin/Admin) in this department"


class ReassignmentRequiredError(TaskhubError):
    kind = "reassignment_required"
    rule = "referenced_entity_needs_replacement"
    status_code = 409


class PlatformOrganizationError(TaskhubError):
    kind = "platform_organization"
    rule = "platform_organization_is_permanent"
    status_code = 409

    @classmethod
    def default_message(cls) -> str:
        return "The platform organization cannot be deleted"


# ---- Transaction control -----------------------------------------------------------------


class CascadeCancelledError(TaskhubError):
    kind = "cascade_cancelled"
    rule = "caller_still_waiting"
    status_code = 499


class TransactionConflictError(TaskhubError):
    kind = "transaction_conflict"
    rule = "bounded_retry"
    status_code = 503


def register_error_handlers(app: FastAPI) -> None:
    """Map every ``TaskhubError`` to a JSON response with its kind and rule."""

    @app.exception_handler(TaskhubError)
    async def taskhub_error_handler(request: Request, exc: TaskhubError) -> JSONResponse:
        level = logging.WARNING if exc.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "Rejected kind=%s rule=%s path=%s method=%s",
            exc.kind,
            exc.rule,
            request.url.path,
            request.method,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
