"""Enumerations shared by the policy, the models and the lifecycle core."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Roles, most privileged first."""

    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    MANAGER = "Manager"
    USER = "User"


TOP_ROLE = Role.SUPER_ADMIN

HEAD_OF_DEPARTMENT_ROLES: frozenset[Role] = frozenset({Role.SUPER_ADMIN, Role.ADMIN})


class Resource(str, Enum):
    ORGANIZATION = "Organization"
    DEPARTMENT = "Department"
    USER = "User"
    TASK = "Task"
    MATERIAL = "Material"
    VENDOR = "Vendor"
    ATTACHMENT = "Attachment"
    NOTIFICATION = "Notification"


# Resources whose documents can be "owned" by being the actor itself (a profile).
SELF_REFERENTIAL_RESOURCES: frozenset[Resource] = frozenset({Resource.USER})


class Operation(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"


class Scope(str, Enum):
    """Visibility scopes, broadest first."""

    CROSS_ORG = "crossOrg"
    CROSS_DEPT = "crossDept"
    OWN_DEPT = "ownDept"
    OWN = "own"


SCOPE_PRECEDENCE: tuple[Scope, ...] = tuple(Scope)

# Scopes that can be granted inside an organization (the matrix "org" block).
ORG_SCOPES: tuple[Scope, ...] = (Scope.OWN, Scope.OWN_DEPT, Scope.CROSS_DEPT)


class TaskStatus(str, Enum):
    TO_DO = "To Do"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    PENDING = "Pending"


TERMINAL_TASK_STATUSES: frozenset[TaskStatus] = frozenset({TaskStatus.COMPLETED})
