"""
Permission matrix: the declarative policy source.

Loaded once at startup from YAML, validated against the declared
Resource / Role / Scope / Operation enumerations, and frozen into an
immutable in-memory map.

Expected shape:

    permissions:
      Task:
        Manager:
          org:
            own: [read, update, delete]
            ownDept: [create, read, update]
            crossDept: [read]
        SuperAdmin:
          org:
            crossDept: [create, read, update, delete, restore]
          crossOrg:
            from: platform
            ops: [read, delete, restore]

A missing (resource, role) pair means "no access". `crossOrg` operations
only ever apply to members of the platform organization.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
import yaml

from taskhub.constants import ORG_SCOPES, Operation, Resource, Role, Scope

logger = logging.getLogger(__name__)


class PermissionMatrixError(ValueError):
    """Raised when the permission matrix configuration is invalid."""


# ---- Validation models -------------------------------------------------------------


class _CrossOrgModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    source: Literal["platform"] = Field(default="platform", alias="from")
    ops: list[Operation] = Field(default_factory=list)


class _OrgScopesModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    own: list[Operation] = Field(default_factory=list)
    own_dept: list[Operation] = Field(default_factory=list, alias="ownDept")
    cross_dept: list[Operation] = Field(default_factory=list, alias="crossDept")


class _RolePermissionsModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    org: _OrgScopesModel = Field(default_factory=_OrgScopesModel)
    cross_org: _CrossOrgModel | None = Field(default=None, alias="crossOrg")


class _PermissionMatrixModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    permissions: dict[Resource, dict[Role, _RolePermissionsModel]]


# ---- Runtime structures ------------------------------------------------------------


def _ordered(ops: list[Operation]) -> tuple[Operation, ...]:
    return tuple(dict.fromkeys(ops))


@dataclass(frozen=True)
class RolePermissions:
    """Permissions of one role on one resource."""

    org: Mapping[Scope, tuple[Operation, ...]]
    cross_org: tuple[Operation, ...] = ()

    def operations_for(self, scope: Scope) -> tuple[Operation, ...]:
        if scope is Scope.CROSS_ORG:
            return self.cross_org
        return self.org.get(scope, ())


class PermissionMatrix:
    """
    Read-only (resource, role) -> RolePermissions map.

    Usage:
        matrix = PermissionMatrix.from_yaml(Path("config/permission_matrix.yaml"))
        entry = matrix.entry(Resource.TASK, Role.MANAGER)
    """

    def __init__(self, entries: Mapping[tuple[Resource, Role], RolePermissions]) -> None:
        self._entries = MappingProxyType(dict(entries))
        self._resources = frozenset(resource for resource, _role in self._entries)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> PermissionMatrix:
        try:
            model = _PermissionMatrixModel.model_validate(raw)
        except ValidationError as exc:
            raise PermissionMatrixError(f"invalid permission matrix: {exc}") from exc

        entries: dict[tuple[Resource, Role], RolePermissions] = {}
        for resource, roles in model.permissions.items():
            for role, perms in roles.items():
                org = {
                    Scope.OWN: _ordered(perms.org.own),
                    Scope.OWN_DEPT: _ordered(perms.org.own_dept),
                    Scope.CROSS_DEPT: _ordered(perms.org.cross_dept),
                }
                cross_org = _ordered(perms.cross_org.ops) if perms.cross_org else ()
                entries[(resource, role)] = RolePermissions(
                    org=MappingProxyType({s: org[s] for s in ORG_SCOPES}),
                    cross_org=cross_org,
                )

        logger.debug("Permission matrix built entries=%s", len(entries))
        return cls(entries)

    @classmethod
    def from_yaml(cls, path: Path) -> PermissionMatrix:
        raw_text = path.read_text(encoding="utf-8")
        raw: dict[str, Any] = yaml.safe_load(raw_text) or {}

        if "permissions" not in raw:
            raise PermissionMatrixError(f"Missing top-level 'permissions' key in matrix: {path}")

        return cls.from_dict(raw)

    @property
    def resources(self) -> frozenset[Resource]:
        return self._resources

    def declares(self, resource: Resource | str) -> bool:
        try:
            return Resource(resource) in self._resources
        except ValueError:
            return False

    def entry(self, resource: Resource | str, role: Role | str) -> RolePermissions | None:
        try:
            key = (Resource(resource), Role(role))
        except ValueError:
            return None
        return self._entries.get(key)

    def __len__(self) -> int:
        return len(self._entries)


def load_permission_matrix(path: Path) -> PermissionMatrix:
    matrix = PermissionMatrix.from_yaml(path)
    logger.info("Loaded permission matrix path=%s entries=%s", path, len(matrix))
    return matrix
