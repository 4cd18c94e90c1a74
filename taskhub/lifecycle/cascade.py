"""
Cascade orchestrator.

Removing an entity removes everything that depends on it, following the
static `DEPENDENCY_EDGES` table depth-first. All transitions of one cascade
run on one session inside one transaction (see taskhub/db/transaction.py),
so the whole cascade commits or none of it does.

Before the root (or any dependent) is transitioned, its structural
invariants are checked:

- an organization keeps at least one active SuperAdmin
- a department keeps at least one active head of department
- the platform organization is never removed
- a vendor still serving open tasks needs a replacement
- a material is unlinked from active tasks (or swapped for a replacement)

Comments nest: removing a comment removes every reply below it.

Restore is root-only: dependents removed by the cascade stay deleted until
they are restored individually.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
import logging
import threading
from types import MappingProxyType
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from taskhub.constants import HEAD_OF_DEPARTMENT_ROLES, TERMINAL_TASK_STATUSES, TOP_ROLE
from taskhub.db.transaction import RetryPolicy, run_in_transaction
from taskhub.errors import (
    CascadeCancelledError,
    LastAdminError,
    LastDepartmentHeadError,
    NotFoundError,
    PlatformOrganizationError,
    ReassignmentRequiredError,
)
from taskhub.lifecycle.state import load_any, restore, soft_delete
from taskhub.models.lifecycle import SoftDeleteMixin
from taskhub.models.org import Department, Organization, User
from taskhub.models.work import (
    Attachment,
    Material,
    Notification,
    Task,
    TaskActivity,
    TaskComment,
    TaskMaterial,
    Vendor,
)

logger = logging.getLogger(__name__)


class CascadeGraphError(ValueError):
    """Raised when the dependency edge table contains a cycle."""


class EntityKind(str, Enum):
    ORGANIZATION = "Organization"
    DEPARTMENT = "Department"
    USER = "User"
    TASK = "Task"
    MATERIAL = "Material"
    VENDOR = "Vendor"
    ATTACHMENT = "Attachment"
    NOTIFICATION = "Notification"
    TASK_ACTIVITY = "TaskActivity"
    TASK_COMMENT = "TaskComment"


MODELS: Mapping[EntityKind, type[SoftDeleteMixin]] = MappingProxyType(
    {
        EntityKind.ORGANIZATION: Organization,
        EntityKind.DEPARTMENT: Department,
        EntityKind.USER: User,
        EntityKind.TASK: Task,
        EntityKind.MATERIAL: Material,
        EntityKind.VENDOR: Vendor,
        EntityKind.ATTACHMENT: Attachment,
        EntityKind.NOTIFICATION: Notification,
        EntityKind.TASK_ACTIVITY: TaskActivity,
        EntityKind.TASK_COMMENT: TaskComment,
    }
)


@dataclass(frozen=True)
class DependencyEdge:
    """`child.foreign_key` points at the parent."""

    child: EntityKind
    foreign_key: str


# Traversal order matters: tasks go before vendors and materials so that
# references from tasks removed in the same cascade no longer count.
DEPENDENCY_EDGES: Mapping[EntityKind, tuple[DependencyEdge, ...]] = MappingProxyType(
    {
        EntityKind.ORGANIZATION: (
            DependencyEdge(EntityKind.DEPARTMENT, "organization_id"),
            DependencyEdge(EntityKind.USER, "organization_id"),
            DependencyEdge(EntityKind.TASK, "organization_id"),
            DependencyEdge(EntityKind.TASK_ACTIVITY, "organization_id"),
            DependencyEdge(EntityKind.TASK_COMMENT, "organization_id"),
            DependencyEdge(EntityKind.MATERIAL, "organization_id"),
            DependencyEdge(EntityKind.VENDOR, "organization_id"),
            DependencyEdge(EntityKind.ATTACHMENT, "organization_id"),
            DependencyEdge(EntityKind.NOTIFICATION, "organization_id"),
        ),
        EntityKind.DEPARTMENT: (
            DependencyEdge(EntityKind.USER, "department_id"),
            DependencyEdge(EntityKind.TASK, "department_id"),
            DependencyEdge(EntityKind.TASK_ACTIVITY, "department_id"),
            DependencyEdge(EntityKind.TASK_COMMENT, "department_id"),
            DependencyEdge(EntityKind.MATERIAL, "department_id"),
            DependencyEdge(EntityKind.ATTACHMENT, "department_id"),
            DependencyEdge(EntityKind.NOTIFICATION, "department_id"),
        ),
        EntityKind.USER: (
            DependencyEdge(EntityKind.TASK, "created_by_id"),
            DependencyEdge(EntityKind.TASK_ACTIVITY, "created_by_id"),
            DependencyEdge(EntityKind.TASK_COMMENT, "created_by_id"),
            DependencyEdge(EntityKind.ATTACHMENT, "uploaded_by_id"),
            DependencyEdge(EntityKind.MATERIAL, "added_by_id"),
            DependencyEdge(EntityKind.NOTIFICATION, "created_by_id"),
        ),
        EntityKind.TASK: (
            DependencyEdge(EntityKind.TASK_ACTIVITY, "task_id"),
            DependencyEdge(EntityKind.TASK_COMMENT, "task_id"),
            DependencyEdge(EntityKind.ATTACHMENT, "task_id"),
            DependencyEdge(EntityKind.NOTIFICATION, "task_id"),
        ),
        EntityKind.TASK_ACTIVITY: (DependencyEdge(EntityKind.TASK_COMMENT, "activity_id"),),
        # Replies: the only self edge. Rows form a tree, so the recursion ends at the leaves.
        EntityKind.TASK_COMMENT: (DependencyEdge(EntityKind.TASK_COMMENT, "parent_id"),),
        EntityKind.MATERIAL: (),
        EntityKind.VENDOR: (),
        EntityKind.ATTACHMENT: (),
        EntityKind.NOTIFICATION: (),
    }
)


def validate_dependency_graph(edges: Mapping[EntityKind, tuple[DependencyEdge, ...]]) -> None:
    """
    Depth-first search for cycles; raises CascadeGraphError naming the cycle.

    A kind pointing at itself (comment -> reply) is a recursive kind, not a
    cycle. Any loop through two or more kinds is rejected.
    """

    visited: set[EntityKind] = set()
    visiting: list[EntityKind] = []

    def visit(kind: EntityKind) -> None:
        if kind in visiting:
            cycle = visiting[visiting.index(kind) :] + [kind]
            raise CascadeGraphError("Dependency cycle: " + " -> ".join(k.value for k in cycle))
        if kind in visited:
            return
        visiting.append(kind)
        for edge in edges.get(kind, ()):
            if edge.child is not kind:
                visit(edge.child)
        visiting.pop()
        visited.add(kind)

    for kind in edges:
        visit(kind)


validate_dependency_graph(DEPENDENCY_EDGES)


@dataclass
class CascadeReport:
    root_kind: EntityKind
    root_id: int
    operation: str
    affected: dict[EntityKind, list[int]] = field(default_factory=dict)
    reassigned_task_ids: list[int] = field(default_factory=list)
    unlinked_task_ids: list[int] = field(default_factory=list)
    relinked_task_ids: list[int] = field(default_factory=list)
    unwatched_task_ids: list[int] = field(default_factory=list)

    def record(self, kind: EntityKind, entity_id: int) -> None:
        self.affected.setdefault(kind, []).append(entity_id)

    @property
    def total(self) -> int:
        return sum(len(ids) for ids in self.affected.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "root_kind": self.root_kind.value,
            "root_id": self.root_id,
            "operation": self.operation,
            "affected": {kind.value: list(ids) for kind, ids in self.affected.items()},
            "reassigned_task_ids": list(self.reassigned_task_ids),
            "unlinked_task_ids": list(self.unlinked_task_ids),
            "relinked_task_ids": list(self.relinked_task_ids),
            "unwatched_task_ids": list(self.unwatched_task_ids),
        }


class CascadeOrchestrator:
    """
    Cascading soft-delete and root restore on one session.

    The caller owns the transaction; use `soft_delete_with_cascade` /
    `restore_with_cascade` to get a retried, atomic unit of work.
    """

    def __init__(self, session: Session, actor_id: int, cancel: threading.Event | None = None) -> None:
        self.session = session
        self.actor_id = actor_id
        self.cancel = cancel
        # Entities whose removal has started in this cascade (ancestors of the current node).
        self._removing: set[tuple[EntityKind, int]] = set()

    # ---- Public API --------------------------------------------------------------------

    def soft_delete(
        self,
        kind: EntityKind | str,
        entity_id: int,
        *,
        replacement_id: int | None = None,
    ) -> CascadeReport:
        kind = EntityKind(kind)
        root = load_any(self.session, MODELS[kind], entity_id)
        if root is None or root.is_deleted:
            raise NotFoundError(f"{kind.value} {entity_id} not found")

        report = CascadeReport(root_kind=kind, root_id=entity_id, operation="delete")
        self._remove(kind, root, report, replacement_id=replacement_id)

        logger.info(
            "Cascade delete complete kind=%s id=%s actor_id=%s affected=%s",
            kind.value,
            entity_id,
            self.actor_id,
            report.total,
        )
        return report

    def restore(self, kind: EntityKind | str, entity_id: int) -> CascadeReport:
        kind = EntityKind(kind)
        self._check_cancelled()
        entity = load_any(self.session, MODELS[kind], entity_id)
        if entity is None:
            raise NotFoundError(f"{kind.value} {entity_id} not found")

        report = CascadeReport(root_kind=kind, root_id=entity_id, operation="restore")
        restore(self.session, entity, self.actor_id)
        if kind is EntityKind.MATERIAL:
            self._relink_material(entity, report)
        report.record(kind, entity_id)

        logger.info("Restore complete kind=%s id=%s actor_id=%s", kind.value, entity_id, self.actor_id)
        return report

    # ---- Traversal ---------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise CascadeCancelledError("Cascade cancelled; no changes were committed")

    def _remove(
        self,
        kind: EntityKind,
        entity: Any,
        report: CascadeReport,
        *,
        replacement_id: int | None = None,
    ) -> None:
        key = (kind, entity.id)
        # Reached twice (e.g. a task via its organization and via its creator),
        # or a reply chain that loops back onto a comment still being removed.
        if entity.is_deleted or key in self._removing:
            return

        self._check_cancelled()
        self._removing.add(key)
        logger.debug("Cascade visiting kind=%s id=%s", kind.value, entity.id)

        self._check_invariants(kind, entity, report, replacement_id)

        for edge in DEPENDENCY_EDGES[kind]:
            model = MODELS[edge.child]
            children = self.session.scalars(
                select(model).where(getattr(model, edge.foreign_key) == entity.id).order_by(model.id)
            ).all()
            for child in children:
                self._remove(edge.child, child, report)

        if kind is EntityKind.USER:
            self._remove_watcher(entity, report)

        soft_delete(self.session, entity, self.actor_id)
        report.record(kind, entity.id)
        self._removing.discard(key)

    def _being_removed(self, kind: EntityKind, entity_id: int | None) -> bool:
        return entity_id is not None and (kind, entity_id) in self._removing

    # ---- Invariants --------------------------------------------------------------------

    def _check_invariants(
        self,
        kind: EntityKind,
        entity: Any,
        report: CascadeReport,
        replacement_id: int | None,
    ) -> None:
        if kind is EntityKind.ORGANIZATION and entity.is_platform:
            raise PlatformOrganizationError()
        if kind is EntityKind.USER:
            self._check_last_admin(entity)
            self._check_last_department_head(entity)
        elif kind is EntityKind.VENDOR:
            self._reassign_vendor_tasks(entity, report, replacement_id)
        elif kind is EntityKind.MATERIAL:
            self._unlink_material(entity, report, replacement_id)

    def _check_last_admin(self, user: User) -> None:
        if user.role is not TOP_ROLE:
            return
        if self._being_removed(EntityKind.ORGANIZATION, user.organization_id):
            return
        other = self.session.scalar(
            select(User.id)
            .where(
                User.organization_id == user.organization_id,
                User.role == TOP_ROLE,
                User.id != user.id,
            )
            .limit(1)
            .with_for_update()
        )
        if other is None:
            raise LastAdminError()

    def _check_last_department_head(self, user: User) -> None:
        if user.role not in HEAD_OF_DEPARTMENT_ROLES:
            return
        if self._being_removed(EntityKind.DEPARTMENT, user.department_id):
            return
        if self._being_removed(EntityKind.ORGANIZATION, user.organization_id):
            return
        other = self.session.scalar(
            select(User.id)
            .where(
                User.department_id == user.department_id,
                User.role.in_(tuple(HEAD_OF_DEPARTMENT_ROLES)),
                User.id != user.id,
            )
            .limit(1)
            .with_for_update()
        )
        if other is None:
            raise LastDepartmentHeadError()

    # ---- Reference handling ------------------------------------------------------------

    def _reassign_vendor_tasks(self, vendor: Vendor, report: CascadeReport, replacement_id: int | None) -> None:
        tasks = self.session.scalars(
            select(Task)
            .where(Task.vendor_id == vendor.id, Task.status.not_in(tuple(TERMINAL_TASK_STATUSES)))
            .order_by(Task.id)
        ).all()
        if not tasks:
            return
        if replacement_id is None:
            raise ReassignmentRequiredError(
                f"Vendor {vendor.id} is referenced by {len(tasks)} open task(s); "
                "reassign them to another vendor before deleting"
            )

        replacement = self._replacement(Vendor, vendor, replacement_id)
        for task in tasks:
            task.vendor_id = replacement.id
            report.reassigned_task_ids.append(task.id)
        logger.info(
            "Reassigned tasks from vendor=%s to vendor=%s count=%s", vendor.id, replacement.id, len(tasks)
        )

    def _unlink_material(self, material: Material, report: CascadeReport, replacement_id: int | None) -> None:
        links = self.session.scalars(
            select(TaskMaterial)
            .join(Task, TaskMaterial.task_id == Task.id)
            .where(TaskMaterial.material_id == material.id)
            .order_by(TaskMaterial.id)
        ).all()
        if not links:
            return

        if replacement_id is not None:
            replacement = self._replacement(Material, material, replacement_id)
            for link in links:
                link.material_id = replacement.id
                report.reassigned_task_ids.append(link.task_id)
            return

        material.deletion_references = [
            {"task_id": link.task_id, "quantity": str(link.quantity), "unit_price": str(link.unit_price)}
            for link in links
        ]
        for link in links:
            report.unlinked_task_ids.append(link.task_id)
            self.session.delete(link)

    def _relink_material(self, material: Material, report: CascadeReport) -> None:
        references = material.deletion_references or []
        task_ids = [ref["task_id"] for ref in references]
        active = set(self.session.scalars(select(Task.id).where(Task.id.in_(task_ids))).all()) if task_ids else set()

        for ref in references:
            if ref["task_id"] not in active:
                continue
            self.session.add(
                TaskMaterial(
                    task_id=ref["task_id"],
                    material_id=material.id,
                    quantity=Decimal(ref["quantity"]),
                    unit_price=Decimal(ref["unit_price"]),
                )
            )
            report.relinked_task_ids.append(ref["task_id"])

        material.deletion_references = None
        self.session.flush()

    def _replacement(self, model: type[Any], entity: Any, replacement_id: int) -> Any:
        replacement = self.session.scalar(
            select(model).where(model.id == replacement_id, model.organization_id == entity.organization_id)
        )
        if replacement is None or replacement.id == entity.id:
            raise NotFoundError(f"Replacement {model.__name__} {replacement_id} not found")
        return replacement

    def _remove_watcher(self, user: User, report: CascadeReport) -> None:
        watched = self.session.scalars(
            select(Task).where(Task.watchers.any(User.id == user.id)).order_by(Task.id)
        ).all()
        for task in watched:
            task.watchers.remove(user)
            report.unwatched_task_ids.append(task.id)


# ---- Transactional entry points ------------------------------------------------------------


def soft_delete_with_cascade(
    session_factory: sessionmaker[Session],
    kind: EntityKind | str,
    entity_id: int,
    actor_id: int,
    *,
    replacement_id: int | None = None,
    policy: RetryPolicy | None = None,
    cancel: threading.Event | None = None,
) -> CascadeReport:
    def work(session: Session) -> CascadeReport:
        orchestrator = CascadeOrchestrator(session, actor_id, cancel=cancel)
        return orchestrator.soft_delete(kind, entity_id, replacement_id=replacement_id)

    return run_in_transaction(session_factory, work, policy=policy, cancel=cancel)


def restore_with_cascade(
    session_factory: sessionmaker[Session],
    kind: EntityKind | str,
    entity_id: int,
    actor_id: int,
    *,
    policy: RetryPolicy | None = None,
    cancel: threading.Event | None = None,
) -> CascadeReport:
    def work(session: Session) -> CascadeReport:
        return CascadeOrchestrator(session, actor_id, cancel=cancel).restore(kind, entity_id)

    return run_in_transaction(session_factory, work, policy=policy, cancel=cancel)
