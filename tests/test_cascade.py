"""
Cascade orchestrator scenarios on the demo data set.

Seed layout (taskhub/db/init_db.py):
    Acme: Engineering (Sam SuperAdmin, Erin Admin, Mona Manager, Uma User)
          Facilities  (Fred Admin)
    Uma owns two open tasks and a notification on one of them.
    Mona owns a completed task (Uma watches it) with an attachment and cable.
    CoolAir serves Uma's in-progress task and Mona's completed one.
"""
from __future__ import annotations

from decimal import Decimal
import threading

import pytest
from sqlalchemy import select

from taskhub.constants import Role
from taskhub.db.filters import read_options
from taskhub.errors import (
    CascadeCancelledError,
    LastAdminError,
    LastDepartmentHeadError,
    NotDeletedError,
    NotFoundError,
    PlatformOrganizationError,
    ReassignmentRequiredError,
)
from taskhub.lifecycle.cascade import (
    DEPENDENCY_EDGES,
    CascadeGraphError,
    CascadeOrchestrator,
    DependencyEdge,
    EntityKind,
    restore_with_cascade,
    soft_delete_with_cascade,
    validate_dependency_graph,
)
from taskhub.lifecycle.state import count_deleted, load_any
from taskhub.models.org import Organization, User
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


def _is_deleted(session_factory, model, entity_id) -> bool:
    with session_factory() as session:
        return load_any(session, model, entity_id).is_deleted


class CancelAfter:
    """Event stand-in that reports cancellation after `n` checks."""

    def __init__(self, n: int) -> None:
        self.n = n
        self.calls = 0

    def is_set(self) -> bool:
        self.calls += 1
        return self.calls > self.n


# ---- Dependency graph ----------------------------------------------------------------------


def test_declared_edges_are_acyclic():
    validate_dependency_graph(DEPENDENCY_EDGES)
    assert set(DEPENDENCY_EDGES) == set(EntityKind)


def test_cycle_is_reported():
    edges = {
        EntityKind.TASK: (DependencyEdge(EntityKind.NOTIFICATION, "task_id"),),
        EntityKind.NOTIFICATION: (DependencyEdge(EntityKind.TASK, "notification_id"),),
    }
    with pytest.raises(CascadeGraphError, match="Task -> Notification -> Task"):
        validate_dependency_graph(edges)


# ---- User cascade -------------------------------------------------------------------------


def test_user_delete_removes_owned_documents(session_factory, seeded):
    report = soft_delete_with_cascade(session_factory, EntityKind.USER, seeded.user_id, seeded.engineering_admin_id)

    assert report.affected[EntityKind.USER] == [seeded.user_id]
    assert sorted(report.affected[EntityKind.TASK]) == sorted(seeded.user_task_ids)
    assert report.affected[EntityKind.NOTIFICATION] == [seeded.notification_id]
    assert report.unwatched_task_ids == [seeded.manager_task_id]
    assert report.total == 4

    for task_id in seeded.user_task_ids:
        assert _is_deleted(session_factory, Task, task_id)
    assert _is_deleted(session_factory, Notification, seeded.notification_id)
    assert not _is_deleted(session_factory, Task, seeded.manager_task_id)

    with session_factory() as session:
        listed = set(session.scalars(select(Task.id)).all())
        assert listed == {seeded.manager_task_id}
        watched = session.get(Task, seeded.manager_task_id)
        assert watched.watchers == []
        deleted_by = load_any(session, Task, seeded.user_task_ids[0]).deleted_by_id
        assert deleted_by == seeded.engineering_admin_id


def test_restore_is_root_only(session_factory, seeded):
    soft_delete_with_cascade(session_factory, EntityKind.USER, seeded.user_id, seeded.engineering_admin_id)

    report = restore_with_cascade(session_factory, EntityKind.USER, seeded.user_id, seeded.engineering_admin_id)

    assert report.affected == {EntityKind.USER: [seeded.user_id]}
    assert not _is_deleted(session_factory, User, seeded.user_id)
    with session_factory() as session:
        assert count_deleted(session, Task, Task.created_by_id == seeded.user_id) == 2
        assert count_deleted(session, Notification) == 1


def test_deleting_a_deleted_root_is_not_found(session_factory, seeded):
    soft_delete_with_cascade(session_factory, EntityKind.TASK, seeded.user_task_ids[1], seeded.user_id)

    with pytest.raises(NotFoundError):
        soft_delete_with_cascade(session_factory, EntityKind.TASK, seeded.user_task_ids[1], seeded.user_id)
    with pytest.raises(NotFoundError):
        soft_delete_with_cascade(session_factory, EntityKind.TASK, 9999, seeded.user_id)


def test_restoring_an_active_root_is_rejected(session_factory, seeded):
    with pytest.raises(NotDeletedError):
        restore_with_cascade(session_factory, EntityKind.TASK, seeded.user_task_ids[0], seeded.user_id)


def test_task_delete_takes_attachments_along(session_factory, seeded):
    report = soft_delete_with_cascade(session_factory, EntityKind.TASK, seeded.manager_task_id, seeded.manager_id)

    assert report.affected[EntityKind.ATTACHMENT] == [seeded.attachment_id]
    assert _is_deleted(session_factory, Attachment, seeded.attachment_id)


# ---- Activities and comment threads -------------------------------------------------------


@pytest.fixture
def thread(session_factory, seeded):
    """
    On Uma's in-progress task: an activity by Uma, a comment by Mona with a
    two-level reply chain (Uma, then Mona), and a comment by Mona on the
    activity. On Mona's completed task: a comment by Mona with a reply by Uma.
    """

    task_id = seeded.user_task_ids[0]
    scope = {"organization_id": seeded.org_id, "department_id": seeded.engineering_id}
    with session_factory() as session:
        activity = TaskActivity(
            description="Removed old fittings", task_id=task_id, created_by_id=seeded.user_id, **scope
        )
        session.add(activity)
        session.flush()

        root = TaskComment(body="Which fittings?", task_id=task_id, created_by_id=seeded.manager_id, **scope)
        on_activity = TaskComment(
            body="Photos please", activity_id=activity.id, created_by_id=seeded.manager_id, **scope
        )
        other_root = TaskComment(
            body="Signed off", task_id=seeded.manager_task_id, created_by_id=seeded.manager_id, **scope
        )
        session.add_all([root, on_activity, other_root])
        session.flush()

        reply = TaskComment(body="The LED ones", parent_id=root.id, created_by_id=seeded.user_id, **scope)
        other_reply = TaskComment(body="Thanks", parent_id=other_root.id, created_by_id=seeded.user_id, **scope)
        session.add_all([reply, other_reply])
        session.flush()

        nested = TaskComment(body="Great", parent_id=reply.id, created_by_id=seeded.manager_id, **scope)
        session.add(nested)
        session.commit()

        return {
            "activity": activity.id,
            "root": root.id,
            "reply": reply.id,
            "nested": nested.id,
            "on_activity": on_activity.id,
            "other_root": other_root.id,
            "other_reply": other_reply.id,
        }


def test_deleting_a_comment_removes_its_reply_thread(session_factory, seeded, thread):
    report = soft_delete_with_cascade(session_factory, EntityKind.TASK_COMMENT, thread["root"], seeded.manager_id)

    assert sorted(report.affected[EntityKind.TASK_COMMENT]) == sorted(
        [thread["root"], thread["reply"], thread["nested"]]
    )
    # Depth-first: the deepest reply goes first, the root last.
    assert report.affected[EntityKind.TASK_COMMENT][0] == thread["nested"]
    assert report.affected[EntityKind.TASK_COMMENT][-1] == thread["root"]
    for key in ("on_activity", "other_root", "other_reply"):
        assert not _is_deleted(session_factory, TaskComment, thread[key])


def test_deleting_a_reply_keeps_its_parent(session_factory, seeded, thread):
    soft_delete_with_cascade(session_factory, EntityKind.TASK_COMMENT, thread["reply"], seeded.user_id)

    assert _is_deleted(session_factory, TaskComment, thread["nested"])
    assert not _is_deleted(session_factory, TaskComment, thread["root"])


def test_task_delete_removes_activities_and_comments(session_factory, seeded, thread):
    report = soft_delete_with_cascade(
        session_factory, EntityKind.TASK, seeded.user_task_ids[0], seeded.engineering_admin_id
    )

    assert report.affected[EntityKind.TASK_ACTIVITY] == [thread["activity"]]
    assert sorted(report.affected[EntityKind.TASK_COMMENT]) == sorted(
        [thread["on_activity"], thread["root"], thread["reply"], thread["nested"]]
    )
    assert not _is_deleted(session_factory, TaskComment, thread["other_root"])
    assert not _is_deleted(session_factory, TaskComment, thread["other_reply"])


def test_user_delete_removes_their_comments_and_the_replies_below(session_factory, seeded, thread):
    report = soft_delete_with_cascade(session_factory, EntityKind.USER, seeded.user_id, seeded.engineering_admin_id)

    assert report.affected[EntityKind.TASK_ACTIVITY] == [thread["activity"]]
    # Everything on Uma's task goes with it; on Mona's task only Uma's reply goes.
    assert thread["other_reply"] in report.affected[EntityKind.TASK_COMMENT]
    assert not _is_deleted(session_factory, TaskComment, thread["other_root"])
    with session_factory() as session:
        visible = set(session.scalars(select(TaskComment.id)).all())
        assert visible == {thread["other_root"]}


def test_organization_delete_reaches_activities_and_comments(session_factory, seeded, thread):
    report = soft_delete_with_cascade(
        session_factory, EntityKind.ORGANIZATION, seeded.org_id, seeded.platform_admin_id
    )

    assert report.affected[EntityKind.TASK_ACTIVITY] == [thread["activity"]]
    assert len(report.affected[EntityKind.TASK_COMMENT]) == 6
    with session_factory() as session:
        assert count_deleted(session, TaskComment) == 6


def test_self_edge_is_a_recursive_kind_not_a_cycle():
    edges = {
        EntityKind.TASK: (DependencyEdge(EntityKind.TASK_COMMENT, "task_id"),),
        EntityKind.TASK_COMMENT: (DependencyEdge(EntityKind.TASK_COMMENT, "parent_id"),),
    }
    validate_dependency_graph(edges)

    looped = {**edges, EntityKind.TASK_COMMENT: (DependencyEdge(EntityKind.TASK, "comment_id"),)}
    with pytest.raises(CascadeGraphError, match="Task -> TaskComment -> Task"):
        validate_dependency_graph(looped)


# ---- Structural invariants ----------------------------------------------------------------


def test_last_super_admin_cannot_be_deleted(session_factory, seeded):
    with pytest.raises(LastAdminError):
        soft_delete_with_cascade(session_factory, EntityKind.USER, seeded.super_admin_id, seeded.platform_admin_id)

    assert not _is_deleted(session_factory, User, seeded.super_admin_id)


def test_super_admin_can_go_once_another_exists(session_factory, seeded):
    with session_factory() as session:
        session.add(
            User(
                first_name="Sue",
                last_name="Second",
                email="sue.second@example.com",
                role=Role.SUPER_ADMIN,
                organization_id=seeded.org_id,
                department_id=seeded.facilities_id,
            )
        )
        session.commit()

    soft_delete_with_cascade(session_factory, EntityKind.USER, seeded.super_admin_id, seeded.platform_admin_id)

    assert _is_deleted(session_factory, User, seeded.super_admin_id)


def test_last_department_head_cannot_be_deleted(session_factory, seeded):
    with pytest.raises(LastDepartmentHeadError):
        soft_delete_with_cascade(session_factory, EntityKind.USER, seeded.facilities_admin_id, seeded.super_admin_id)

    assert not _is_deleted(session_factory, User, seeded.facilities_admin_id)


def test_department_delete_skips_its_own_head_check(session_factory, seeded):
    report = soft_delete_with_cascade(
        session_factory, EntityKind.DEPARTMENT, seeded.facilities_id, seeded.super_admin_id
    )

    assert report.affected[EntityKind.USER] == [seeded.facilities_admin_id]
    assert _is_deleted(session_factory, User, seeded.facilities_admin_id)


def test_department_holding_the_last_super_admin_is_kept(session_factory, seeded):
    with pytest.raises(LastAdminError):
        soft_delete_with_cascade(
            session_factory, EntityKind.DEPARTMENT, seeded.engineering_id, seeded.platform_admin_id
        )

    for user_id in (seeded.super_admin_id, seeded.engineering_admin_id, seeded.manager_id, seeded.user_id):
        assert not _is_deleted(session_factory, User, user_id)


def test_platform_organization_is_permanent(session_factory, seeded):
    with pytest.raises(PlatformOrganizationError):
        soft_delete_with_cascade(
            session_factory, EntityKind.ORGANIZATION, seeded.platform_org_id, seeded.platform_admin_id
        )


def test_organization_delete_removes_the_whole_tenant(session_factory, seeded):
    report = soft_delete_with_cascade(
        session_factory, EntityKind.ORGANIZATION, seeded.org_id, seeded.platform_admin_id
    )

    assert report.affected[EntityKind.ORGANIZATION] == [seeded.org_id]
    assert len(report.affected[EntityKind.DEPARTMENT]) == 2
    assert len(report.affected[EntityKind.USER]) == 5
    assert len(report.affected[EntityKind.TASK]) == 3
    assert len(report.affected[EntityKind.VENDOR]) == 2
    assert report.affected[EntityKind.MATERIAL] == [seeded.material_id]

    with session_factory() as session:
        assert session.scalars(select(Task).where(Task.organization_id == seeded.org_id)).all() == []
        assert session.scalars(select(User).where(User.organization_id == seeded.org_id)).all() == []
        platform = session.get(Organization, seeded.platform_org_id)
        assert platform is not None and not platform.is_deleted
        assert session.get(User, seeded.platform_admin_id) is not None


# ---- Atomicity and cancellation -----------------------------------------------------------


def test_cancel_before_any_flush_leaves_no_trace(session_factory, seeded):
    # Runner check, then the user, then the first task; the notification check cancels.
    with pytest.raises(CascadeCancelledError):
        soft_delete_with_cascade(
            session_factory,
            EntityKind.USER,
            seeded.user_id,
            seeded.engineering_admin_id,
            cancel=CancelAfter(3),
        )

    assert not _is_deleted(session_factory, User, seeded.user_id)
    assert not _is_deleted(session_factory, Task, seeded.user_task_ids[0])
    assert not _is_deleted(session_factory, Notification, seeded.notification_id)


def test_cancel_after_flushed_dependents_rolls_them_back(session_factory, seeded):
    # Checks: runner, user, first task, its notification (both flushed), then the second task cancels.
    with pytest.raises(CascadeCancelledError):
        soft_delete_with_cascade(
            session_factory,
            EntityKind.USER,
            seeded.user_id,
            seeded.engineering_admin_id,
            cancel=CancelAfter(4),
        )

    assert not _is_deleted(session_factory, Task, seeded.user_task_ids[0])
    assert not _is_deleted(session_factory, Notification, seeded.notification_id)
    assert not _is_deleted(session_factory, Task, seeded.user_task_ids[1])
    assert not _is_deleted(session_factory, User, seeded.user_id)


def test_late_invariant_failure_rolls_back_earlier_siblings(session_factory, seeded):
    # A second SuperAdmin in Engineering: Sam passes the check because Sue is active,
    # then every other member and their tasks are removed before Sue fails it.
    with session_factory() as session:
        sue = User(
            first_name="Sue",
            last_name="Second",
            email="sue.second@example.com",
            role=Role.SUPER_ADMIN,
            organization_id=seeded.org_id,
            department_id=seeded.engineering_id,
        )
        session.add(sue)
        session.commit()
        sue_id = sue.id

    with pytest.raises(LastAdminError):
        soft_delete_with_cascade(
            session_factory, EntityKind.DEPARTMENT, seeded.engineering_id, seeded.platform_admin_id
        )

    for user_id in (seeded.super_admin_id, seeded.engineering_admin_id, seeded.manager_id, seeded.user_id, sue_id):
        assert not _is_deleted(session_factory, User, user_id)
    for task_id in (*seeded.user_task_ids, seeded.manager_task_id):
        assert not _is_deleted(session_factory, Task, task_id)
    assert not _is_deleted(session_factory, Notification, seeded.notification_id)
    with session_factory() as session:
        assert session.get(Task, seeded.manager_task_id).watchers != []
        assert count_deleted(session, Task) == 0


def test_cancel_before_start_runs_nothing(session_factory, seeded):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(CascadeCancelledError):
        soft_delete_with_cascade(
            session_factory, EntityKind.TASK, seeded.user_task_ids[0], seeded.user_id, cancel=cancel
        )

    assert not _is_deleted(session_factory, Task, seeded.user_task_ids[0])


def test_orchestrator_on_caller_session(db_session, seeded):
    orchestrator = CascadeOrchestrator(db_session, seeded.user_id)

    report = orchestrator.soft_delete(EntityKind.TASK, seeded.user_task_ids[0])
    db_session.rollback()

    assert report.affected[EntityKind.NOTIFICATION] == [seeded.notification_id]
    assert db_session.get(Task, seeded.user_task_ids[0]) is not None


# ---- Vendor reassignment ------------------------------------------------------------------


def test_vendor_with_open_tasks_needs_a_replacement(session_factory, seeded):
    with pytest.raises(ReassignmentRequiredError, match="1 open task"):
        soft_delete_with_cascade(session_factory, EntityKind.VENDOR, seeded.vendor_id, seeded.super_admin_id)

    assert not _is_deleted(session_factory, Vendor, seeded.vendor_id)


def test_vendor_open_tasks_move_to_the_replacement(session_factory, seeded):
    report = soft_delete_with_cascade(
        session_factory,
        EntityKind.VENDOR,
        seeded.vendor_id,
        seeded.super_admin_id,
        replacement_id=seeded.backup_vendor_id,
    )

    open_task_id = seeded.user_task_ids[0]
    assert report.reassigned_task_ids == [open_task_id]
    with session_factory() as session:
        assert session.get(Task, open_task_id).vendor_id == seeded.backup_vendor_id
        # Completed work keeps its historical vendor.
        assert session.get(Task, seeded.manager_task_id).vendor_id == seeded.vendor_id

    restore_with_cascade(session_factory, EntityKind.VENDOR, seeded.vendor_id, seeded.super_admin_id)
    with session_factory() as session:
        assert session.get(Task, open_task_id).vendor_id == seeded.backup_vendor_id


@pytest.mark.parametrize("replacement", ["self", "missing", "other-org"])
def test_vendor_replacement_must_be_another_active_vendor(session_factory, seeded, replacement):
    replacement_id = {"self": seeded.vendor_id, "missing": 9999}.get(replacement)
    if replacement == "other-org":
        with session_factory() as session:
            foreign = Vendor(name="Elsewhere Ltd", organization_id=seeded.platform_org_id)
            session.add(foreign)
            session.commit()
            replacement_id = foreign.id

    with pytest.raises(NotFoundError):
        soft_delete_with_cascade(
            session_factory,
            EntityKind.VENDOR,
            seeded.vendor_id,
            seeded.super_admin_id,
            replacement_id=replacement_id,
        )


def test_vendor_without_open_tasks_is_deleted_directly(session_factory, seeded):
    report = soft_delete_with_cascade(
        session_factory, EntityKind.VENDOR, seeded.backup_vendor_id, seeded.super_admin_id
    )

    assert report.affected == {EntityKind.VENDOR: [seeded.backup_vendor_id]}
    assert report.reassigned_task_ids == []


# ---- Material unlink / relink -------------------------------------------------------------


def _links(session_factory, material_id) -> list[int]:
    with session_factory() as session:
        return list(
            session.scalars(select(TaskMaterial.task_id).where(TaskMaterial.material_id == material_id)).all()
        )


def test_material_delete_unlinks_and_restore_relinks(session_factory, seeded):
    report = soft_delete_with_cascade(session_factory, EntityKind.MATERIAL, seeded.material_id, seeded.manager_id)

    assert report.unlinked_task_ids == [seeded.manager_task_id]
    assert _links(session_factory, seeded.material_id) == []
    with session_factory() as session:
        (reference,) = load_any(session, Material, seeded.material_id).deletion_references
        assert reference["task_id"] == seeded.manager_task_id
        assert Decimal(reference["quantity"]) == Decimal("12")
        assert Decimal(reference["unit_price"]) == Decimal("2.50")

    restored = restore_with_cascade(session_factory, EntityKind.MATERIAL, seeded.material_id, seeded.manager_id)

    assert restored.relinked_task_ids == [seeded.manager_task_id]
    with session_factory() as session:
        link = session.scalars(select(TaskMaterial).where(TaskMaterial.material_id == seeded.material_id)).one()
        assert link.quantity == Decimal("12")
        assert load_any(session, Material, seeded.material_id).deletion_references is None


def test_material_restore_skips_tasks_deleted_meanwhile(session_factory, seeded):
    soft_delete_with_cascade(session_factory, EntityKind.MATERIAL, seeded.material_id, seeded.manager_id)
    soft_delete_with_cascade(session_factory, EntityKind.TASK, seeded.manager_task_id, seeded.manager_id)

    restored = restore_with_cascade(session_factory, EntityKind.MATERIAL, seeded.material_id, seeded.manager_id)

    assert restored.relinked_task_ids == []
    assert _links(session_factory, seeded.material_id) == []


def test_material_links_move_to_a_replacement(session_factory, seeded):
    with session_factory() as session:
        spare = Material(
            name="Aluminium cable",
            unit="m",
            organization_id=seeded.org_id,
            department_id=seeded.engineering_id,
            added_by_id=seeded.manager_id,
        )
        session.add(spare)
        session.commit()
        spare_id = spare.id

    report = soft_delete_with_cascade(
        session_factory,
        EntityKind.MATERIAL,
        seeded.material_id,
        seeded.manager_id,
        replacement_id=spare_id,
    )

    assert report.reassigned_task_ids == [seeded.manager_task_id]
    assert _links(session_factory, spare_id) == [seeded.manager_task_id]
    with session_factory() as session:
        assert load_any(session, Material, seeded.material_id).deletion_references is None


def test_material_query_options_respect_lifecycle(session_factory, seeded):
    soft_delete_with_cascade(session_factory, EntityKind.MATERIAL, seeded.material_id, seeded.manager_id)

    with session_factory() as session:
        assert session.scalars(select(Material)).all() == []
        deleted = session.scalars(select(Material).execution_options(**read_options(only_deleted=True))).all()
        assert [m.id for m in deleted] == [seeded.material_id]
