from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    ColumnElement,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    null,
    text,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskhub.constants import TaskStatus
from taskhub.db.base import Base
from taskhub.models.lifecycle import SoftDeleteMixin
from taskhub.models.org import User


# Non-owning reference: watching a task does not make the user its owner.
task_watchers = Table(
    "task_watchers",
    Base.metadata,
    Column("task_id", ForeignKey("tasks.id"), primary_key=True),
    Column("user_id", ForeignKey("users.id"), primary_key=True),
)


class Vendor(SoftDeleteMixin, Base):
    __tablename__ = "vendors"
    __table_args__ = (
        Index("ix_vendors_org_deleted", "organization_id", "is_deleted"),
        Index(
            "uq_vendors_active_name",
            "organization_id",
            "name",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(100), nullable=True)

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    # Vendors are organization-wide.
    @hybrid_property
    def department_id(self) -> int | None:
        return None

    @department_id.inplace.expression
    @classmethod
    def _department_id_expression(cls) -> ColumnElement[int | None]:
        return null()


class Task(SoftDeleteMixin, Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_org_dept_deleted", "organization_id", "department_id", "is_deleted"),
        Index("ix_tasks_org_creator_deleted", "organization_id", "created_by_id", "is_deleted"),
        Index("ix_tasks_org_vendor_deleted", "organization_id", "vendor_id", "is_deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus, values_callable=lambda s: [v.value for v in s], native_enum=False, length=20),
        default=TaskStatus.TO_DO,
        nullable=False,
    )

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    vendor_id: Mapped[int | None] = mapped_column(ForeignKey("vendors.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    watchers: Mapped[list[User]] = relationship(secondary=task_watchers)
    materials: Mapped[list["TaskMaterial"]] = relationship(back_populates="task")


class TaskMaterial(Base):
    """Quantity/price link between a task and a material it consumes."""

    __tablename__ = "task_materials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id"), nullable=False, index=True)
    material_id: Mapped[int] = mapped_column(ForeignKey("materials.id"), nullable=False, index=True)
    quantity: Mapped[float] = mapped_column(Numeric(12, 3), nullable=False)
    unit_price: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False)

    task: Mapped[Task] = relationship(back_populates="materials")

    @property
    def total_cost(self) -> float:
        return float(self.quantity) * float(self.unit_price)


class Material(SoftDeleteMixin, Base):
    __tablename__ = "materials"
    __table_args__ = (
        Index("ix_materials_org_dept_deleted", "organization_id", "department_id", "is_deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="pcs", nullable=False)
    price: Mapped[float] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False)
    added_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    # Task links removed on deletion, kept so a restore can re-establish them.
    deletion_references: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    @hybrid_property
    def created_by_id(self) -> int:
        return self.added_by_id


class Attachment(SoftDeleteMixin, Base):
    __tablename__ = "attachments"
    __table_args__ = (
        Index("ix_attachments_org_task_deleted", "organization_id", "task_id", "is_deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(500), nullable=False)

    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id"), nullable=False)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False)
    uploaded_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    @hybrid_property
    def created_by_id(self) -> int:
        return self.uploaded_by_id


class Notification(SoftDeleteMixin, Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_org_creator_deleted", "organization_id", "created_by_id", "is_deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    task_id: Mapped[int | None] = mapped_column(ForeignKey("tasks.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class TaskActivity(SoftDeleteMixin, Base):
    """A logged piece of work on a task (visit, repair step, inspection)."""

    __tablename__ = "task_activities"
    __table_args__ = (
        Index("ix_task_activities_org_task_deleted", "organization_id", "task_id", "is_deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id"), nullable=False)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class TaskComment(SoftDeleteMixin, Base):
    """
    Threaded comment.

    A top-level comment hangs off a task or an activity; a reply only
    carries `parent_id`. Removing a comment removes its whole reply thread.
    """

    __tablename__ = "task_comments"
    __table_args__ = (
        Index("ix_task_comments_org_task_deleted", "organization_id", "task_id", "is_deleted"),
        Index("ix_task_comments_parent_deleted", "parent_id", "is_deleted"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)

    task_id: Mapped[int | None] = mapped_column(ForeignKey("tasks.id"), nullable=True)
    activity_id: Mapped[int | None] = mapped_column(ForeignKey("task_activities.id"), nullable=True)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("task_comments.id"), nullable=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
