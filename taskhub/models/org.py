from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, ColumnElement, DateTime, Enum, ForeignKey, Index, Integer, String, Text, null, text
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column, relationship

from taskhub.constants import Role
from taskhub.db.base import Base
from taskhub.models.lifecycle import SoftDeleteMixin


class Organization(SoftDeleteMixin, Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # The distinguished organization whose members may act across tenants.
    is_platform: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    departments: Mapped[list["Department"]] = relationship(back_populates="organization")

    # Scope checks read organization/department off every document.
    @hybrid_property
    def organization_id(self) -> int:
        return self.id

    @hybrid_property
    def department_id(self) -> int | None:
        return None

    @department_id.inplace.expression
    @classmethod
    def _department_id_expression(cls) -> ColumnElement[int | None]:
        return null()


class Department(SoftDeleteMixin, Base):
    __tablename__ = "departments"
    __table_args__ = (
        Index("ix_departments_org_deleted", "organization_id", "is_deleted"),
        Index(
            "uq_departments_active_name",
            "organization_id",
            "name",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", use_alter=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    organization: Mapped[Organization] = relationship(back_populates="departments")

    @hybrid_property
    def department_id(self) -> int:
        return self.id


class User(SoftDeleteMixin, Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_org_role_deleted", "organization_id", "role", "is_deleted"),
        Index("ix_users_org_dept_deleted", "organization_id", "department_id", "is_deleted"),
        Index(
            "uq_users_active_email",
            "email",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("is_deleted = false"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(100), nullable=False)

    role: Mapped[Role] = mapped_column(
        Enum(Role, values_callable=lambda roles: [r.value for r in roles], native_enum=False, length=20),
        default=Role.USER,
        nullable=False,
    )

    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id"), nullable=False)
    department_id: Mapped[int] = mapped_column(ForeignKey("departments.id"), nullable=False)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    organization: Mapped[Organization] = relationship(foreign_keys=[organization_id])
    department: Mapped[Department] = relationship(foreign_keys=[department_id])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
