from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskhub.constants import Role, TaskStatus
from taskhub.db.base import Base
from taskhub.db.session import SessionLocal, engine
from taskhub.models.org import Department, Organization, User
from taskhub.models.work import Attachment, Material, Notification, Task, TaskMaterial, Vendor


@dataclass(frozen=True)
class SeedData:
    """Primary keys of the demo rows, by role in the scenario."""

    platform_org_id: int
    platform_admin_id: int
    org_id: int
    engineering_id: int
    facilities_id: int
    super_admin_id: int
    engineering_admin_id: int
    facilities_admin_id: int
    manager_id: int
    user_id: int
    vendor_id: int
    backup_vendor_id: int
    material_id: int
    user_task_ids: tuple[int, ...]
    manager_task_id: int
    notification_id: int
    attachment_id: int


def init_db() -> None:
    """
    Create tables + seed demo data.

    Small and deterministic: one platform organization and one customer
    organization with two departments.
    """

    Base.metadata.create_all(bind=engine)

    with SessionLocal() as db:
        if _has_seed_data(db):
            return
        seed(db)


def _has_seed_data(db: Session) -> bool:
    return db.execute(select(Organization.id).limit(1)).first() is not None


def _user(first: str, last: str, role: Role, org: Organization, dept: Department, **kwargs) -> User:
    return User(
        first_name=first,
        last_name=last,
        email=f"{first.lower()}.{last.lower()}@example.com",
        role=role,
        organization_id=org.id,
        department_id=dept.id,
        **kwargs,
    )


def seed(db: Session) -> SeedData:
    # Organizations
    platform = Organization(name="Taskhub Platform", email="ops@taskhub.example", is_platform=True)
    acme = Organization(name="Acme Facilities", email="office@acme.example")
    db.add_all([platform, acme])
    db.flush()

    # Departments
    ops = Department(name="Operations", organization_id=platform.id)
    eng = Department(name="Engineering", organization_id=acme.id, description="Maintenance engineering")
    fac = Department(name="Facilities", organization_id=acme.id, description="Building services")
    db.add_all([ops, eng, fac])
    db.flush()

    # Users
    root = _user("Paula", "Platform", Role.SUPER_ADMIN, platform, ops)
    sa = _user("Sam", "Owner", Role.SUPER_ADMIN, acme, eng)
    eng_admin = _user("Erin", "Lead", Role.ADMIN, acme, eng)
    fac_admin = _user("Fred", "Lead", Role.ADMIN, acme, fac)
    db.add_all([root, sa, eng_admin, fac_admin])
    db.flush()

    manager = _user("Mona", "Manager", Role.MANAGER, acme, eng, created_by_id=sa.id)
    worker = _user("Uma", "User", Role.USER, acme, eng, created_by_id=eng_admin.id)
    db.add_all([manager, worker])
    db.flush()

    ops.created_by_id = root.id
    eng.created_by_id = sa.id
    fac.created_by_id = sa.id

    # Vendors and materials
    vendor = Vendor(name="CoolAir HVAC", email="service@coolair.example", organization_id=acme.id, created_by_id=sa.id)
    backup = Vendor(name="FrostLine", email="jobs@frostline.example", organization_id=acme.id, created_by_id=sa.id)
    cable = Material(
        name="Copper cable",
        unit="m",
        price=Decimal("2.50"),
        organization_id=acme.id,
        department_id=eng.id,
        added_by_id=manager.id,
    )
    db.add_all([vendor, backup, cable])
    db.flush()

    # Tasks
    t1 = Task(
        title="Replace lobby lights",
        status=TaskStatus.IN_PROGRESS,
        organization_id=acme.id,
        department_id=eng.id,
        created_by_id=worker.id,
        vendor_id=vendor.id,
    )
    t2 = Task(
        title="Inspect rooftop units",
        status=TaskStatus.TO_DO,
        organization_id=acme.id,
        department_id=eng.id,
        created_by_id=worker.id,
    )
    t3 = Task(
        title="Quarterly chiller service",
        status=TaskStatus.COMPLETED,
        organization_id=acme.id,
        department_id=eng.id,
        created_by_id=manager.id,
        vendor_id=vendor.id,
    )
    db.add_all([t1, t2, t3])
    db.flush()

    t3.watchers.append(worker)
    db.add(TaskMaterial(task_id=t3.id, material_id=cable.id, quantity=Decimal("12"), unit_price=Decimal("2.50")))

    note = Notification(
        title="Task assigned",
        message="Replace lobby lights was assigned to you",
        organization_id=acme.id,
        department_id=eng.id,
        created_by_id=worker.id,
        task_id=t1.id,
    )
    attachment = Attachment(
        filename="lobby.jpg",
        url="https://files.example/lobby.jpg",
        task_id=t3.id,
        organization_id=acme.id,
        department_id=eng.id,
        uploaded_by_id=manager.id,
    )
    db.add_all([note, attachment])

    db.commit()

    return SeedData(
        platform_org_id=platform.id,
        platform_admin_id=root.id,
        org_id=acme.id,
        engineering_id=eng.id,
        facilities_id=fac.id,
        super_admin_id=sa.id,
        engineering_admin_id=eng_admin.id,
        facilities_admin_id=fac_admin.id,
        manager_id=manager.id,
        user_id=worker.id,
        vendor_id=vendor.id,
        backup_vendor_id=backup.id,
        material_id=cable.id,
        user_task_ids=(t1.id, t2.id),
        manager_task_id=t3.id,
        notification_id=note.id,
        attachment_id=attachment.id,
    )
