from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, sessionmaker

from taskhub.constants import Operation, Resource, Role
from taskhub.db.session import get_db, get_session_factory
from taskhub.lifecycle.cascade import EntityKind, restore_with_cascade, soft_delete_with_cascade
from taskhub.models.org import Department, Organization
from taskhub.routers._shared import fetch_authorized, retry_policy
from taskhub.schemas.lifecycle import CascadeReportOut
from taskhub.security.context import Actor, AuthorizationDecision
from taskhub.security.gate import authorize, require_platform_user, require_role
from taskhub.settings import Settings, get_settings

router = APIRouter(prefix="/admin", tags=["admin"])


@router.delete("/organizations/{organization_id}", response_model=CascadeReportOut)
def delete_organization(
    organization_id: int,
    _platform: Actor = Depends(require_platform_user()),
    decision: AuthorizationDecision = Depends(authorize(Resource.ORGANIZATION, Operation.DELETE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    fetch_authorized(db, Organization, organization_id, decision)
    report = soft_delete_with_cascade(
        session_factory,
        EntityKind.ORGANIZATION,
        organization_id,
        decision.actor_id,
        policy=retry_policy(settings),
    )
    return report.to_dict()


@router.post("/organizations/{organization_id}/restore", response_model=CascadeReportOut)
def restore_organization(
    organization_id: int,
    _platform: Actor = Depends(require_platform_user()),
    decision: AuthorizationDecision = Depends(authorize(Resource.ORGANIZATION, Operation.RESTORE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    fetch_authorized(db, Organization, organization_id, decision, include_deleted=True)
    report = restore_with_cascade(
        session_factory,
        EntityKind.ORGANIZATION,
        organization_id,
        decision.actor_id,
        policy=retry_policy(settings),
    )
    return report.to_dict()


@router.delete("/departments/{department_id}", response_model=CascadeReportOut)
def delete_department(
    department_id: int,
    _admin: Actor = Depends(require_role(Role.SUPER_ADMIN)),
    decision: AuthorizationDecision = Depends(authorize(Resource.DEPARTMENT, Operation.DELETE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    fetch_authorized(db, Department, department_id, decision)
    report = soft_delete_with_cascade(
        session_factory,
        EntityKind.DEPARTMENT,
        department_id,
        decision.actor_id,
        policy=retry_policy(settings),
    )
    return report.to_dict()


@router.post("/departments/{department_id}/restore", response_model=CascadeReportOut)
def restore_department(
    department_id: int,
    _admin: Actor = Depends(require_role(Role.SUPER_ADMIN)),
    decision: AuthorizationDecision = Depends(authorize(Resource.DEPARTMENT, Operation.RESTORE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    fetch_authorized(db, Department, department_id, decision, include_deleted=True)
    report = restore_with_cascade(
        session_factory,
        EntityKind.DEPARTMENT,
        department_id,
        decision.actor_id,
        policy=retry_policy(settings),
    )
    return report.to_dict()
