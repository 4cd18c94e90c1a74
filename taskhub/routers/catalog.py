from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, sessionmaker

from taskhub.constants import Operation, Resource
from taskhub.db.session import get_db, get_session_factory
from taskhub.lifecycle.cascade import EntityKind, restore_with_cascade, soft_delete_with_cascade
from taskhub.models.work import Material, Vendor
from taskhub.routers._shared import fetch_authorized, retry_policy
from taskhub.schemas.lifecycle import CascadeReportOut
from taskhub.security.context import AuthorizationDecision
from taskhub.security.gate import authorize
from taskhub.settings import Settings, get_settings

router = APIRouter(tags=["catalog"])


@router.delete("/vendors/{vendor_id}", response_model=CascadeReportOut)
def delete_vendor(
    vendor_id: int,
    reassign_to: int | None = None,
    decision: AuthorizationDecision = Depends(authorize(Resource.VENDOR, Operation.DELETE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    # Open tasks served by this vendor must move to `reassign_to`.
    fetch_authorized(db, Vendor, vendor_id, decision)
    report = soft_delete_with_cascade(
        session_factory,
        EntityKind.VENDOR,
        vendor_id,
        decision.actor_id,
        replacement_id=reassign_to,
        policy=retry_policy(settings),
    )
    return report.to_dict()


@router.post("/vendors/{vendor_id}/restore", response_model=CascadeReportOut)
def restore_vendor(
    vendor_id: int,
    decision: AuthorizationDecision = Depends(authorize(Resource.VENDOR, Operation.RESTORE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    fetch_authorized(db, Vendor, vendor_id, decision, include_deleted=True)
    report = restore_with_cascade(
        session_factory, EntityKind.VENDOR, vendor_id, decision.actor_id, policy=retry_policy(settings)
    )
    return report.to_dict()


@router.delete("/materials/{material_id}", response_model=CascadeReportOut)
def delete_material(
    material_id: int,
    replace_with: int | None = None,
    decision: AuthorizationDecision = Depends(authorize(Resource.MATERIAL, Operation.DELETE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    fetch_authorized(db, Material, material_id, decision)
    report = soft_delete_with_cascade(
        session_factory,
        EntityKind.MATERIAL,
        material_id,
        decision.actor_id,
        replacement_id=replace_with,
        policy=retry_policy(settings),
    )
    return report.to_dict()


@router.post("/materials/{material_id}/restore", response_model=CascadeReportOut)
def restore_material(
    material_id: int,
    decision: AuthorizationDecision = Depends(authorize(Resource.MATERIAL, Operation.RESTORE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    # Re-links the material to tasks it was removed from, where those tasks are still active.
    fetch_authorized(db, Material, material_id, decision, include_deleted=True)
    report = restore_with_cascade(
        session_factory, EntityKind.MATERIAL, material_id, decision.actor_id, policy=retry_policy(settings)
    )
    return report.to_dict()
