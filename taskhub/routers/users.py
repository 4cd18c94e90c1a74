from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, sessionmaker

from taskhub.constants import Operation, Resource
from taskhub.db.session import get_db, get_session_factory
from taskhub.lifecycle.cascade import EntityKind, restore_with_cascade, soft_delete_with_cascade
from taskhub.models.org import User
from taskhub.routers._shared import fetch_authorized, retry_policy
from taskhub.schemas.lifecycle import CascadeReportOut
from taskhub.schemas.users import UserOut
from taskhub.security.context import AuthorizationDecision
from taskhub.security.gate import authorize
from taskhub.settings import Settings, get_settings

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: int,
    decision: AuthorizationDecision = Depends(authorize(Resource.USER, Operation.READ)),
    db: Session = Depends(get_db),
) -> User:
    return fetch_authorized(db, User, user_id, decision)


@router.delete("/{user_id}", response_model=CascadeReportOut)
def delete_user(
    user_id: int,
    decision: AuthorizationDecision = Depends(authorize(Resource.USER, Operation.DELETE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    # Removes the user's tasks, attachments, materials and notifications as well.
    fetch_authorized(db, User, user_id, decision)
    report = soft_delete_with_cascade(
        session_factory, EntityKind.USER, user_id, decision.actor_id, policy=retry_policy(settings)
    )
    return report.to_dict()


@router.post("/{user_id}/restore", response_model=CascadeReportOut)
def restore_user(
    user_id: int,
    decision: AuthorizationDecision = Depends(authorize(Resource.USER, Operation.RESTORE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    fetch_authorized(db, User, user_id, decision, include_deleted=True)
    report = restore_with_cascade(
        session_factory, EntityKind.USER, user_id, decision.actor_id, policy=retry_policy(settings)
    )
    return report.to_dict()
