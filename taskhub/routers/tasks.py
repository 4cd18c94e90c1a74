from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from taskhub.constants import Operation, Resource
from taskhub.db.filters import read_options
from taskhub.db.session import get_db, get_session_factory
from taskhub.lifecycle.cascade import EntityKind, restore_with_cascade, soft_delete_with_cascade
from taskhub.models.work import Task
from taskhub.routers._shared import fetch_authorized, retry_policy
from taskhub.schemas.lifecycle import CascadeReportOut
from taskhub.schemas.tasks import TaskOut
from taskhub.security.context import AuthorizationDecision
from taskhub.security.gate import authorize, build_auth_filter
from taskhub.settings import Settings, get_settings

router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=list[TaskOut])
def list_tasks(
    include_deleted: bool = False,
    only_deleted: bool = False,
    decision: AuthorizationDecision = Depends(authorize(Resource.TASK, Operation.READ)),
    db: Session = Depends(get_db),
) -> list[Task]:
    stmt = build_auth_filter(decision).apply(select(Task), Task).order_by(Task.id)
    stmt = stmt.execution_options(**read_options(include_deleted=include_deleted, only_deleted=only_deleted))
    return list(db.scalars(stmt).all())


@router.get("/{task_id}", response_model=TaskOut)
def get_task(
    task_id: int,
    decision: AuthorizationDecision = Depends(authorize(Resource.TASK, Operation.READ)),
    db: Session = Depends(get_db),
) -> Task:
    return fetch_authorized(db, Task, task_id, decision)


@router.delete("/{task_id}", response_model=CascadeReportOut)
def delete_task(
    task_id: int,
    decision: AuthorizationDecision = Depends(authorize(Resource.TASK, Operation.DELETE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    fetch_authorized(db, Task, task_id, decision)
    report = soft_delete_with_cascade(
        session_factory, EntityKind.TASK, task_id, decision.actor_id, policy=retry_policy(settings)
    )
    return report.to_dict()


@router.post("/{task_id}/restore", response_model=CascadeReportOut)
def restore_task(
    task_id: int,
    decision: AuthorizationDecision = Depends(authorize(Resource.TASK, Operation.RESTORE)),
    db: Session = Depends(get_db),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> dict:
    fetch_authorized(db, Task, task_id, decision, include_deleted=True)
    report = restore_with_cascade(
        session_factory, EntityKind.TASK, task_id, decision.actor_id, policy=retry_policy(settings)
    )
    return report.to_dict()
