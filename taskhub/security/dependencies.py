from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from taskhub.db.session import get_db
from taskhub.errors import AuthenticationRequiredError
from taskhub.security.auth import decode_actor_id, extract_token, load_actor
from taskhub.security.context import Actor
from taskhub.security.matrix import PermissionMatrix
from taskhub.settings import Settings, get_settings


def get_permission_matrix(request: Request) -> PermissionMatrix:
    matrix = getattr(request.app.state, "permission_matrix", None)
    if matrix is None:
        raise RuntimeError("Permission matrix not loaded. Did app startup run?")
    return matrix


def get_optional_actor(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Actor | None:
    token = extract_token(request)
    if token is None:
        return None
    return load_actor(db, decode_actor_id(token, settings))


def get_current_actor(actor: Actor | None = Depends(get_optional_actor)) -> Actor:
    if actor is None:
        raise AuthenticationRequiredError()
    return actor
