from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging

from fastapi import Request
import jwt
from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from taskhub.errors import AuthenticationRequiredError
from taskhub.models.org import User
from taskhub.security.context import Actor
from taskhub.settings import Settings

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "Authorization"
BEARER_PREFIX = "Bearer"


def extract_token(request: Request) -> str | None:
    """
    Read `Authorization: Bearer <jwt>`.

    - Missing header: returns None (the caller decides whether auth is required)
    - Malformed header or empty token: AuthenticationRequiredError
    """

    raw = request.headers.get(AUTHORIZATION_HEADER)
    if not raw:
        return None

    prefix = f"{BEARER_PREFIX} "
    if not raw.startswith(prefix):
        logger.warning("Invalid Authorization header format path=%s method=%s", request.url.path, request.method)
        raise AuthenticationRequiredError(f"Invalid {AUTHORIZATION_HEADER}. Expected '{BEARER_PREFIX} <token>'.")

    token = raw[len(prefix) :].strip()
    if not token:
        logger.warning("Empty bearer token path=%s method=%s", request.url.path, request.method)
        raise AuthenticationRequiredError(f"Invalid {AUTHORIZATION_HEADER}. Missing token after '{BEARER_PREFIX}'.")

    return token


def issue_token(user_id: int, settings: Settings, expires_in: timedelta | None = None) -> str:
    claims: dict[str, object] = {"sub": str(user_id), "iat": datetime.now(timezone.utc)}
    if expires_in is not None:
        claims["exp"] = datetime.now(timezone.utc) + expires_in
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_actor_id(token: str, settings: Settings) -> int:
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub"]},
        )
    except jwt.InvalidTokenError as exc:
        logger.info("Rejected bearer token error=%s", type(exc).__name__)
        raise AuthenticationRequiredError("Invalid or expired token") from exc

    try:
        return int(claims["sub"])
    except (TypeError, ValueError) as exc:
        raise AuthenticationRequiredError("Invalid token subject") from exc


def load_actor(db: Session, user_id: int) -> Actor:
    # Default read scoping hides deleted users and users of deleted organizations.
    user = db.execute(
        select(User).where(User.id == user_id).options(joinedload(User.organization))
    ).scalar_one_or_none()

    if user is None or user.organization is None:
        raise AuthenticationRequiredError("Invalid or deleted user")

    return Actor(
        id=user.id,
        role=user.role,
        organization_id=user.organization_id,
        department_id=user.department_id,
        is_platform_user=user.organization.is_platform,
    )
