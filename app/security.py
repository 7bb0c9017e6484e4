from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import ApiError, AuthorizationError
from app.services.storage import UserDirectory

ACTOR_HEADER = "X-Actor"


def resolve_actor(request: Request) -> str:
    # Credentials are verified upstream; the gateway forwards the username only.
    actor = (request.headers.get(ACTOR_HEADER) or "").strip()
    if not actor:
        raise ApiError(status_code=401, code="UNAUTHENTICATED", message=f"Missing {ACTOR_HEADER} header.")
    request.state.actor = "user"
    request.state.actor_id = actor
    return actor


def require_admin(
    request: Request,
    actor: str = Depends(resolve_actor),
    db: Session = Depends(get_db),
) -> str:
    if not UserDirectory(db).is_admin(actor):
        raise AuthorizationError()
    request.state.actor = "admin"
    return actor

