from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.errors import ConflictError, NotFoundError
from app.models import User, UserRole
from app.schemas import UserCreateRequest


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


def _active_admin_count(db: Session) -> int:
    return int(
        db.scalar(
            select(func.count())
            .select_from(User)
            .where(User.role == UserRole.ADMIN, User.is_active.is_(True))
        )
        or 0
    )


def list_users(db: Session) -> list[User]:
    return list(db.scalars(select(User).order_by(User.id)).all())


def create_user(db: Session, payload: UserCreateRequest) -> User:
    username = payload.username.strip()
    if db.scalar(select(User).where(User.username == username)) is not None:
        raise ConflictError("Username already exists", code="USERNAME_TAKEN")
    user = User(
        username=username,
        email=(payload.email or "").strip() or None,
        role=payload.role,
        is_active=payload.is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def update_user_role(db: Session, user_id: int, role: UserRole) -> User:
    user = _get_user(db, user_id)
    if user.role == UserRole.ADMIN and role != UserRole.ADMIN and user.is_active and _active_admin_count(db) <= 1:
        raise ConflictError("The last admin cannot be demoted", code="LAST_ADMIN")
    user.role = role
    db.commit()
    db.refresh(user)
    return user


def delete_user(db: Session, user_id: int, *, actor: str) -> str:
    user = _get_user(db, user_id)
    if user.username == actor:
        raise ConflictError("You cannot delete your own account", code="SELF_DELETE")
    if user.role == UserRole.ADMIN and user.is_active and _active_admin_count(db) <= 1:
        raise ConflictError("The last admin cannot be deleted", code="LAST_ADMIN")
    username = user.username
    db.delete(user)
    db.commit()
    return username
