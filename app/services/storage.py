from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.models import ApprovalStatus, ControlItem, User, UserRole

_WRITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "work_done",
        "period",
        "date",
        "facility_id",
        "user",
        "status",
        "approval_status",
        "approved_by",
        "approved_at",
        "rejection_reason",
        "updated_at",
    }
)


def _check_fields(fields: Mapping[str, Any]) -> None:
    unknown = sorted(key for key in fields if key not in _WRITABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown control item fields: {', '.join(unknown)}")


class ControlItemStore:
    """Control item persistence over one SQLAlchemy session.

    Mutating calls flush but never commit; the caller decides the unit of work
    through ``commit``/``rollback`` or a ``savepoint`` block.
    """

    def __init__(self, db: Session):
        self.db = db

    def list_items(
        self,
        *,
        period: str | None = None,
        facility_id: str | None = None,
        user: str | None = None,
        approval_status: ApprovalStatus | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[ControlItem]:
        stmt = select(ControlItem)
        if period is not None:
            stmt = stmt.where(ControlItem.period == period)
        if facility_id is not None:
            stmt = stmt.where(ControlItem.facility_id == facility_id)
        if user is not None:
            stmt = stmt.where(ControlItem.user == user)
        if approval_status is not None:
            stmt = stmt.where(ControlItem.approval_status == approval_status)
        if date_from is not None:
            stmt = stmt.where(ControlItem.date >= date_from)
        if date_to is not None:
            stmt = stmt.where(ControlItem.date <= date_to)
        stmt = stmt.order_by(ControlItem.date.desc(), ControlItem.id.desc())
        return list(self.db.scalars(stmt).all())

    def get_item(self, item_id: int) -> ControlItem:
        item = self.db.get(ControlItem, item_id)
        if item is None:
            raise NotFoundError("Control item not found", code="CONTROL_ITEM_NOT_FOUND")
        return item

    def create_item(self, fields: Mapping[str, Any]) -> ControlItem:
        _check_fields(fields)
        item = ControlItem(**dict(fields))
        self.db.add(item)
        self.db.flush()
        return item

    def update_item(self, item_id: int, fields: Mapping[str, Any]) -> ControlItem:
        _check_fields(fields)
        item = self.get_item(item_id)
        for key, value in fields.items():
            setattr(item, key, value)
        self.db.flush()
        return item

    def delete_item(self, item_id: int) -> None:
        item = self.get_item(item_id)
        self.db.delete(item)
        self.db.flush()

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        with self.db.begin_nested():
            yield

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def refresh(self, item: ControlItem) -> None:
        self.db.refresh(item)


class UserDirectory:
    def __init__(self, db: Session):
        self.db = db

    def get_user(self, identity: str) -> User | None:
        username = (identity or "").strip()
        if not username:
            return None
        return self.db.scalar(select(User).where(User.username == username))

    def get_user_role(self, identity: str) -> UserRole | None:
        user = self.get_user(identity)
        if user is None or not user.is_active:
            return None
        return user.role

    def is_admin(self, identity: str) -> bool:
        return self.get_user_role(identity) == UserRole.ADMIN
