from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.errors import ConflictError, NotFoundError
from app.models import ControlItem, Facility
from app.schemas import FacilityCreate, FacilityUpdate


def _get_facility(db: Session, facility_id: int) -> Facility:
    facility = db.get(Facility, facility_id)
    if facility is None:
        raise NotFoundError("Facility not found", code="FACILITY_NOT_FOUND")
    return facility


def _ensure_unique_name(db: Session, name: str, *, exclude_id: int | None = None) -> None:
    stmt = select(Facility).where(Facility.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Facility.id != exclude_id)
    if db.scalar(stmt) is not None:
        raise ConflictError("Facility name already exists", code="FACILITY_NAME_TAKEN")


def list_facilities(db: Session, *, include_inactive: bool = True) -> list[Facility]:
    stmt = select(Facility).order_by(Facility.name.asc(), Facility.id.asc())
    if not include_inactive:
        stmt = stmt.where(Facility.is_active.is_(True))
    return list(db.scalars(stmt).all())


def create_facility(db: Session, payload: FacilityCreate) -> Facility:
    name = payload.name.strip()
    _ensure_unique_name(db, name)
    facility = Facility(name=name, description=payload.description, is_active=payload.is_active)
    db.add(facility)
    db.commit()
    db.refresh(facility)
    return facility


def update_facility(db: Session, facility_id: int, payload: FacilityUpdate) -> Facility:
    facility = _get_facility(db, facility_id)
    if payload.name is not None:
        name = payload.name.strip()
        _ensure_unique_name(db, name, exclude_id=facility.id)
        facility.name = name
    if "description" in payload.model_fields_set:
        facility.description = payload.description
    if payload.is_active is not None:
        facility.is_active = payload.is_active
    db.commit()
    db.refresh(facility)
    return facility


def delete_facility(db: Session, facility_id: int) -> int:
    """Delete a facility and return how many control items still point at it.

    Control items keep their facility_id; the reference is weak.
    """
    facility = _get_facility(db, facility_id)
    orphaned = db.scalar(
        select(func.count()).select_from(ControlItem).where(ControlItem.facility_id == str(facility.id))
    )
    db.delete(facility)
    db.commit()
    return int(orphaned or 0)
