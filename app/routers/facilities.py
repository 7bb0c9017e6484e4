from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.db import get_db
from app.schemas import DeleteResponse, FacilityCreate, FacilityRead, FacilityUpdate
from app.security import require_admin, resolve_actor
from app.services.facilities import create_facility, delete_facility, list_facilities, update_facility

router = APIRouter(prefix="/api/facilities", tags=["facilities"])


@router.get("", response_model=list[FacilityRead])
def get_facilities(
    include_inactive: bool = Query(default=True),
    _actor: str = Depends(resolve_actor),
    db: Session = Depends(get_db),
) -> list[FacilityRead]:
    return list_facilities(db, include_inactive=include_inactive)


@router.post("", response_model=FacilityRead, status_code=status.HTTP_201_CREATED)
def post_facility(
    payload: FacilityCreate,
    request: Request,
    _actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> FacilityRead:
    facility = create_facility(db, payload)
    audit_request(
        request,
        db,
        action="FACILITY_CREATED",
        entity_type="facility",
        entity_id=facility.id,
        details={"name": facility.name},
    )
    return facility


@router.put("/{facility_id}", response_model=FacilityRead)
def put_facility(
    facility_id: int,
    payload: FacilityUpdate,
    request: Request,
    _actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> FacilityRead:
    facility = update_facility(db, facility_id, payload)
    audit_request(
        request,
        db,
        action="FACILITY_UPDATED",
        entity_type="facility",
        entity_id=facility.id,
        details=payload.model_dump(exclude_unset=True),
    )
    return facility


@router.delete("/{facility_id}", response_model=DeleteResponse)
def remove_facility(
    facility_id: int,
    request: Request,
    _actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    orphaned_items = delete_facility(db, facility_id)
    audit_request(
        request,
        db,
        action="FACILITY_DELETED",
        entity_type="facility",
        entity_id=facility_id,
        details={"orphaned_control_items": orphaned_items},
    )
    return DeleteResponse(id=facility_id)
