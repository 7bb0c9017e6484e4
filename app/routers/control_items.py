from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.db import get_db
from app.errors import ApiError
from app.models import ApprovalStatus
from app.schemas import (
    ControlItemCreate,
    ControlItemRead,
    ControlItemRejectRequest,
    ControlItemUpdate,
    DeleteResponse,
    MovePeriodRequest,
    MoveSummaryRead,
)
from app.security import require_admin, resolve_actor
from app.services.approvals import approve, delete, list_pending_approvals, reject, submit_or_update
from app.services.period_migration import ensure_complete, move_period
from app.services.storage import ControlItemStore, UserDirectory

router = APIRouter(prefix="/api/control-items", tags=["control-items"])


@router.get("", response_model=list[ControlItemRead])
def list_control_items(
    period: str | None = Query(default=None),
    facility_id: str | None = Query(default=None),
    user: str | None = Query(default=None),
    approval_status: ApprovalStatus | None = Query(default=None),
    _actor: str = Depends(resolve_actor),
    db: Session = Depends(get_db),
) -> list[ControlItemRead]:
    return ControlItemStore(db).list_items(
        period=period,
        facility_id=facility_id,
        user=user,
        approval_status=approval_status,
    )


@router.post("", response_model=ControlItemRead, status_code=201)
def create_control_item(
    payload: ControlItemCreate,
    request: Request,
    _actor: str = Depends(resolve_actor),
    db: Session = Depends(get_db),
) -> ControlItemRead:
    item = submit_or_update(ControlItemStore(db), None, payload)
    audit_request(
        request,
        db,
        action="CONTROL_ITEM_CREATED",
        entity_type="control_item",
        entity_id=item.id,
        details={
            "title": item.title,
            "period": item.period,
            "status": item.status,
            "approval_status": item.approval_status.value,
        },
    )
    return item


@router.get("/pending-approvals", response_model=list[ControlItemRead])
def pending_approvals(
    actor: str = Depends(resolve_actor),
    db: Session = Depends(get_db),
) -> list[ControlItemRead]:
    return list_pending_approvals(ControlItemStore(db), UserDirectory(db), actor)


@router.post("/move", response_model=MoveSummaryRead)
def move_control_items(
    payload: MovePeriodRequest,
    request: Request,
    _actor: str = Depends(resolve_actor),
    db: Session = Depends(get_db),
) -> MoveSummaryRead:
    request_details = payload.model_dump(mode="json")
    try:
        summary = move_period(
            ControlItemStore(db),
            payload.source_period,
            payload.target_period,
            start_date=payload.start_date,
            end_date=payload.end_date,
        )
        ensure_complete(summary)
    except ApiError as exc:
        audit_request(
            request,
            db,
            action="CONTROL_ITEMS_MOVED",
            entity_type="control_item",
            success=False,
            details={**request_details, "code": exc.code, **(exc.details or {})},
        )
        raise

    audit_request(
        request,
        db,
        action="CONTROL_ITEMS_MOVED",
        entity_type="control_item",
        details={**request_details, **summary.to_dict()},
    )
    return summary


@router.get("/{item_id}", response_model=ControlItemRead)
def get_control_item(
    item_id: int,
    _actor: str = Depends(resolve_actor),
    db: Session = Depends(get_db),
) -> ControlItemRead:
    return ControlItemStore(db).get_item(item_id)


@router.put("/{item_id}", response_model=ControlItemRead)
def update_control_item(
    item_id: int,
    payload: ControlItemUpdate,
    request: Request,
    _actor: str = Depends(resolve_actor),
    db: Session = Depends(get_db),
) -> ControlItemRead:
    store = ControlItemStore(db)
    item = store.get_item(item_id)
    previous_approval = item.approval_status
    updated = submit_or_update(store, item, payload)
    audit_request(
        request,
        db,
        action="CONTROL_ITEM_UPDATED",
        entity_type="control_item",
        entity_id=item_id,
        details={
            "fields": sorted(payload.model_fields_set),
            "status": updated.status,
            "previous_approval_status": previous_approval.value,
            "approval_status": updated.approval_status.value,
        },
    )
    return updated


@router.delete("/{item_id}", response_model=DeleteResponse)
def delete_control_item(
    item_id: int,
    request: Request,
    actor: str = Depends(resolve_actor),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    item = delete(ControlItemStore(db), UserDirectory(db), item_id, actor)
    details = {"title": item.title, "period": item.period, "facility_id": item.facility_id}
    audit_request(
        request,
        db,
        action="CONTROL_ITEM_DELETED",
        entity_type="control_item",
        entity_id=item_id,
        details=details,
    )
    return DeleteResponse(id=item_id)


@router.post("/{item_id}/approve", response_model=ControlItemRead)
def approve_control_item(
    item_id: int,
    request: Request,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ControlItemRead:
    item = approve(ControlItemStore(db), UserDirectory(db), item_id, actor)
    audit_request(
        request,
        db,
        action="CONTROL_ITEM_APPROVED",
        entity_type="control_item",
        entity_id=item_id,
    )
    return item


@router.post("/{item_id}/reject", response_model=ControlItemRead)
def reject_control_item(
    item_id: int,
    request: Request,
    payload: ControlItemRejectRequest | None = None,
    actor: str = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ControlItemRead:
    reason = payload.reason if payload is not None else ""
    item = reject(ControlItemStore(db), UserDirectory(db), item_id, actor, reason)
    audit_request(
        request,
        db,
        action="CONTROL_ITEM_REJECTED",
        entity_type="control_item",
        entity_id=item_id,
        details={"reason": item.rejection_reason},
    )
    return item
