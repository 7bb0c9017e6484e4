from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.errors import AuthorizationError, ValidationError
from app.models import ApprovalStatus, ControlItem
from app.schemas import ControlItemCreate, ControlItemUpdate
from app.services.storage import ControlItemStore, UserDirectory
from app.services.vocabulary import DEFAULT_PENDING_LABEL, CanonicalStatus, canonical_status, is_known_period
from app.settings import get_settings

logger = logging.getLogger("app.approvals")

REQUIRED_FIELDS = ("title", "period", "date")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate_payload(
    model: type[ControlItemCreate] | type[ControlItemUpdate],
    fields: Mapping[str, Any] | BaseModel,
) -> ControlItemCreate | ControlItemUpdate:
    if isinstance(fields, model):
        return fields
    raw = fields.model_dump(exclude_unset=True) if isinstance(fields, BaseModel) else dict(fields)
    try:
        return model.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Control item payload is invalid",
            details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
        ) from exc


def approval_status_for(
    status_label: str | None,
    *,
    current: ApprovalStatus | None,
) -> ApprovalStatus:
    """Approval status a control item takes after its status is set to ``status_label``.

    ``current`` is the approval status before the change, or None on creation.
    """
    canonical = canonical_status(status_label)
    if canonical == CanonicalStatus.COMPLETED:
        if get_settings().auto_approve_completed:
            return ApprovalStatus.APPROVED
        return ApprovalStatus.PENDING
    if canonical == CanonicalStatus.PENDING:
        return ApprovalStatus.PENDING
    if canonical == CanonicalStatus.CANCELLED:
        return ApprovalStatus.REJECTED
    return current if current is not None else ApprovalStatus.PENDING


def _approval_fields(approval_status: ApprovalStatus, *, previous: ApprovalStatus | None) -> dict[str, Any]:
    # Reviewer stamps belong to the review they came from; drop them once it no longer holds.
    fields: dict[str, Any] = {"approval_status": approval_status}
    if previous is not None and approval_status != previous:
        fields["approved_by"] = None
        fields["approved_at"] = None
        fields["rejection_reason"] = None
    return fields


def _ensure_period(period: str) -> None:
    if not is_known_period(period):
        raise ValidationError(f"Unknown period: {period}", code="UNKNOWN_PERIOD")


def new_item_fields(payload: ControlItemCreate) -> dict[str, Any]:
    status_label = payload.status or DEFAULT_PENDING_LABEL
    return {
        "title": payload.title,
        "description": payload.description,
        "period": payload.period,
        "date": payload.date,
        "facility_id": payload.facility_id,
        "work_done": payload.work_done,
        "user": payload.user,
        "status": status_label,
        "approval_status": approval_status_for(status_label, current=None),
    }


def submit_or_update(
    store: ControlItemStore,
    item: ControlItem | None,
    fields: Mapping[str, Any] | BaseModel,
) -> ControlItem:
    """Create a control item, or merge ``fields`` into ``item``.

    ``approval_status`` is recomputed whenever ``status`` is among the supplied
    fields. Nothing is persisted when validation fails.
    """
    if item is None:
        payload = _validate_payload(ControlItemCreate, fields)
        _ensure_period(payload.period)
        created = store.create_item(new_item_fields(payload))
        store.commit()
        store.refresh(created)
        logger.info(
            "control_item_created",
            extra={
                "item_id": created.id,
                "period": created.period,
                "status": created.status,
                "approval_status": created.approval_status.value,
            },
        )
        return created

    update = _validate_payload(ControlItemUpdate, fields)
    changes = update.model_dump(include=update.model_fields_set)

    cleared = [name for name in REQUIRED_FIELDS if name in changes and changes[name] in (None, "")]
    if cleared:
        raise ValidationError(
            f"Required fields cannot be cleared: {', '.join(cleared)}",
            details={"fields": cleared},
        )
    if "period" in changes:
        _ensure_period(changes["period"])
    if "status" in changes:
        if not changes["status"]:
            raise ValidationError("Status cannot be empty", details={"fields": ["status"]})
        previous = item.approval_status
        next_status = approval_status_for(changes["status"], current=previous)
        changes.update(_approval_fields(next_status, previous=previous))
    for key in ("description", "work_done"):
        if key in changes and changes[key] is None:
            changes[key] = ""

    changes["updated_at"] = _utcnow()
    updated = store.update_item(item.id, changes)
    store.commit()
    store.refresh(updated)
    logger.info(
        "control_item_updated",
        extra={
            "item_id": updated.id,
            "fields": sorted(key for key in changes if key != "updated_at"),
            "status": updated.status,
            "approval_status": updated.approval_status.value,
        },
    )
    return updated


def _ensure_admin(users: UserDirectory, approver: str, *, action: str) -> None:
    if users.is_admin(approver):
        return
    logger.warning(
        "control_item_review_forbidden",
        extra={"approver": approver, "review_action": action},
    )
    raise AuthorizationError(f"Only admin users can {action} control items")


def approve(
    store: ControlItemStore,
    users: UserDirectory,
    item_id: int,
    approver: str,
) -> ControlItem:
    _ensure_admin(users, approver, action="approve")
    updated = store.update_item(
        item_id,
        {
            "approval_status": ApprovalStatus.APPROVED,
            "approved_by": approver,
            "approved_at": _utcnow(),
            "rejection_reason": None,
        },
    )
    store.commit()
    store.refresh(updated)
    logger.info("control_item_approved", extra={"item_id": item_id, "approver": approver})
    return updated


def reject(
    store: ControlItemStore,
    users: UserDirectory,
    item_id: int,
    approver: str,
    reason: str | None,
) -> ControlItem:
    _ensure_admin(users, approver, action="reject")
    normalized_reason = (reason or "").strip()
    if not normalized_reason and get_settings().rejection_reason_required:
        raise ValidationError("Rejection reason is required", code="REJECTION_REASON_REQUIRED")
    updated = store.update_item(
        item_id,
        {
            "approval_status": ApprovalStatus.REJECTED,
            "approved_by": approver,
            "approved_at": _utcnow(),
            "rejection_reason": normalized_reason,
        },
    )
    store.commit()
    store.refresh(updated)
    logger.info(
        "control_item_rejected",
        extra={"item_id": item_id, "approver": approver, "has_reason": bool(normalized_reason)},
    )
    return updated


def delete(
    store: ControlItemStore,
    users: UserDirectory,
    item_id: int,
    actor: str,
) -> ControlItem:
    """Delete a control item; admins may delete any item, others only their own."""
    item = store.get_item(item_id)
    if item.user != actor and not users.is_admin(actor):
        logger.warning(
            "control_item_delete_forbidden",
            extra={"item_id": item_id, "actor": actor, "owner": item.user},
        )
        raise AuthorizationError("Only admins or the item's owner can delete control items")
    store.delete_item(item_id)
    store.commit()
    logger.info("control_item_deleted", extra={"item_id": item_id, "actor": actor})
    return item


def list_pending_approvals(
    store: ControlItemStore,
    users: UserDirectory,
    actor: str,
) -> list[ControlItem]:
    if users.is_admin(actor):
        return store.list_items(approval_status=ApprovalStatus.PENDING)
    return store.list_items(approval_status=ApprovalStatus.PENDING, user=actor)
