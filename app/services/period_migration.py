from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from functools import lru_cache
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.errors import ConflictError, NotFoundError, PartialFailureError, ValidationError
from app.models import ControlItem
from app.services.approvals import approval_status_for
from app.services.storage import ControlItemStore
from app.services.vocabulary import is_known_period, is_migratable_status
from app.settings import get_settings

logger = logging.getLogger("app.period_migration")

_REGISTRY_LOCK = threading.Lock()
_PAIR_LOCKS: dict[tuple[str, str], threading.Lock] = {}


@dataclass(frozen=True, slots=True)
class MoveFailure:
    item_id: int
    title: str
    stage: str
    error: str


@dataclass(slots=True)
class MoveSummary:
    source_period: str
    target_period: str
    eligible_count: int = 0
    moved_count: int = 0
    failed_count: int = 0
    skipped_duplicates: int = 0
    moved_item_ids: list[int] = field(default_factory=list)
    failures: list[MoveFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@lru_cache
def _app_timezone() -> ZoneInfo:
    raw_name = (get_settings().app_timezone or "").strip() or "Europe/Istanbul"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("Europe/Istanbul")


def local_today() -> date:
    return datetime.now(_app_timezone()).date()


@contextmanager
def _period_pair_lock(source_period: str, target_period: str) -> Iterator[None]:
    # A->B and B->A touch the same two buckets, so they share one lock.
    key = tuple(sorted((source_period, target_period)))
    with _REGISTRY_LOCK:
        lock = _PAIR_LOCKS.setdefault(key, threading.Lock())  # type: ignore[arg-type]
    with lock:
        yield


def _validate_request(
    source_period: str | None,
    target_period: str | None,
    start_date: date | None,
    end_date: date | None,
) -> tuple[str, str]:
    source = (source_period or "").strip()
    target = (target_period or "").strip()
    if not source or not target:
        raise ValidationError(
            "Both source and target periods are required",
            code="PERIOD_REQUIRED",
        )
    if source == target:
        raise ValidationError(
            "Source and target periods must differ",
            code="PERIODS_IDENTICAL",
        )
    unknown = [label for label in (source, target) if not is_known_period(label)]
    if unknown:
        raise ValidationError(
            f"Unknown period: {', '.join(unknown)}",
            code="UNKNOWN_PERIOD",
        )
    if (start_date is None) != (end_date is None):
        raise ValidationError(
            "start_date and end_date must be provided together",
            code="INVALID_DATE_RANGE",
        )
    if start_date is not None and end_date is not None and start_date > end_date:
        raise ValidationError(
            "start_date must be less than or equal to end_date",
            code="INVALID_DATE_RANGE",
        )
    return source, target


def select_eligible_items(
    source_items: list[ControlItem],
    *,
    source_period: str,
    start_date: date | None,
    end_date: date | None,
) -> list[ControlItem]:
    """Apply the date range and status filters, raising the stage-specific NotFoundError."""
    if not source_items:
        raise NotFoundError(
            f"No control items to move in period {source_period}",
            code="SOURCE_PERIOD_EMPTY",
        )

    in_range = source_items
    if start_date is not None and end_date is not None:
        in_range = [item for item in source_items if start_date <= item.date <= end_date]
        if not in_range:
            raise NotFoundError(
                f"No control items in period {source_period} between {start_date} and {end_date}",
                code="NO_ITEMS_IN_DATE_RANGE",
            )

    eligible = [item for item in in_range if is_migratable_status(item.status)]
    if not eligible:
        raise NotFoundError(
            "No completed or not-done control items are eligible to move",
            code="NO_ELIGIBLE_ITEMS",
        )
    return eligible


def exclude_duplicates(
    eligible: list[ControlItem],
    target_items: list[ControlItem],
) -> tuple[list[ControlItem], int]:
    """Drop items whose (title, description, facility_id) already exists in the target.

    Exact string comparison. Within the batch the lowest id wins.
    """
    seen = {item.duplicate_key() for item in target_items}
    to_move: list[ControlItem] = []
    skipped = 0
    for item in sorted(eligible, key=lambda row: row.id):
        key = item.duplicate_key()
        if key in seen:
            skipped += 1
            continue
        seen.add(key)
        to_move.append(item)
    return to_move, skipped


def _moved_copy_fields(item: ControlItem, target_period: str, today: date) -> dict[str, Any]:
    return {
        "title": item.title,
        "description": item.description,
        "period": target_period,
        "date": today,
        "facility_id": item.facility_id,
        "work_done": item.work_done,
        "user": item.user,
        "status": item.status,
        "approval_status": approval_status_for(item.status, current=None),
    }


def _error_message(exc: Exception) -> str:
    return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__


def move_period(
    store: ControlItemStore,
    source_period: str | None,
    target_period: str | None,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    atomic: bool | None = None,
) -> MoveSummary:
    """Move completed/not-done items from one period bucket to another.

    Every moved item is recreated in the target period dated today and the
    original is deleted. Items already present in the target by
    (title, description, facility_id) are left in place.
    """
    source, target = _validate_request(source_period, target_period, start_date, end_date)
    if atomic is None:
        atomic = get_settings().move_period_atomic

    with _period_pair_lock(source, target):
        eligible = select_eligible_items(
            store.list_items(period=source),
            source_period=source,
            start_date=start_date,
            end_date=end_date,
        )
        to_move, skipped = exclude_duplicates(eligible, store.list_items(period=target))
        if not to_move:
            raise ConflictError(
                f"All eligible control items already exist in period {target}",
                code="ALL_ITEMS_ALREADY_IN_TARGET",
                details={"eligible_count": len(eligible)},
            )

        summary = MoveSummary(
            source_period=source,
            target_period=target,
            eligible_count=len(eligible),
            skipped_duplicates=skipped,
        )
        today = local_today()
        if atomic:
            _move_all_or_nothing(store, to_move, summary, today)
        else:
            _move_each(store, to_move, summary, today)

    log_extra = {
        "source_period": source,
        "target_period": target,
        "eligible_count": summary.eligible_count,
        "moved_count": summary.moved_count,
        "failed_count": summary.failed_count,
        "skipped_duplicates": summary.skipped_duplicates,
        "atomic": atomic,
    }
    if summary.failed_count:
        logger.warning("period_move_partial", extra=log_extra)
    else:
        logger.info("period_move_complete", extra=log_extra)
    return summary


def _move_each(store: ControlItemStore, to_move: list[ControlItem], summary: MoveSummary, today: date) -> None:
    for item in to_move:
        item_id, title = item.id, item.title
        stage = "create"
        try:
            with store.savepoint():
                moved = store.create_item(_moved_copy_fields(item, summary.target_period, today))
                stage = "delete"
                store.delete_item(item_id)
        except Exception as exc:
            failure = MoveFailure(item_id=item_id, title=title, stage=stage, error=_error_message(exc))
            summary.failures.append(failure)
            summary.failed_count += 1
            logger.warning(
                "period_move_item_failed",
                extra={"item_id": item_id, "stage": stage, "error": failure.error},
            )
            continue
        summary.moved_item_ids.append(moved.id)
        summary.moved_count += 1
    store.commit()


def _move_all_or_nothing(
    store: ControlItemStore,
    to_move: list[ControlItem],
    summary: MoveSummary,
    today: date,
) -> None:
    for item in to_move:
        item_id, title = item.id, item.title
        stage = "create"
        try:
            moved = store.create_item(_moved_copy_fields(item, summary.target_period, today))
            stage = "delete"
            store.delete_item(item_id)
        except Exception as exc:
            store.rollback()
            failure = MoveFailure(item_id=item_id, title=title, stage=stage, error=_error_message(exc))
            logger.warning(
                "period_move_batch_rolled_back",
                extra={"item_id": item_id, "stage": stage, "error": failure.error},
            )
            raise PartialFailureError(
                "Period move rolled back; no control items were moved",
                moved_count=0,
                failures=[asdict(failure)],
                code="MOVE_ROLLED_BACK",
                details={"eligible_count": summary.eligible_count},
            ) from exc
        summary.moved_item_ids.append(moved.id)
        summary.moved_count += 1
    store.commit()


def ensure_complete(summary: MoveSummary) -> MoveSummary:
    """Raise PartialFailureError when any item of the batch failed to move."""
    if not summary.failed_count:
        return summary
    raise PartialFailureError(
        f"{summary.moved_count} of {summary.eligible_count - summary.skipped_duplicates} control items moved",
        moved_count=summary.moved_count,
        failures=[asdict(item) for item in summary.failures],
        details={
            "eligible_count": summary.eligible_count,
            "skipped_duplicates": summary.skipped_duplicates,
            "moved_item_ids": list(summary.moved_item_ids),
        },
    )
