from __future__ import annotations

import enum
from functools import lru_cache

from app.settings import get_control_periods, get_status_label_aliases


class CanonicalStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    NOT_DONE = "NOT_DONE"
    CANCELLED = "CANCELLED"


DEFAULT_PENDING_LABEL = "Beklemede"

_BUILTIN_STATUS_LABELS: dict[str, CanonicalStatus] = {
    "beklemede": CanonicalStatus.PENDING,
    "pending": CanonicalStatus.PENDING,
    "işlemde": CanonicalStatus.IN_PROGRESS,
    "islemde": CanonicalStatus.IN_PROGRESS,
    "devam ediyor": CanonicalStatus.IN_PROGRESS,
    "in progress": CanonicalStatus.IN_PROGRESS,
    "inprogress": CanonicalStatus.IN_PROGRESS,
    "tamamlandı": CanonicalStatus.COMPLETED,
    "tamamlandi": CanonicalStatus.COMPLETED,
    "completed": CanonicalStatus.COMPLETED,
    "yapılmadı": CanonicalStatus.NOT_DONE,
    "yapilmadi": CanonicalStatus.NOT_DONE,
    "not done": CanonicalStatus.NOT_DONE,
    "notdone": CanonicalStatus.NOT_DONE,
    "iptal": CanonicalStatus.CANCELLED,
    "cancelled": CanonicalStatus.CANCELLED,
    "canceled": CanonicalStatus.CANCELLED,
}

MIGRATABLE_STATUSES = frozenset({CanonicalStatus.COMPLETED, CanonicalStatus.NOT_DONE})


def _fold(label: str) -> str:
    # str.lower() turns "İ" into "i" + combining dot, so map it first.
    return label.strip().replace("İ", "i").lower()


@lru_cache
def _status_label_map() -> dict[str, CanonicalStatus]:
    mapping = dict(_BUILTIN_STATUS_LABELS)
    for label, canonical in get_status_label_aliases().items():
        try:
            mapping[_fold(label)] = CanonicalStatus(canonical.strip().upper())
        except ValueError as exc:
            raise RuntimeError(f"Unknown canonical status in STATUS_LABEL_ALIASES: {canonical}") from exc
    return mapping


def canonical_status(label: str | None) -> CanonicalStatus | None:
    """Map a stored status label to its canonical status, or None if unrecognised."""
    if label is None:
        return None
    return _status_label_map().get(_fold(label))


def is_migratable_status(label: str | None) -> bool:
    return canonical_status(label) in MIGRATABLE_STATUSES


def allowed_periods() -> tuple[str, ...]:
    return get_control_periods()


def is_known_period(label: str) -> bool:
    return label in get_control_periods()
