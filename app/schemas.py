from datetime import date as date_type, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from app.models import ApprovalStatus, UserRole


def _coerce_facility_id(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("facility_id must be a string or integer")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class ControlItemCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    period: str = Field(min_length=1, max_length=50)
    date: date_type
    facility_id: str | None = Field(
        default=None,
        max_length=64,
        validation_alias=AliasChoices("facility_id", "facilityId"),
    )
    work_done: str = Field(default="", validation_alias=AliasChoices("work_done", "workDone"))
    user: str | None = Field(default=None, max_length=100)
    status: str | None = Field(default=None, max_length=50)

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("facility_id", mode="before")
    @classmethod
    def normalize_facility_id(cls, value: Any) -> Any:
        return _coerce_facility_id(value)


class ControlItemUpdate(BaseModel):
    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    period: str | None = Field(default=None, max_length=50)
    date: date_type | None = None
    facility_id: str | None = Field(
        default=None,
        max_length=64,
        validation_alias=AliasChoices("facility_id", "facilityId"),
    )
    work_done: str | None = Field(default=None, validation_alias=AliasChoices("work_done", "workDone"))
    user: str | None = Field(default=None, max_length=100)
    status: str | None = Field(default=None, max_length=50)

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("facility_id", mode="before")
    @classmethod
    def normalize_facility_id(cls, value: Any) -> Any:
        return _coerce_facility_id(value)


class ControlItemRead(BaseModel):
    id: int
    title: str
    description: str
    period: str
    date: date_type
    facility_id: str | None
    work_done: str
    user: str | None
    status: str
    approval_status: ApprovalStatus
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ControlItemRejectRequest(BaseModel):
    reason: str = Field(default="", max_length=2000)

    model_config = ConfigDict(extra="forbid")


class MovePeriodRequest(BaseModel):
    source_period: str | None = Field(
        default=None,
        validation_alias=AliasChoices("source_period", "sourcePeriod"),
    )
    target_period: str | None = Field(
        default=None,
        validation_alias=AliasChoices("target_period", "targetPeriod"),
    )
    start_date: date_type | None = Field(
        default=None,
        validation_alias=AliasChoices("start_date", "startDate"),
    )
    end_date: date_type | None = Field(
        default=None,
        validation_alias=AliasChoices("end_date", "endDate"),
    )

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class MoveFailureRead(BaseModel):
    item_id: int
    title: str
    stage: str
    error: str

    model_config = ConfigDict(from_attributes=True)


class MoveSummaryRead(BaseModel):
    source_period: str
    target_period: str
    eligible_count: int
    moved_count: int
    failed_count: int
    skipped_duplicates: int
    moved_item_ids: list[int]
    failures: list[MoveFailureRead]

    model_config = ConfigDict(from_attributes=True)


class FacilityCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    is_active: bool = True


class FacilityUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    is_active: bool | None = None


class FacilityRead(BaseModel):
    id: int
    name: str
    description: str | None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserCreateRequest(BaseModel):
    username: str = Field(min_length=2, max_length=100)
    email: str | None = Field(default=None, max_length=255)
    role: UserRole = UserRole.USER
    is_active: bool = True


class UserRoleUpdateRequest(BaseModel):
    role: UserRole


class UserRead(BaseModel):
    id: int
    username: str
    email: str | None
    role: UserRole
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeleteResponse(BaseModel):
    ok: bool = True
    id: int

