from __future__ import annotations

from datetime import date as calendar_date, datetime
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from casedesk.models import AttendanceStatus, CasePriority, CaseStatus, UserRole
from casedesk.services.time_utils import as_utc

UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]

# Columns that only exist in the local store and never go over the wire.
LOCAL_ONLY_FIELDS = {'id', 'server_id', 'synced'}


class SyncOutcome(str, Enum):
    SUCCESS = 'success'
    FAILED = 'failed'
    IN_PROGRESS = 'in_progress'
    UNAUTHENTICATED = 'unauthenticated'


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class SessionOpen(BaseModel):
    username: str
    password: str
    token: str | None = None


class SessionRead(ORMModel):
    user_id: int
    username: str
    role: UserRole
    online: bool


class CaseCreate(BaseModel):
    case_number: str = Field(min_length=1)
    customer_name: str = Field(min_length=1)
    customer_email: str | None = None
    customer_phone: str | None = None
    case_type: str = Field(min_length=1)
    priority: CasePriority = CasePriority.MEDIUM
    description: str | None = None
    assigned_to: int | None = None


class CaseUpdate(BaseModel):
    model_config = ConfigDict(extra='forbid')

    customer_name: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None
    case_type: str | None = None
    priority: CasePriority | None = None
    status: CaseStatus | None = None
    description: str | None = None
    assigned_to: int | None = None
    resolution: str | None = None


class CaseRead(ORMModel):
    id: int
    case_number: str
    customer_name: str
    customer_email: str | None
    customer_phone: str | None
    case_type: str
    priority: CasePriority
    status: CaseStatus
    description: str | None
    assigned_to: int | None
    created_by: int | None
    booked_out_at: UtcDatetime | None
    booked_out_by: int | None
    resolution: str | None
    server_id: int | None
    synced: bool
    created_at: UtcDatetime
    updated_at: UtcDatetime
    resolved_at: UtcDatetime | None


class CaseHistoryRead(ORMModel):
    id: int
    case_id: int
    user_id: int | None
    action: str
    notes: str | None
    server_id: int | None
    synced: bool
    created_at: UtcDatetime


class AttendanceRead(ORMModel):
    id: int
    user_id: int
    check_in: UtcDatetime
    check_out: UtcDatetime | None
    break_start: UtcDatetime | None
    break_end: UtcDatetime | None
    total_break_minutes: int
    status: AttendanceStatus
    date: calendar_date
    server_id: int | None
    synced: bool
    created_at: UtcDatetime
    updated_at: UtcDatetime


class BookOutRead(ORMModel):
    success: bool
    conflict: bool
    already_held: bool
    case: CaseRead | None
    holder_id: int | None
    holder_name: str | None
    status: CaseStatus | None
    message: str


class AllocatedCasesRead(ORMModel):
    available: list[CaseRead]
    booked_out: list[CaseRead]


class SyncSummaryRead(ORMModel):
    status: SyncOutcome
    success: bool
    message: str
    synced: int
    failed: int
    deferred: int
    errors: list[str]
    started_at: UtcDatetime | None
    finished_at: UtcDatetime | None


class ImportErrorRead(ORMModel):
    case_number: str | None
    error: str


class ImportSummaryRead(ORMModel):
    status: SyncOutcome
    success: bool
    message: str
    imported: int
    updated: int
    skipped: int
    attendance_imported: int
    attendance_updated: int
    attendance_skipped: int
    errors: list[ImportErrorRead]


class SyncStatusRead(ORMModel):
    last_sync_time: UtcDatetime | None
    status: str
    is_syncing: bool
    pending_records: int
    dead_lettered: int


def case_payload(case) -> dict:
    return CaseRead.model_validate(case).model_dump(mode='json', exclude=LOCAL_ONLY_FIELDS)


def attendance_payload(record) -> dict:
    return AttendanceRead.model_validate(record).model_dump(mode='json', exclude=LOCAL_ONLY_FIELDS)


def case_history_payload(entry, *, case_server_id: int) -> dict:
    payload = CaseHistoryRead.model_validate(entry).model_dump(mode='json', exclude=LOCAL_ONLY_FIELDS)
    payload['case_id'] = case_server_id
    return payload
