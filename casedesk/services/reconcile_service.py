"""Merging server rows into the local store (pull direction).

The server is authoritative on pull for rows with no pending local changes:
every field it sends is taken and the row is marked synced. A row that is
still dirty keeps its local fields and its queue entry so they are pushed on
the next cycle; for cases only the lock fields and status follow the server.
Identity is resolved by ``server_id`` first, then by the natural key
(``case_number`` for cases, ``(user_id, date)`` for attendance) against local
rows that were created offline and never pushed.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from casedesk.errors import ConstraintViolation
from casedesk.models import (
    TERMINAL_CASE_STATUSES,
    Attendance,
    AttendanceStatus,
    Case,
    CasePriority,
    CaseStatus,
    SyncTable,
)
from casedesk.services.sync_store import clear_queue_entry
from casedesk.services.time_utils import parse_remote_datetime, utcnow


class MergeOutcome(str, Enum):
    IMPORTED = 'imported'
    UPDATED = 'updated'


CASE_TEXT_FIELDS = ('customer_name', 'customer_email', 'customer_phone', 'case_type', 'description', 'resolution')
CASE_ID_FIELDS = ('assigned_to',)
CASE_DATETIME_FIELDS = ('resolved_at', 'updated_at')

ATTENDANCE_DATETIME_FIELDS = ('check_in', 'check_out', 'break_start', 'break_end', 'updated_at')


def _optional_int(value) -> int | None:
    if value is None or value == '':
        return None
    return int(value)


def _parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # The server serialises DATE columns as midnight timestamps.
    return date.fromisoformat(str(value).strip()[:10])


def _apply_remote_lock(case: Case, data: dict) -> None:
    if 'booked_out_by' in data:
        case.booked_out_by = _optional_int(data['booked_out_by'])
    if 'booked_out_at' in data:
        case.booked_out_at = parse_remote_datetime(data['booked_out_at'])
    if data.get('status'):
        case.status = CaseStatus(data['status'])

    if case.status in TERMINAL_CASE_STATUSES:
        case.booked_out_by = None
        case.booked_out_at = None
    elif case.booked_out_by is not None:
        case.status = CaseStatus.IN_PROGRESS


def _apply_remote_case(case: Case, data: dict) -> None:
    for key in CASE_TEXT_FIELDS:
        if key in data:
            setattr(case, key, data[key])
    for key in CASE_ID_FIELDS:
        if key in data:
            setattr(case, key, _optional_int(data[key]))
    for key in CASE_DATETIME_FIELDS:
        if key in data:
            setattr(case, key, parse_remote_datetime(data[key]))
    if data.get('priority'):
        case.priority = CasePriority(data['priority'])
    _apply_remote_lock(case, data)

    if case.updated_at is None:
        case.updated_at = utcnow()
    case.synced = True


def merge_remote_case(db: Session, data: dict) -> tuple[Case, MergeOutcome]:
    server_id = int(data['id'])
    case_number = str(data.get('case_number') or '').strip()
    if not case_number:
        raise ValueError('Remote case has no case_number')

    case = db.execute(select(Case).where(Case.server_id == server_id)).scalar_one_or_none()
    if case is None:
        case = db.execute(select(Case).where(Case.case_number == case_number)).scalar_one_or_none()
        if case is not None and case.server_id is not None:
            raise ConstraintViolation(
                f'Case number {case_number} is already linked to server case {case.server_id}'
            )
    elif case.case_number != case_number:
        clash = db.execute(select(Case.id).where(Case.case_number == case_number, Case.id != case.id)).first()
        if clash:
            raise ConstraintViolation(f'Case number {case_number} already exists locally')
        case.case_number = case_number

    if case is None:
        if not data.get('customer_name') or not data.get('case_type'):
            raise ValueError('Remote case is missing customer_name or case_type')
        case = Case(
            case_number=case_number,
            server_id=server_id,
            status=CaseStatus.OPEN,
            priority=CasePriority.MEDIUM,
            created_at=parse_remote_datetime(data.get('created_at')) or utcnow(),
        )
        _apply_remote_case(case, data)
        db.add(case)
        db.flush()
        return case, MergeOutcome.IMPORTED

    case.server_id = server_id
    if case.synced:
        _apply_remote_case(case, data)
        db.flush()
        clear_queue_entry(db, SyncTable.CASES, case.id)
    else:
        # Unpushed local edits stay dirty and queued; only the lock and status follow the server.
        _apply_remote_lock(case, data)
        db.flush()
    return case, MergeOutcome.UPDATED


def _raise_break_minutes(record: Attendance, data: dict) -> None:
    # Break time only ever accumulates.
    if data.get('total_break_minutes') is not None:
        record.total_break_minutes = max(record.total_break_minutes or 0, int(data['total_break_minutes']))


def _apply_remote_attendance(record: Attendance, data: dict) -> None:
    for key in ATTENDANCE_DATETIME_FIELDS:
        if key in data:
            setattr(record, key, parse_remote_datetime(data[key]))
    if data.get('date'):
        record.date = _parse_date(data['date'])
    if data.get('status'):
        record.status = AttendanceStatus(data['status'])
    _raise_break_minutes(record, data)
    if record.updated_at is None:
        record.updated_at = utcnow()
    record.synced = True


def merge_remote_attendance(db: Session, data: dict) -> tuple[Attendance, MergeOutcome]:
    server_id = int(data['id'])
    record = db.execute(select(Attendance).where(Attendance.server_id == server_id)).scalar_one_or_none()

    if record is None:
        user_id = int(data['user_id'])
        day = _parse_date(data['date'])
        record = db.execute(
            select(Attendance)
            .where(
                Attendance.user_id == user_id,
                Attendance.date == day,
                Attendance.server_id.is_(None),
            )
            .order_by(Attendance.id.asc())
        ).scalars().first()

    if record is None:
        if not data.get('check_in'):
            raise ValueError('Remote attendance is missing check_in')
        record = Attendance(
            user_id=int(data['user_id']),
            server_id=server_id,
            total_break_minutes=0,
            status=AttendanceStatus.ACTIVE,
            created_at=parse_remote_datetime(data.get('created_at')) or utcnow(),
        )
        _apply_remote_attendance(record, data)
        db.add(record)
        db.flush()
        return record, MergeOutcome.IMPORTED

    record.server_id = server_id
    if record.synced:
        _apply_remote_attendance(record, data)
        db.flush()
        clear_queue_entry(db, SyncTable.ATTENDANCE, record.id)
    else:
        # Unpushed local changes win; the row stays dirty and goes out next push.
        _raise_break_minutes(record, data)
        db.flush()
    return record, MergeOutcome.UPDATED
