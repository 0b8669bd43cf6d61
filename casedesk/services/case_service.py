from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from casedesk.auth import AgentSession
from casedesk.errors import ConstraintViolation, InvalidTransition, NotFound
from casedesk.models import (
    TERMINAL_CASE_STATUSES,
    Case,
    CaseHistory,
    CasePriority,
    CaseStatus,
    SyncOperation,
    SyncTable,
)
from casedesk.services.audit_service import list_case_history as _list_case_history
from casedesk.services.audit_service import log_case_history
from casedesk.services.sync_store import enqueue_sync
from casedesk.services.time_utils import utcnow

CREATE_FIELDS = {
    'case_number',
    'customer_name',
    'customer_email',
    'customer_phone',
    'case_type',
    'priority',
    'description',
    'assigned_to',
}
UPDATE_FIELDS = {
    'customer_name',
    'customer_email',
    'customer_phone',
    'case_type',
    'priority',
    'status',
    'description',
    'assigned_to',
    'resolution',
}


def _clean_text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _clear_lock(case: Case) -> None:
    case.booked_out_by = None
    case.booked_out_at = None


def _mark_dirty(db: Session, case: Case, now: datetime, operation: SyncOperation = SyncOperation.UPDATE) -> None:
    case.updated_at = now
    case.synced = False
    enqueue_sync(db, SyncTable.CASES, case.id, operation)


def get_case(db: Session, case_id: int) -> Case:
    case = db.get(Case, case_id)
    if not case:
        raise NotFound(f'Case {case_id} not found')
    return case


def get_case_by_number(db: Session, case_number: str) -> Case | None:
    return db.execute(select(Case).where(Case.case_number == case_number.strip())).scalar_one_or_none()


def create_case(db: Session, data: dict, *, session: AgentSession, now: datetime | None = None) -> Case:
    unknown = set(data) - CREATE_FIELDS
    if unknown:
        raise ValueError(f'Unknown case fields: {", ".join(sorted(unknown))}')

    case_number = _clean_text(data.get('case_number'))
    customer_name = _clean_text(data.get('customer_name'))
    case_type = _clean_text(data.get('case_type'))
    if not case_number or not customer_name or not case_type:
        raise ValueError('case_number, customer_name and case_type are required')

    if get_case_by_number(db, case_number):
        raise ConstraintViolation(f'Case number {case_number} already exists')

    now = now or utcnow()
    case = Case(
        case_number=case_number,
        customer_name=customer_name,
        customer_email=_clean_text(data.get('customer_email')),
        customer_phone=_clean_text(data.get('customer_phone')),
        case_type=case_type,
        priority=CasePriority(data.get('priority') or CasePriority.MEDIUM),
        status=CaseStatus.OPEN,
        description=data.get('description'),
        assigned_to=data.get('assigned_to'),
        created_by=session.user_id,
        booked_out_by=None,
        booked_out_at=None,
        synced=False,
        created_at=now,
        updated_at=now,
    )
    db.add(case)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConstraintViolation(f'Case number {case_number} already exists') from exc

    enqueue_sync(db, SyncTable.CASES, case.id, SyncOperation.CREATE)
    log_case_history(db, case_id=case.id, user_id=session.user_id, action='Case created', notes=case.description)
    return case


def update_case(
    db: Session,
    case_id: int,
    fields: dict,
    *,
    session: AgentSession,
    now: datetime | None = None,
) -> Case:
    """Apply a partial update; keys absent from ``fields`` are left untouched.

    Moving a case to a terminal status stamps ``resolved_at`` and drops any
    book-out. ``in_progress`` is only reachable through a book-out, and a
    booked-out case only goes back to ``open`` through ``release_case``.
    Nothing is changed unless the whole update is valid.
    """
    unknown = set(fields) - UPDATE_FIELDS
    if unknown:
        raise ValueError(f'Unknown or read-only case fields: {", ".join(sorted(unknown))}')

    case = get_case(db, case_id)
    now = now or utcnow()

    new_status = CaseStatus(fields['status']) if 'status' in fields else None
    if new_status == CaseStatus.IN_PROGRESS and case.booked_out_by is None:
        raise InvalidTransition('Book the case out to move it into progress')
    if new_status == CaseStatus.OPEN and case.booked_out_by is not None:
        raise InvalidTransition(f'Case {case.case_number} is booked out; release it instead')
    if 'priority' in fields:
        CasePriority(fields['priority'])
    for key in ('customer_name', 'case_type'):
        if key in fields and not _clean_text(fields[key]):
            raise ValueError(f'{key} cannot be empty')

    for key, value in fields.items():
        if key == 'status':
            if new_status in TERMINAL_CASE_STATUSES:
                case.resolved_at = now
                _clear_lock(case)
            case.status = new_status
        elif key == 'priority':
            case.priority = CasePriority(value)
        elif key in {'customer_name', 'case_type'}:
            setattr(case, key, _clean_text(value))
        else:
            setattr(case, key, value)

    _mark_dirty(db, case, now)
    log_case_history(
        db,
        case_id=case.id,
        user_id=session.user_id,
        action='Case updated',
        notes=json.dumps(fields, default=str),
    )
    return case


def close_case(
    db: Session,
    case_id: int,
    *,
    session: AgentSession | None = None,
    now: datetime | None = None,
) -> Case:
    # Closing an already-closed case re-stamps resolved_at and logs again.
    case = get_case(db, case_id)
    now = now or utcnow()

    case.status = CaseStatus.CLOSED
    case.resolved_at = now
    _clear_lock(case)
    _mark_dirty(db, case, now)
    log_case_history(db, case_id=case.id, user_id=session.user_id if session else None, action='Case closed')
    return case


def get_current_case(db: Session, *, user_id: int) -> Case | None:
    return db.execute(
        select(Case)
        .where(
            Case.assigned_to == user_id,
            Case.status.in_([CaseStatus.OPEN, CaseStatus.IN_PROGRESS]),
        )
        .order_by(Case.created_at.desc(), Case.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def list_case_history(db: Session, case_id: int) -> list[CaseHistory]:
    get_case(db, case_id)
    return _list_case_history(db, case_id=case_id)
