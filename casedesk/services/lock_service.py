"""Book-out (pessimistic single-holder lock) over cases.

Acquire and release are each a single conditional UPDATE so that two
writers racing on the same row cannot both win; the row count tells the
caller whether its condition still held when the statement ran.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import case as sql_case
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from casedesk.auth import AgentSession
from casedesk.errors import InvalidTransition, Unauthorized
from casedesk.models import (
    TERMINAL_CASE_STATUSES,
    Case,
    CasePriority,
    CaseStatus,
    SyncOperation,
    SyncTable,
    User,
)
from casedesk.services.audit_service import log_case_history
from casedesk.services.case_service import get_case
from casedesk.services.sync_store import enqueue_sync
from casedesk.services.time_utils import utcnow

PICK_ANOTHER_HINT = 'Please pick a different case.'


@dataclass
class BookOutResult:
    success: bool
    conflict: bool = False
    already_held: bool = False
    case: Case | None = None
    holder_id: int | None = None
    holder_name: str | None = None
    status: CaseStatus | None = None
    message: str = ''


@dataclass
class AllocatedCases:
    available: list[Case] = field(default_factory=list)
    booked_out: list[Case] = field(default_factory=list)


def _holder_name(db: Session, holder_id: int) -> str:
    username = db.execute(select(User.username).where(User.id == holder_id)).scalar_one_or_none()
    return username or f'user #{holder_id}'


def book_out_case(
    db: Session,
    case_id: int,
    *,
    session: AgentSession,
    now: datetime | None = None,
) -> BookOutResult:
    case = get_case(db, case_id)
    now = now or utcnow()

    result = db.execute(
        update(Case)
        .where(
            Case.id == case_id,
            Case.booked_out_by.is_(None),
            Case.status.not_in(TERMINAL_CASE_STATUSES),
        )
        .values(
            booked_out_by=session.user_id,
            booked_out_at=now,
            status=CaseStatus.IN_PROGRESS,
            updated_at=now,
            synced=False,
        )
        .execution_options(synchronize_session=False)
    )
    db.refresh(case)

    if result.rowcount == 1:
        enqueue_sync(db, SyncTable.CASES, case.id, SyncOperation.UPDATE)
        log_case_history(db, case_id=case.id, user_id=session.user_id, action='Case booked out')
        return BookOutResult(
            success=True,
            case=case,
            holder_id=session.user_id,
            holder_name=session.username,
            status=case.status,
            message=f'Case {case.case_number} booked out',
        )

    if case.booked_out_by == session.user_id:
        return BookOutResult(
            success=True,
            already_held=True,
            case=case,
            holder_id=session.user_id,
            holder_name=session.username,
            status=case.status,
            message=f'Case {case.case_number} is already booked out by you',
        )

    if case.status in TERMINAL_CASE_STATUSES:
        return BookOutResult(
            success=False,
            conflict=True,
            case=case,
            status=case.status,
            message=f'Case {case.case_number} is {case.status.value}. {PICK_ANOTHER_HINT}',
        )

    holder_name = _holder_name(db, case.booked_out_by)
    return BookOutResult(
        success=False,
        conflict=True,
        case=case,
        holder_id=case.booked_out_by,
        holder_name=holder_name,
        status=case.status,
        message=f'Case {case.case_number} is already booked out by {holder_name}. {PICK_ANOTHER_HINT}',
    )


def release_case(
    db: Session,
    case_id: int,
    *,
    session: AgentSession,
    now: datetime | None = None,
) -> Case:
    case = get_case(db, case_id)
    holder_id = case.booked_out_by
    if holder_id is None:
        raise InvalidTransition(f'Case {case.case_number} is not booked out')
    if holder_id != session.user_id and not session.is_privileged:
        raise Unauthorized('Only the agent holding this case or a manager can release it')

    now = now or utcnow()
    result = db.execute(
        update(Case)
        .where(Case.id == case_id, Case.booked_out_by == holder_id)
        .values(
            booked_out_by=None,
            booked_out_at=None,
            status=CaseStatus.OPEN,
            updated_at=now,
            synced=False,
        )
        .execution_options(synchronize_session=False)
    )
    db.refresh(case)
    if result.rowcount != 1:
        raise InvalidTransition(f'Case {case.case_number} changed hands while releasing')

    notes = None
    if holder_id != session.user_id:
        notes = f'Released on behalf of {_holder_name(db, holder_id)}'
    enqueue_sync(db, SyncTable.CASES, case.id, SyncOperation.UPDATE)
    log_case_history(db, case_id=case.id, user_id=session.user_id, action='Case released', notes=notes)
    return case


def get_allocated_cases(db: Session, *, user_id: int) -> AllocatedCases:
    # Oldest high-priority work first.
    priority_rank = sql_case(
        (Case.priority == CasePriority.HIGH, 0),
        (Case.priority == CasePriority.MEDIUM, 1),
        else_=2,
    )
    cases = db.execute(
        select(Case)
        .where(
            Case.assigned_to == user_id,
            Case.status.not_in(TERMINAL_CASE_STATUSES),
        )
        .order_by(priority_rank.asc(), Case.created_at.asc(), Case.id.asc())
    ).scalars().all()

    allocated = AllocatedCases()
    for case in cases:
        if case.booked_out_by is None:
            allocated.available.append(case)
        else:
            allocated.booked_out.append(case)
    return allocated
