from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from casedesk.auth import AgentSession, get_current_session
from casedesk.db import get_db
from casedesk.dependencies import service_errors
from casedesk.schemas import (
    AllocatedCasesRead,
    BookOutRead,
    CaseCreate,
    CaseHistoryRead,
    CaseRead,
    CaseUpdate,
)
from casedesk.services.case_service import (
    close_case,
    create_case,
    get_case,
    get_current_case,
    list_case_history,
    update_case,
)
from casedesk.services.lock_service import book_out_case, get_allocated_cases, release_case

router = APIRouter(prefix='/cases', tags=['cases'])


@router.post('', response_model=CaseRead, status_code=status.HTTP_201_CREATED)
def create(
    body: CaseCreate,
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        case = create_case(db, body.model_dump(), session=session)
    db.commit()
    return case


@router.get('/current', response_model=CaseRead | None)
def current_case(
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return get_current_case(db, user_id=session.user_id)


@router.get('/allocated', response_model=AllocatedCasesRead)
def allocated(
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return AllocatedCasesRead.model_validate(get_allocated_cases(db, user_id=session.user_id))


@router.get('/{case_id}', response_model=CaseRead)
def detail(
    case_id: int,
    _session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        return get_case(db, case_id)


@router.patch('/{case_id}', response_model=CaseRead)
def update(
    case_id: int,
    body: CaseUpdate,
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        case = update_case(db, case_id, body.model_dump(exclude_unset=True), session=session)
    db.commit()
    return case


@router.post('/{case_id}/close', response_model=CaseRead)
def close(
    case_id: int,
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        case = close_case(db, case_id, session=session)
    db.commit()
    return case


@router.get('/{case_id}/history', response_model=list[CaseHistoryRead])
def history(
    case_id: int,
    _session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        return list_case_history(db, case_id)


@router.post('/{case_id}/book-out', response_model=BookOutRead)
def book_out(
    case_id: int,
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        result = book_out_case(db, case_id, session=session)
    db.commit()
    return BookOutRead.model_validate(result)


@router.post('/{case_id}/release', response_model=CaseRead)
def release(
    case_id: int,
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        case = release_case(db, case_id, session=session)
    db.commit()
    return case
