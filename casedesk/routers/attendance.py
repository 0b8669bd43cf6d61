from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from casedesk.auth import AgentSession, get_current_session
from casedesk.db import get_db
from casedesk.dependencies import service_errors
from casedesk.schemas import AttendanceRead
from casedesk.services.attendance_service import (
    check_in,
    check_out,
    end_break,
    get_today_attendance,
    list_attendance,
    start_break,
)

router = APIRouter(prefix='/attendance', tags=['attendance'])


@router.post('/check-in', response_model=AttendanceRead)
def check_in_route(
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        record = check_in(db, session=session)
    db.commit()
    return record


@router.post('/break/start', response_model=AttendanceRead)
def start_break_route(
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        record = start_break(db, session=session)
    db.commit()
    return record


@router.post('/break/end', response_model=AttendanceRead)
def end_break_route(
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        record = end_break(db, session=session)
    db.commit()
    return record


@router.post('/check-out', response_model=AttendanceRead)
def check_out_route(
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    with service_errors():
        record = check_out(db, session=session)
    db.commit()
    return record


@router.get('/today', response_model=AttendanceRead | None)
def today(
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return get_today_attendance(db, user_id=session.user_id)


@router.get('', response_model=list[AttendanceRead])
def my_attendance(
    start_date: date | None = None,
    end_date: date | None = None,
    session: AgentSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    return list_attendance(db, user_id=session.user_id, start_date=start_date, end_date=end_date)
