from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from casedesk.auth import AgentSession, get_current_session
from casedesk.db import get_db
from casedesk.dependencies import service_errors
from casedesk.schemas import SessionOpen, SessionRead
from casedesk.services.user_service import open_session

router = APIRouter(prefix='/session', tags=['session'])


def _session_read(session: AgentSession) -> SessionRead:
    return SessionRead(
        user_id=session.user_id,
        username=session.username,
        role=session.role,
        online=session.token is not None,
    )


@router.post('', response_model=SessionRead)
def sign_in(body: SessionOpen, request: Request, db: Session = Depends(get_db)):
    with service_errors():
        session = open_session(db, username=body.username, password=body.password, token=body.token)
    db.commit()
    request.app.state.agent_session = session
    return _session_read(session)


@router.get('', response_model=SessionRead)
def current(session: AgentSession = Depends(get_current_session)):
    return _session_read(session)


@router.delete('', status_code=status.HTTP_204_NO_CONTENT)
def sign_out(request: Request):
    request.app.state.agent_session = None
    return Response(status_code=status.HTTP_204_NO_CONTENT)
