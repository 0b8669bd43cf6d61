from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session, sessionmaker

from casedesk.auth import AgentSession
from casedesk.db import build_engine, init_db
from casedesk.errors import SyncTransportError
from casedesk.models import Case, CasePriority, CaseStatus, User, UserRole

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


def make_session_factory() -> sessionmaker:
    engine = build_engine('sqlite://')
    init_db(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def add_user(db: Session, user_id: int, username: str, role: UserRole = UserRole.AGENT) -> User:
    user = User(
        id=user_id,
        username=username,
        email=f'{username}@example.com',
        password_hash='not-a-real-hash',
        role=role,
        server_id=user_id,
        synced=True,
    )
    db.add(user)
    db.flush()
    return user


def session_for(user: User, token: str | None = None) -> AgentSession:
    return AgentSession(user_id=user.id, username=user.username, role=user.role, token=token)


def add_case(db: Session, case_number: str, **fields) -> Case:
    values = {
        'customer_name': 'Test Customer',
        'case_type': 'billing',
        'priority': CasePriority.MEDIUM,
        'status': CaseStatus.OPEN,
        'synced': False,
    }
    values.update(fields)
    case = Case(case_number=case_number, **values)
    db.add(case)
    db.flush()
    return case


def case_fields(case_number: str, **extra) -> dict:
    data = {'case_number': case_number, 'customer_name': 'Test Customer', 'case_type': 'billing'}
    data.update(extra)
    return data


class FakeRemoteStore:
    def __init__(self, *, cases=None, attendance=None, fail_case_numbers=(), offline=False) -> None:
        self.cases = list(cases or [])
        self.attendance = list(attendance or [])
        self.fail_case_numbers = set(fail_case_numbers)
        self.offline = offline
        self.calls: list[tuple] = []
        self.closed = 0
        self._next_id = 1000

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def create_case(self, payload: dict) -> dict:
        self.calls.append(('create_case', payload))
        if payload['case_number'] in self.fail_case_numbers:
            raise SyncTransportError('Server error 500 on POST /cases: boom')
        return {**payload, 'id': self._new_id()}

    def update_case(self, server_id: int, payload: dict) -> dict:
        self.calls.append(('update_case', server_id, payload))
        return {**payload, 'id': server_id}

    def check_in(self, payload: dict) -> dict:
        self.calls.append(('check_in', payload))
        return {'message': 'Checked in', 'attendance': {**payload, 'id': self._new_id()}}

    def update_attendance(self, server_id: int, payload: dict) -> dict:
        self.calls.append(('update_attendance', server_id, payload))
        return {**payload, 'id': server_id}

    def add_case_history(self, case_server_id: int, payload: dict) -> dict:
        self.calls.append(('add_case_history', case_server_id, payload))
        return {**payload, 'id': self._new_id()}

    def list_cases(self) -> list[dict]:
        if self.offline:
            raise SyncTransportError('No response from server on GET /cases - offline?')
        return [dict(row) for row in self.cases]

    def list_my_attendance(self) -> list[dict]:
        if self.offline:
            raise SyncTransportError('No response from server on GET /attendance/my-attendance - offline?')
        return [dict(row) for row in self.attendance]

    def close(self) -> None:
        self.closed += 1


def remote_case(server_id: int, case_number: str, **fields) -> dict:
    row = {
        'id': server_id,
        'case_number': case_number,
        'customer_name': 'Remote Customer',
        'case_type': 'technical',
        'priority': 'medium',
        'status': 'open',
        'booked_out_by': None,
        'booked_out_at': None,
        'created_at': '2024-03-01T08:00:00.000Z',
        'updated_at': '2024-03-01T08:00:00.000Z',
    }
    row.update(fields)
    return row
