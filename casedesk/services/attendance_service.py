from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from casedesk.auth import AgentSession
from casedesk.errors import InvalidTransition
from casedesk.models import Attendance, AttendanceStatus, SyncOperation, SyncTable
from casedesk.services.sync_store import enqueue_sync
from casedesk.services.time_utils import as_utc, local_day, utcnow


def _open_record(db: Session, *, user_id: int, day: date) -> Attendance | None:
    return db.execute(
        select(Attendance)
        .where(
            Attendance.user_id == user_id,
            Attendance.date == day,
            Attendance.status != AttendanceStatus.COMPLETED,
        )
        .order_by(Attendance.id.desc())
    ).scalars().first()


def _require_open_record(db: Session, *, user_id: int, day: date) -> Attendance:
    record = _open_record(db, user_id=user_id, day=day)
    if not record:
        raise InvalidTransition('Not checked in')
    return record


def _touch(db: Session, record: Attendance, now: datetime) -> None:
    record.updated_at = now
    record.synced = False
    enqueue_sync(db, SyncTable.ATTENDANCE, record.id, SyncOperation.UPDATE)


def break_minutes(break_start: datetime, break_end: datetime) -> int:
    elapsed = as_utc(break_end) - as_utc(break_start)
    return max(int(elapsed.total_seconds() // 60), 0)


def check_in(db: Session, *, session: AgentSession, now: datetime | None = None) -> Attendance:
    now = now or utcnow()
    day = local_day(now)
    if _open_record(db, user_id=session.user_id, day=day):
        raise InvalidTransition('Already checked in')

    record = Attendance(
        user_id=session.user_id,
        check_in=now,
        date=day,
        status=AttendanceStatus.ACTIVE,
        total_break_minutes=0,
        synced=False,
        created_at=now,
        updated_at=now,
    )
    db.add(record)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidTransition('Already checked in') from exc

    enqueue_sync(db, SyncTable.ATTENDANCE, record.id, SyncOperation.CREATE)
    return record


def start_break(db: Session, *, session: AgentSession, now: datetime | None = None) -> Attendance:
    now = now or utcnow()
    record = _require_open_record(db, user_id=session.user_id, day=local_day(now))
    if record.status == AttendanceStatus.ON_BREAK:
        raise InvalidTransition('Break already started')

    record.break_start = now
    record.break_end = None
    record.status = AttendanceStatus.ON_BREAK
    _touch(db, record, now)
    return record


def _finish_break(record: Attendance, now: datetime) -> None:
    record.total_break_minutes = (record.total_break_minutes or 0) + break_minutes(record.break_start, now)
    record.break_end = now
    record.status = AttendanceStatus.ACTIVE


def end_break(db: Session, *, session: AgentSession, now: datetime | None = None) -> Attendance:
    now = now or utcnow()
    record = _require_open_record(db, user_id=session.user_id, day=local_day(now))
    if record.status != AttendanceStatus.ON_BREAK or record.break_start is None:
        raise InvalidTransition('Break not started')

    _finish_break(record, now)
    _touch(db, record, now)
    return record


def check_out(db: Session, *, session: AgentSession, now: datetime | None = None) -> Attendance:
    now = now or utcnow()
    record = _require_open_record(db, user_id=session.user_id, day=local_day(now))
    if record.status == AttendanceStatus.ON_BREAK and record.break_start is not None:
        _finish_break(record, now)

    record.check_out = now
    record.status = AttendanceStatus.COMPLETED
    _touch(db, record, now)
    return record


def get_today_attendance(db: Session, *, user_id: int, now: datetime | None = None) -> Attendance | None:
    day = local_day(now or utcnow())
    return db.execute(
        select(Attendance)
        .where(Attendance.user_id == user_id, Attendance.date == day)
        .order_by(Attendance.id.desc())
    ).scalars().first()


def list_attendance(
    db: Session,
    *,
    user_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[Attendance]:
    stmt = select(Attendance).where(Attendance.user_id == user_id)
    if start_date:
        stmt = stmt.where(Attendance.date >= start_date)
    if end_date:
        stmt = stmt.where(Attendance.date <= end_date)
    return db.execute(stmt.order_by(Attendance.date.desc(), Attendance.check_in.desc())).scalars().all()
