from __future__ import annotations

from datetime import date as calendar_date, datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from casedesk.services.time_utils import utcnow


class Base(DeclarativeBase):
    pass


class UserRole(str, Enum):
    AGENT = 'agent'
    MANAGER = 'manager'
    ADMIN = 'admin'


class AttendanceStatus(str, Enum):
    ACTIVE = 'active'
    ON_BREAK = 'on_break'
    COMPLETED = 'completed'


class CasePriority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class CaseStatus(str, Enum):
    OPEN = 'open'
    IN_PROGRESS = 'in_progress'
    RESOLVED = 'resolved'
    CLOSED = 'closed'


TERMINAL_CASE_STATUSES = (CaseStatus.RESOLVED, CaseStatus.CLOSED)


class SyncTable(str, Enum):
    CASES = 'cases'
    ATTENDANCE = 'attendance'
    CASE_HISTORY = 'case_history'


class SyncOperation(str, Enum):
    CREATE = 'create'
    UPDATE = 'update'


def _enum(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        values_callable=lambda members: [member.value for member in members],
    )


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(_enum(UserRole, 'user_role'), nullable=False, default=UserRole.AGENT)
    team: Mapped[str | None] = mapped_column(String(100))
    server_id: Mapped[int | None] = mapped_column(Integer)
    synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='0')
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )


class Attendance(Base):
    __tablename__ = 'attendance'
    __table_args__ = (
        Index('ix_attendance_user_date', 'user_id', 'date'),
        # One check-in that is still running per user and day.
        Index(
            'uq_attendance_open_per_day',
            'user_id',
            'date',
            unique=True,
            sqlite_where=text("status != 'completed'"),
            postgresql_where=text("status != 'completed'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey('users.id'), nullable=False)
    check_in: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    check_out: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    break_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    break_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    total_break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    status: Mapped[AttendanceStatus] = mapped_column(
        _enum(AttendanceStatus, 'attendance_status'), nullable=False, default=AttendanceStatus.ACTIVE
    )
    date: Mapped[calendar_date] = mapped_column(Date, nullable=False)
    server_id: Mapped[int | None] = mapped_column(Integer)
    synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='0')
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )


class Case(Base):
    __tablename__ = 'cases'
    __table_args__ = (
        Index('ix_cases_assigned_to', 'assigned_to'),
        Index('ix_cases_status', 'status'),
        Index('ix_cases_server_id', 'server_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    case_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    customer_email: Mapped[str | None] = mapped_column(Text)
    customer_phone: Mapped[str | None] = mapped_column(Text)
    case_type: Mapped[str] = mapped_column(String(100), nullable=False)
    priority: Mapped[CasePriority] = mapped_column(
        _enum(CasePriority, 'case_priority'), nullable=False, default=CasePriority.MEDIUM
    )
    status: Mapped[CaseStatus] = mapped_column(_enum(CaseStatus, 'case_status'), nullable=False, default=CaseStatus.OPEN)
    description: Mapped[str | None] = mapped_column(Text)
    assigned_to: Mapped[int | None] = mapped_column(Integer, ForeignKey('users.id'))
    created_by: Mapped[int | None] = mapped_column(Integer, ForeignKey('users.id'))
    booked_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    booked_out_by: Mapped[int | None] = mapped_column(Integer, ForeignKey('users.id'))
    resolution: Mapped[str | None] = mapped_column(Text)
    server_id: Mapped[int | None] = mapped_column(Integer)
    synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='0')
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class CaseHistory(Base):
    __tablename__ = 'case_history'

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    case_id: Mapped[int] = mapped_column(Integer, ForeignKey('cases.id'), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey('users.id'))
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    server_id: Mapped[int | None] = mapped_column(Integer)
    synced: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='0')
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )


class SyncQueueEntry(Base):
    __tablename__ = 'sync_queue'
    __table_args__ = (UniqueConstraint('table_name', 'record_id', name='uq_sync_queue_record'),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    table_name: Mapped[SyncTable] = mapped_column(_enum(SyncTable, 'sync_table'), nullable=False)
    record_id: Mapped[int] = mapped_column(Integer, nullable=False)
    operation: Mapped[SyncOperation] = mapped_column(_enum(SyncOperation, 'sync_operation'), nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    last_error: Mapped[str | None] = mapped_column(Text)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
