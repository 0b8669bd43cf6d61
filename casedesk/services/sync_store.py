"""Dirty-record bookkeeping for the three tables that are pushed to the server.

The ``synced`` flag on each row is the ground truth for what still needs
pushing. The ``sync_queue`` table is auxiliary: it records the operation that
made a row dirty plus retry state (count, last error, backoff deadline) for
rows whose push has failed.

Only the tables in ``SyncTable`` can be addressed; each has its own
``SyncRepository`` bound to its model, and ``PUSH_ORDER`` fixes the order the
sync engine walks them in so that cases get their server ids before the
history rows that reference them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from casedesk.errors import NotFound
from casedesk.models import Attendance, Case, CaseHistory, SyncOperation, SyncQueueEntry, SyncTable

SyncedRecord = Case | Attendance | CaseHistory

PUSH_ORDER = (SyncTable.CASES, SyncTable.ATTENDANCE, SyncTable.CASE_HISTORY)


@dataclass(frozen=True)
class SyncRepository:
    table: SyncTable
    model: type[Case] | type[Attendance] | type[CaseHistory]

    def get(self, db: Session, record_id: int) -> SyncedRecord | None:
        return db.get(self.model, record_id)

    def unsynced(self, db: Session, *, limit: int) -> list[SyncedRecord]:
        return db.execute(
            select(self.model).where(self.model.synced.is_(False)).order_by(self.model.id.asc()).limit(limit)
        ).scalars().all()

    def pushable(self, db: Session, *, limit: int, now: datetime, max_retries: int) -> list[SyncedRecord]:
        return db.execute(
            select(self.model)
            .outerjoin(
                SyncQueueEntry,
                and_(
                    SyncQueueEntry.table_name == self.table,
                    SyncQueueEntry.record_id == self.model.id,
                ),
            )
            .where(
                self.model.synced.is_(False),
                or_(
                    SyncQueueEntry.id.is_(None),
                    and_(
                        SyncQueueEntry.retry_count < max_retries,
                        or_(SyncQueueEntry.next_attempt_at.is_(None), SyncQueueEntry.next_attempt_at <= now),
                    ),
                ),
            )
            .order_by(self.model.id.asc())
            .limit(limit)
        ).scalars().all()

    def count_unsynced(self, db: Session) -> int:
        return db.execute(select(func.count()).select_from(self.model).where(self.model.synced.is_(False))).scalar_one()

    def mark_synced(self, db: Session, record_id: int, server_id: int, *, pushed_version: datetime | None) -> bool:
        values = {'synced': True, 'server_id': server_id}
        stmt = update(self.model).where(self.model.id == record_id)
        if pushed_version is not None and hasattr(self.model, 'updated_at'):
            stmt = stmt.where(self.model.updated_at == pushed_version)
        result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        if result.rowcount:
            return True

        # Edited locally while the push was in flight: keep the server id, stay dirty.
        result = db.execute(
            update(self.model)
            .where(self.model.id == record_id)
            .values(server_id=server_id)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            raise NotFound(f'{self.table.value} record {record_id} not found')
        return False


REPOSITORIES: dict[SyncTable, SyncRepository] = {
    SyncTable.CASES: SyncRepository(SyncTable.CASES, Case),
    SyncTable.ATTENDANCE: SyncRepository(SyncTable.ATTENDANCE, Attendance),
    SyncTable.CASE_HISTORY: SyncRepository(SyncTable.CASE_HISTORY, CaseHistory),
}


def repository_for(table: SyncTable) -> SyncRepository:
    return REPOSITORIES[SyncTable(table)]


def get_queue_entry(db: Session, table: SyncTable, record_id: int) -> SyncQueueEntry | None:
    return db.execute(
        select(SyncQueueEntry).where(SyncQueueEntry.table_name == table, SyncQueueEntry.record_id == record_id)
    ).scalar_one_or_none()


def enqueue_sync(db: Session, table: SyncTable, record_id: int, operation: SyncOperation) -> SyncQueueEntry:
    entry = get_queue_entry(db, table, record_id)
    if entry:
        # A row created offline stays a create until the server has seen it.
        if entry.operation != SyncOperation.CREATE:
            entry.operation = operation
        return entry
    entry = SyncQueueEntry(table_name=table, record_id=record_id, operation=operation)
    db.add(entry)
    return entry


def clear_queue_entry(db: Session, table: SyncTable, record_id: int) -> None:
    entry = get_queue_entry(db, table, record_id)
    if entry:
        db.delete(entry)


def get_unsynced_records(db: Session, table: SyncTable, limit: int = 100) -> list[SyncedRecord]:
    return repository_for(table).unsynced(db, limit=limit)


def get_pushable_records(
    db: Session,
    table: SyncTable,
    *,
    limit: int,
    now: datetime,
    max_retries: int,
) -> list[SyncedRecord]:
    return repository_for(table).pushable(db, limit=limit, now=now, max_retries=max_retries)


def mark_as_synced(
    db: Session,
    table: SyncTable,
    local_id: int,
    server_id: int,
    *,
    pushed_version: datetime | None = None,
) -> bool:
    """Record a successful push.

    ``pushed_version`` is the ``updated_at`` value the pushed payload was built
    from. If the row has changed since, it keeps ``synced=0`` so the newer
    state goes out on the next cycle. Returns whether the row is now clean.
    """
    clean = repository_for(table).mark_synced(db, local_id, server_id, pushed_version=pushed_version)
    if clean:
        clear_queue_entry(db, table, local_id)
    return clean


def backoff_delay(retry_count: int, *, base_seconds: int, max_seconds: int) -> timedelta:
    seconds = base_seconds * (2 ** max(retry_count - 1, 0))
    return timedelta(seconds=min(seconds, max_seconds))


def record_sync_failure(
    db: Session,
    table: SyncTable,
    record_id: int,
    error: str,
    *,
    now: datetime,
    base_seconds: int,
    max_seconds: int,
) -> SyncQueueEntry:
    entry = enqueue_sync(db, table, record_id, SyncOperation.UPDATE)
    entry.retry_count = (entry.retry_count or 0) + 1
    entry.last_error = error[:1000]
    entry.next_attempt_at = now + backoff_delay(entry.retry_count, base_seconds=base_seconds, max_seconds=max_seconds)
    return entry


def count_pending(db: Session) -> int:
    return sum(repository_for(table).count_unsynced(db) for table in PUSH_ORDER)


def count_dead_lettered(db: Session, *, max_retries: int) -> int:
    return db.execute(
        select(func.count()).select_from(SyncQueueEntry).where(SyncQueueEntry.retry_count >= max_retries)
    ).scalar_one()


def list_sync_failures(db: Session) -> list[SyncQueueEntry]:
    return db.execute(
        select(SyncQueueEntry)
        .where(SyncQueueEntry.last_error.is_not(None))
        .order_by(SyncQueueEntry.table_name.asc(), SyncQueueEntry.record_id.asc())
    ).scalars().all()


def reset_sync_failures(db: Session) -> int:
    result = db.execute(
        update(SyncQueueEntry)
        .where(SyncQueueEntry.retry_count > 0)
        .values(retry_count=0, next_attempt_at=None, last_error=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
