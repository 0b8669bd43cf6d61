"""Reconciliation between the local store and the server.

Push walks the dirty rows of each table in ``PUSH_ORDER`` (oldest first,
bounded per table) and sends each one on its own; a failing record is
recorded with a backoff deadline and the batch moves on. Pull fetches the
server's cases and attendance and merges them row by row, each in its own
transaction.

Only one cycle runs at a time per engine. A request that arrives while a
cycle is running is answered immediately with an ``in_progress`` summary
rather than queued; the next tick picks up whatever is still dirty.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from casedesk.auth import AgentSession
from casedesk.config import settings
from casedesk.db import SessionLocal
from casedesk.errors import SyncTransportError, Unauthenticated
from casedesk.models import Case, SyncTable
from casedesk.schemas import SyncOutcome, attendance_payload, case_history_payload, case_payload
from casedesk.services.reconcile_service import MergeOutcome, merge_remote_attendance, merge_remote_case
from casedesk.services.remote_store import RemoteStore, extract_server_id, get_remote_store
from casedesk.services.sync_store import (
    PUSH_ORDER,
    count_dead_lettered,
    count_pending,
    get_pushable_records,
    mark_as_synced,
    record_sync_failure,
    repository_for,
    reset_sync_failures,
)
from casedesk.services.time_utils import utcnow

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = 'Not authenticated with server'


class PushDeferred(Exception):
    """The record cannot be pushed yet (its parent case has no server id)."""


@dataclass
class SyncSummary:
    status: SyncOutcome
    synced: int = 0
    failed: int = 0
    deferred: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        return self.status == SyncOutcome.SUCCESS

    @property
    def message(self) -> str:
        if self.status == SyncOutcome.IN_PROGRESS:
            return 'Sync already in progress'
        if self.status == SyncOutcome.UNAUTHENTICATED:
            return NOT_AUTHENTICATED
        return f'Synced {self.synced} records, {self.failed} failed'


@dataclass
class ImportFailure:
    case_number: str | None
    error: str


@dataclass
class ImportSummary:
    status: SyncOutcome
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    attendance_imported: int = 0
    attendance_updated: int = 0
    attendance_skipped: int = 0
    errors: list[ImportFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == SyncOutcome.SUCCESS

    @property
    def message(self) -> str:
        if self.status == SyncOutcome.IN_PROGRESS:
            return 'Sync already in progress'
        if self.status == SyncOutcome.UNAUTHENTICATED:
            return NOT_AUTHENTICATED
        return f'Imported {self.imported} cases, updated {self.updated}, skipped {self.skipped}'


@dataclass
class SyncStatus:
    last_sync_time: datetime | None
    status: str
    is_syncing: bool
    pending_records: int
    dead_lettered: int


@dataclass
class _PushSnapshot:
    record_id: int
    server_id: int | None
    version: datetime | None
    payload: dict
    case_server_id: int | None = None


class SyncEngine:
    def __init__(
        self,
        *,
        session_factory: sessionmaker = SessionLocal,
        remote_factory: Callable[[AgentSession], RemoteStore] = get_remote_store,
        batch_size: int | None = None,
        max_retries: int | None = None,
        backoff_base_seconds: int | None = None,
        backoff_max_seconds: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.remote_factory = remote_factory
        self.batch_size = batch_size or settings.sync_batch_size
        self.max_retries = max_retries or settings.sync_max_retries
        self.backoff_base_seconds = backoff_base_seconds if backoff_base_seconds is not None else settings.sync_backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds or settings.sync_backoff_max_seconds
        self.clock = clock

        self._gate = threading.Lock()
        self.last_sync_time: datetime | None = None
        self.last_sync_status = 'pending'

    @property
    def is_syncing(self) -> bool:
        return self._gate.locked()

    # Entry points -------------------------------------------------------

    def sync_now(self, session: AgentSession | None) -> SyncSummary:
        if not self._gate.acquire(blocking=False):
            return SyncSummary(status=SyncOutcome.IN_PROGRESS)
        try:
            return self._push(session)
        finally:
            self._gate.release()

    def download_from_server(self, session: AgentSession | None) -> ImportSummary:
        if not self._gate.acquire(blocking=False):
            return ImportSummary(status=SyncOutcome.IN_PROGRESS)
        try:
            return self._pull(session)
        finally:
            self._gate.release()

    def run_cycle(self, session: AgentSession | None) -> tuple[SyncSummary, ImportSummary | None]:
        """Push then pull under one hold of the gate; this is the periodic job."""
        if not self._gate.acquire(blocking=False):
            return SyncSummary(status=SyncOutcome.IN_PROGRESS), None
        try:
            pushed = self._push(session)
            if pushed.status == SyncOutcome.UNAUTHENTICATED:
                return pushed, None
            return pushed, self._pull(session)
        finally:
            self._gate.release()

    def get_status(self) -> SyncStatus:
        with self.session_factory() as db:
            pending = count_pending(db)
            dead_lettered = count_dead_lettered(db, max_retries=self.max_retries)
        return SyncStatus(
            last_sync_time=self.last_sync_time,
            status=self.last_sync_status,
            is_syncing=self.is_syncing,
            pending_records=pending,
            dead_lettered=dead_lettered,
        )

    def retry_failed(self) -> int:
        with self.session_factory.begin() as db:
            return reset_sync_failures(db)

    # Push ---------------------------------------------------------------

    def _open_remote(self, session: AgentSession | None) -> RemoteStore:
        if session is None or not session.token:
            raise Unauthenticated(NOT_AUTHENTICATED)
        return self.remote_factory(session)

    def _finish(self, status: SyncOutcome) -> None:
        self.last_sync_time = self.clock()
        self.last_sync_status = SyncOutcome.SUCCESS.value if status == SyncOutcome.SUCCESS else SyncOutcome.FAILED.value

    def _push(self, session: AgentSession | None) -> SyncSummary:
        summary = SyncSummary(status=SyncOutcome.SUCCESS, started_at=self.clock())
        try:
            remote = self._open_remote(session)
        except Unauthenticated as exc:
            logger.warning('Sync skipped: %s', exc)
            summary.status = SyncOutcome.UNAUTHENTICATED
            summary.errors.append(str(exc))
            summary.finished_at = self.clock()
            self._finish(summary.status)
            return summary

        try:
            for table in PUSH_ORDER:
                self._push_table(remote, table, summary)
        finally:
            remote.close()

        summary.status = SyncOutcome.SUCCESS if summary.failed == 0 else SyncOutcome.FAILED
        summary.finished_at = self.clock()
        self._finish(summary.status)
        logger.info(
            'Sync completed in %.0fms: synced=%d failed=%d deferred=%d',
            (summary.finished_at - summary.started_at).total_seconds() * 1000,
            summary.synced,
            summary.failed,
            summary.deferred,
        )
        return summary

    def _push_table(self, remote: RemoteStore, table: SyncTable, summary: SyncSummary) -> None:
        with self.session_factory() as db:
            record_ids = [
                record.id
                for record in get_pushable_records(
                    db,
                    table,
                    limit=self.batch_size,
                    now=self.clock(),
                    max_retries=self.max_retries,
                )
            ]

        for record_id in record_ids:
            try:
                pushed = self._push_record(remote, table, record_id)
            except PushDeferred:
                summary.deferred += 1
            except (SyncTransportError, SQLAlchemyError, ValueError, LookupError) as exc:
                summary.failed += 1
                summary.errors.append(f'{table.value}#{record_id}: {exc}')
                logger.warning('Push of %s#%s failed: %s', table.value, record_id, exc)
                self._record_failure(table, record_id, str(exc))
            except Exception as exc:
                summary.failed += 1
                summary.errors.append(f'{table.value}#{record_id}: {exc}')
                logger.exception('Unexpected error pushing %s#%s', table.value, record_id)
                self._record_failure(table, record_id, f'{type(exc).__name__}: {exc}')
            else:
                if pushed:
                    summary.synced += 1

    def _snapshot(self, table: SyncTable, record_id: int) -> _PushSnapshot | None:
        with self.session_factory() as db:
            record = repository_for(table).get(db, record_id)
            if record is None or record.synced:
                return None

            if table == SyncTable.CASES:
                payload = case_payload(record)
            elif table == SyncTable.ATTENDANCE:
                payload = attendance_payload(record)
            else:
                parent = db.get(Case, record.case_id)
                if parent is None or parent.server_id is None:
                    raise PushDeferred(f'case {record.case_id} has no server id yet')
                return _PushSnapshot(
                    record_id=record.id,
                    server_id=record.server_id,
                    version=None,
                    payload=case_history_payload(record, case_server_id=parent.server_id),
                    case_server_id=parent.server_id,
                )

            return _PushSnapshot(
                record_id=record.id,
                server_id=record.server_id,
                version=record.updated_at,
                payload=payload,
            )

    def _send(self, remote: RemoteStore, table: SyncTable, snapshot: _PushSnapshot) -> dict:
        if table == SyncTable.CASES:
            if snapshot.server_id is not None:
                return remote.update_case(snapshot.server_id, snapshot.payload)
            return remote.create_case(snapshot.payload)
        if table == SyncTable.ATTENDANCE:
            if snapshot.server_id is not None:
                return remote.update_attendance(snapshot.server_id, snapshot.payload)
            return remote.check_in(snapshot.payload)
        return remote.add_case_history(snapshot.case_server_id, snapshot.payload)

    def _push_record(self, remote: RemoteStore, table: SyncTable, record_id: int) -> bool:
        snapshot = self._snapshot(table, record_id)
        if snapshot is None:
            return False

        # No database session is held across the network call.
        response = self._send(remote, table, snapshot)
        server_id = extract_server_id(response) or snapshot.server_id
        if server_id is None:
            raise SyncTransportError('Server response did not include an id')

        with self.session_factory.begin() as db:
            mark_as_synced(db, table, snapshot.record_id, server_id, pushed_version=snapshot.version)
        return True

    def _record_failure(self, table: SyncTable, record_id: int, error: str) -> None:
        try:
            with self.session_factory.begin() as db:
                record_sync_failure(
                    db,
                    table,
                    record_id,
                    error,
                    now=self.clock(),
                    base_seconds=self.backoff_base_seconds,
                    max_seconds=self.backoff_max_seconds,
                )
        except SQLAlchemyError:
            # The row stays dirty and is retried without backoff.
            logger.exception('Could not record sync failure for %s#%s', table.value, record_id)

    # Pull ---------------------------------------------------------------

    def _pull(self, session: AgentSession | None) -> ImportSummary:
        summary = ImportSummary(status=SyncOutcome.SUCCESS)
        try:
            remote = self._open_remote(session)
        except Unauthenticated as exc:
            logger.warning('Download skipped: %s', exc)
            summary.status = SyncOutcome.UNAUTHENTICATED
            summary.errors.append(ImportFailure(case_number=None, error=str(exc)))
            return summary

        fetch_failed = False
        try:
            try:
                remote_cases = remote.list_cases()
            except SyncTransportError as exc:
                fetch_failed = True
                summary.errors.append(ImportFailure(case_number=None, error=f'Fetching cases failed: {exc}'))
                logger.warning('Fetching cases failed: %s', exc)
            else:
                for data in remote_cases:
                    self._import_case(data, summary)

            try:
                remote_attendance = remote.list_my_attendance()
            except SyncTransportError as exc:
                fetch_failed = True
                summary.errors.append(ImportFailure(case_number=None, error=f'Fetching attendance failed: {exc}'))
                logger.warning('Fetching attendance failed: %s', exc)
            else:
                for data in remote_attendance:
                    self._import_attendance(data, summary)
        finally:
            remote.close()

        if fetch_failed or summary.skipped or summary.attendance_skipped:
            summary.status = SyncOutcome.FAILED
        logger.info(
            'Download completed: imported=%d updated=%d skipped=%d attendance_imported=%d attendance_updated=%d',
            summary.imported,
            summary.updated,
            summary.skipped,
            summary.attendance_imported,
            summary.attendance_updated,
        )
        return summary

    def _import_case(self, data: dict, summary: ImportSummary) -> None:
        case_number = data.get('case_number') if isinstance(data, dict) else None
        try:
            with self.session_factory.begin() as db:
                _case, outcome = merge_remote_case(db, data)
        except (KeyError, TypeError, ValueError, SQLAlchemyError) as exc:
            summary.skipped += 1
            summary.errors.append(ImportFailure(case_number=case_number, error=str(exc)))
            logger.warning('Skipped remote case %s: %s', case_number, exc)
            return

        if outcome == MergeOutcome.IMPORTED:
            summary.imported += 1
        else:
            summary.updated += 1

    def _import_attendance(self, data: dict, summary: ImportSummary) -> None:
        try:
            with self.session_factory.begin() as db:
                _record, outcome = merge_remote_attendance(db, data)
        except (KeyError, TypeError, ValueError, SQLAlchemyError) as exc:
            summary.attendance_skipped += 1
            remote_id = data.get('id') if isinstance(data, dict) else None
            summary.errors.append(ImportFailure(case_number=None, error=f'attendance {remote_id}: {exc}'))
            logger.warning('Skipped remote attendance %s: %s', remote_id, exc)
            return

        if outcome == MergeOutcome.IMPORTED:
            summary.attendance_imported += 1
        else:
            summary.attendance_updated += 1
