from __future__ import annotations

import unittest
from datetime import timedelta

from helpers import T0, add_case, add_user, case_fields, make_session_factory, session_for

from casedesk.errors import NotFound
from casedesk.models import SyncTable
from casedesk.services.case_service import create_case, update_case
from casedesk.services.sync_store import (
    backoff_delay,
    count_dead_lettered,
    count_pending,
    get_pushable_records,
    get_queue_entry,
    get_unsynced_records,
    list_sync_failures,
    mark_as_synced,
    record_sync_failure,
    reset_sync_failures,
)


class SyncStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.agent = session_for(add_user(self.db, 1, 'alice'))

    def tearDown(self) -> None:
        self.db.close()

    def _fail(self, table: SyncTable, record_id: int, now=T0):
        return record_sync_failure(self.db, table, record_id, 'boom', now=now, base_seconds=30, max_seconds=600)

    def test_marked_record_leaves_the_unsynced_set(self) -> None:
        first = add_case(self.db, 'C1')
        second = add_case(self.db, 'C2')
        add_case(self.db, 'C3', synced=True)

        self.assertEqual([case.id for case in get_unsynced_records(self.db, SyncTable.CASES)], [first.id, second.id])

        self.assertTrue(mark_as_synced(self.db, SyncTable.CASES, first.id, 501))

        remaining = get_unsynced_records(self.db, SyncTable.CASES)
        self.assertEqual([case.id for case in remaining], [second.id])
        self.db.refresh(first)
        self.assertEqual(first.server_id, 501)
        self.assertTrue(first.synced)

    def test_unsynced_respects_limit(self) -> None:
        for number in range(5):
            add_case(self.db, f'C{number}')
        self.assertEqual(len(get_unsynced_records(self.db, SyncTable.CASES, limit=2)), 2)

    def test_mark_as_synced_clears_queue_entry(self) -> None:
        case = create_case(self.db, case_fields('C100'), session=self.agent, now=T0)
        self.db.flush()

        mark_as_synced(self.db, SyncTable.CASES, case.id, 77)

        self.assertIsNone(get_queue_entry(self.db, SyncTable.CASES, case.id))

    def test_edit_during_push_keeps_record_dirty(self) -> None:
        case = create_case(self.db, case_fields('C100'), session=self.agent, now=T0)
        self.db.flush()
        pushed_version = T0

        update_case(self.db, case.id, {'priority': 'high'}, session=self.agent, now=T0 + timedelta(seconds=5))
        self.db.flush()
        clean = mark_as_synced(self.db, SyncTable.CASES, case.id, 88, pushed_version=pushed_version)

        self.assertFalse(clean)
        self.db.refresh(case)
        self.assertFalse(case.synced)
        self.assertEqual(case.server_id, 88)
        self.assertIsNotNone(get_queue_entry(self.db, SyncTable.CASES, case.id))

    def test_mark_missing_record_raises(self) -> None:
        with self.assertRaises(NotFound):
            mark_as_synced(self.db, SyncTable.ATTENDANCE, 12345, 1)

    def test_backoff_doubles_up_to_cap(self) -> None:
        delays = [backoff_delay(count, base_seconds=30, max_seconds=600) for count in (1, 2, 3, 6)]
        self.assertEqual(delays, [timedelta(seconds=30), timedelta(seconds=60), timedelta(seconds=120), timedelta(seconds=600)])

    def test_failed_record_waits_for_backoff(self) -> None:
        case = add_case(self.db, 'C1')
        entry = self._fail(SyncTable.CASES, case.id)
        self.db.flush()

        self.assertEqual(entry.retry_count, 1)
        self.assertEqual(entry.last_error, 'boom')
        too_soon = get_pushable_records(self.db, SyncTable.CASES, limit=10, now=T0 + timedelta(seconds=10), max_retries=3)
        later = get_pushable_records(self.db, SyncTable.CASES, limit=10, now=T0 + timedelta(seconds=31), max_retries=3)
        self.assertEqual(too_soon, [])
        self.assertEqual([record.id for record in later], [case.id])

    def test_record_is_dead_lettered_after_max_retries(self) -> None:
        case = add_case(self.db, 'C1')
        for _ in range(3):
            self._fail(SyncTable.CASES, case.id)
            self.db.flush()

        far_future = T0 + timedelta(days=1)
        self.assertEqual(get_pushable_records(self.db, SyncTable.CASES, limit=10, now=far_future, max_retries=3), [])
        self.assertEqual(count_dead_lettered(self.db, max_retries=3), 1)
        self.assertEqual(len(list_sync_failures(self.db)), 1)

        self.assertEqual(reset_sync_failures(self.db), 1)
        self.db.expire_all()
        self.assertEqual(count_dead_lettered(self.db, max_retries=3), 0)
        self.assertEqual(len(get_pushable_records(self.db, SyncTable.CASES, limit=10, now=T0, max_retries=3)), 1)

    def test_count_pending_spans_all_tables(self) -> None:
        create_case(self.db, case_fields('C100'), session=self.agent)
        self.db.flush()
        # One case plus its creation history row.
        self.assertEqual(count_pending(self.db), 2)


if __name__ == '__main__':
    unittest.main()
