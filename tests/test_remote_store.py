from __future__ import annotations

import json
import unittest

import httpx

from casedesk.auth import AgentSession
from casedesk.errors import SyncTransportError, Unauthenticated
from casedesk.models import UserRole
from casedesk.services.remote_store import HttpRemoteStore, extract_server_id, get_remote_store


def store_with(handler) -> HttpRemoteStore:
    return HttpRemoteStore(token='abc123', base_url='http://server.test/api/', transport=httpx.MockTransport(handler))


class HttpRemoteStoreTests(unittest.TestCase):
    def test_requests_carry_bearer_token_and_json_body(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={'id': 9, 'case_number': 'C1'})

        with store_with(handler) as store:
            body = store.create_case({'case_number': 'C1'})

        self.assertEqual(body['id'], 9)
        request = seen[0]
        self.assertEqual(request.method, 'POST')
        self.assertEqual(str(request.url), 'http://server.test/api/cases')
        self.assertEqual(request.headers['Authorization'], 'Bearer abc123')
        self.assertEqual(json.loads(request.content), {'case_number': 'C1'})

    def test_endpoints(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path))
            if request.method == 'GET':
                return httpx.Response(200, json=[])
            return httpx.Response(200, json={'id': 1})

        with store_with(handler) as store:
            store.update_case(5, {})
            store.check_in({})
            store.update_attendance(6, {})
            store.add_case_history(5, {})
            store.list_cases()
            store.list_my_attendance()

        self.assertEqual(
            seen,
            [
                ('PUT', '/api/cases/5'),
                ('POST', '/api/attendance/check-in'),
                ('PUT', '/api/attendance/6'),
                ('POST', '/api/cases/5/history'),
                ('GET', '/api/cases'),
                ('GET', '/api/attendance/my-attendance'),
            ],
        )

    def test_http_error_becomes_transport_error_with_detail(self) -> None:
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(409, json={'error': 'Case number already exists'})

        with store_with(handler) as store:
            with self.assertRaises(SyncTransportError) as ctx:
                store.create_case({'case_number': 'C1'})

        self.assertIn('409', str(ctx.exception))
        self.assertIn('Case number already exists', str(ctx.exception))

    def test_connection_failure_reads_as_offline(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError('connection refused', request=request)

        with store_with(handler) as store:
            with self.assertRaises(SyncTransportError) as ctx:
                store.list_cases()

        self.assertIn('offline', str(ctx.exception))

    def test_timeout_is_reported(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout('too slow', request=request)

        with store_with(handler) as store:
            with self.assertRaises(SyncTransportError) as ctx:
                store.check_in({})

        self.assertIn('timed out', str(ctx.exception))

    def test_list_endpoints_require_a_list(self) -> None:
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={'cases': []})

        with store_with(handler) as store:
            with self.assertRaises(SyncTransportError):
                store.list_cases()

    def test_invalid_json_is_a_transport_error(self) -> None:
        def handler(_request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text='<html>proxy login</html>')

        with store_with(handler) as store:
            with self.assertRaises(SyncTransportError):
                store.list_cases()

    def test_missing_token_is_unauthenticated(self) -> None:
        with self.assertRaises(Unauthenticated):
            HttpRemoteStore(token=None)
        with self.assertRaises(Unauthenticated):
            get_remote_store(AgentSession(user_id=1, username='alice', role=UserRole.AGENT))


class ExtractServerIdTests(unittest.TestCase):
    def test_shapes(self) -> None:
        self.assertEqual(extract_server_id({'id': '12'}), 12)
        self.assertEqual(extract_server_id({'message': 'ok', 'attendance': {'id': 7}}), 7)
        self.assertEqual(extract_server_id({'case': {'id': 3}}), 3)
        self.assertIsNone(extract_server_id({'message': 'ok'}))
        self.assertIsNone(extract_server_id([{'id': 1}]))

    def test_unusable_ids_are_transport_errors(self) -> None:
        for body in ({'id': {'nested': 1}}, {'id': [5]}, {'id': True}, {'id': 'abc'}, {'case': {'id': 1.5}}):
            with self.subTest(body=body):
                with self.assertRaises(SyncTransportError):
                    extract_server_id(body)


if __name__ == '__main__':
    unittest.main()
