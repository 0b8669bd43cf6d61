from __future__ import annotations

from typing import Any, Protocol

import httpx

from casedesk.auth import AgentSession
from casedesk.config import settings
from casedesk.errors import SyncTransportError, Unauthenticated


class RemoteStore(Protocol):
    def create_case(self, payload: dict) -> dict: ...

    def update_case(self, server_id: int, payload: dict) -> dict: ...

    def check_in(self, payload: dict) -> dict: ...

    def update_attendance(self, server_id: int, payload: dict) -> dict: ...

    def add_case_history(self, case_server_id: int, payload: dict) -> dict: ...

    def list_cases(self) -> list[dict]: ...

    def list_my_attendance(self) -> list[dict]: ...

    def close(self) -> None: ...


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and body.get('error'):
        return str(body['error'])
    return str(body)[:200]


class HttpRemoteStore:
    """Client for the server's REST API; every call carries the bearer token and a bounded timeout."""

    def __init__(
        self,
        *,
        token: str | None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not token:
            raise Unauthenticated('Not authenticated with server')

        self.base_url = (base_url or settings.server_url).rstrip('/')
        self.client = httpx.Client(
            base_url=self.base_url,
            headers={
                'Authorization': f'Bearer {token}',
                'Content-Type': 'application/json',
            },
            timeout=timeout if timeout is not None else settings.request_timeout_seconds,
            transport=transport,
        )

    def __enter__(self) -> HttpRemoteStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, payload: dict | None = None) -> Any:
        try:
            response = self.client.request(method, path, json=payload)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise SyncTransportError(f'Request timed out on {method} {path}') from exc
        except httpx.HTTPStatusError as exc:
            raise SyncTransportError(
                f'Server error {exc.response.status_code} on {method} {path}: {_error_detail(exc.response)}'
            ) from exc
        except httpx.RequestError as exc:
            raise SyncTransportError(f'No response from server on {method} {path} - offline? ({exc})') from exc

        try:
            return response.json()
        except ValueError as exc:
            raise SyncTransportError(f'Invalid JSON from server on {method} {path}') from exc

    def _get_list(self, path: str) -> list[dict]:
        body = self._request('GET', path)
        if not isinstance(body, list):
            raise SyncTransportError(f'Expected a list from GET {path}')
        return body

    def create_case(self, payload: dict) -> dict:
        return self._request('POST', '/cases', payload)

    def update_case(self, server_id: int, payload: dict) -> dict:
        return self._request('PUT', f'/cases/{server_id}', payload)

    def check_in(self, payload: dict) -> dict:
        return self._request('POST', '/attendance/check-in', payload)

    def update_attendance(self, server_id: int, payload: dict) -> dict:
        return self._request('PUT', f'/attendance/{server_id}', payload)

    def add_case_history(self, case_server_id: int, payload: dict) -> dict:
        return self._request('POST', f'/cases/{case_server_id}/history', payload)

    def list_cases(self) -> list[dict]:
        return self._get_list('/cases')

    def list_my_attendance(self) -> list[dict]:
        return self._get_list('/attendance/my-attendance')


def get_remote_store(session: AgentSession) -> RemoteStore:
    return HttpRemoteStore(token=session.token)


def _coerce_server_id(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise SyncTransportError(f'Server returned an unusable id: {value!r}')
    try:
        return int(value)
    except ValueError as exc:
        raise SyncTransportError(f'Server returned an unusable id: {value!r}') from exc


def extract_server_id(body: Any) -> int | None:
    # The check-in endpoint wraps the row: {"message": ..., "attendance": {...}}.
    if not isinstance(body, dict):
        return None
    if body.get('id') is not None:
        return _coerce_server_id(body['id'])
    for key in ('case', 'attendance', 'history', 'entry'):
        nested = body.get(key)
        if isinstance(nested, dict) and nested.get('id') is not None:
            return _coerce_server_id(nested['id'])
    return None
