"""Tests for the PostgREST (Supabase) backend adapter."""

from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from advent_sync.backend.supabase import SupabaseProgressBackend, SupabaseSettings
from advent_sync.backend.types import RecordOutcome
from advent_sync.errors import BackendError, TransientBackendError, UnexpectedResponseError
from advent_sync.services.settings import SyncSettings

BASE_URL = "https://demo.supabase.co/rest/v1"


def _settings(**overrides) -> SupabaseSettings:
    base = dict(
        url="https://demo.supabase.co",
        api_key="anon-key",
        access_token="user-jwt",
        max_retries=3,
        retry_min_seconds=0,
        retry_max_seconds=0,
    )
    base.update(overrides)
    return SupabaseSettings(**base)


def _backend(handler: Callable[[httpx.Request], httpx.Response], **overrides) -> SupabaseProgressBackend:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return SupabaseProgressBackend(_settings(**overrides), client=client)


@pytest.mark.asyncio
async def test_record_open_posts_row() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201)

    backend = _backend(handler)

    outcome = await backend.record_open("friend-1", 3)

    assert outcome is RecordOutcome.CONFIRMED
    request = requests[0]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/friend_window_opens"
    assert request.headers["Prefer"] == "return=minimal"
    assert json.loads(request.content) == {"friend_id": "friend-1", "window_number": 3}
    await backend.aclose()


@pytest.mark.asyncio
async def test_unique_violation_maps_to_duplicate() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            409,
            json={"code": "23505", "message": 'duplicate key value violates unique constraint "unique_friend_window"'},
        )

    backend = _backend(handler)

    assert await backend.record_open("friend-1", 3) is RecordOutcome.DUPLICATE


@pytest.mark.asyncio
async def test_foreign_key_conflict_raises_backend_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"code": "23503", "message": "violates foreign key constraint"})

    backend = _backend(handler)

    with pytest.raises(BackendError) as excinfo:
        await backend.record_open("ghost", 3)

    assert excinfo.value.code == "23503"
    assert excinfo.value.status == 409


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_succeed() -> None:
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        if len(attempts) < 3:
            return httpx.Response(503, text="unavailable")
        return httpx.Response(201)

    backend = _backend(handler)

    assert await backend.record_open("friend-1", 1) is RecordOutcome.CONFIRMED
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_transport_errors_raise_transient_after_retries() -> None:
    attempts: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        raise httpx.ConnectError("connection refused", request=request)

    backend = _backend(handler, max_retries=2)

    with pytest.raises(TransientBackendError):
        await backend.record_open("friend-1", 1)

    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_fetch_opened_queries_user_rows() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"window_number": 1}, {"window_number": 4}])

    backend = _backend(handler)

    assert await backend.fetch_opened("friend-1") == [1, 4]
    params = seen[0].url.params
    assert params["select"] == "window_number"
    assert params["friend_id"] == "eq.friend-1"
    assert params["order"] == "window_number.asc"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [b"not json", b'{"window_number": 1}', b'[{"window_number": "1"}]', b"[3]"],
)
async def test_fetch_opened_rejects_malformed_payloads(body: bytes) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body)

    backend = _backend(handler)

    with pytest.raises(UnexpectedResponseError):
        await backend.fetch_opened("friend-1")


@pytest.mark.asyncio
async def test_fetch_opened_surfaces_client_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"code": "PGRST301", "message": "JWT expired"})

    backend = _backend(handler)

    with pytest.raises(BackendError) as excinfo:
        await backend.fetch_opened("friend-1")

    assert excinfo.value.message == "JWT expired"
    assert not isinstance(excinfo.value, TransientBackendError)


@pytest.mark.asyncio
async def test_default_client_sends_auth_headers() -> None:
    settings = SupabaseSettings.from_sync_settings(
        SyncSettings(supabase_url="https://demo.supabase.co/", api_key="anon-key", request_timeout=3.0),
        access_token="user-jwt",
    )
    backend = SupabaseProgressBackend(settings)

    client = backend._client
    assert str(client.base_url) == "https://demo.supabase.co/rest/v1/"
    assert client.headers["apikey"] == "anon-key"
    assert client.headers["Authorization"] == "Bearer user-jwt"
    assert client.timeout.read == 3.0
    await backend.aclose()
    assert client.is_closed
