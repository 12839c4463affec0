"""PostgREST (Supabase) adapter for the ``friend_window_opens`` table."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import BackendError, TransientBackendError, UnexpectedResponseError
from .classify import is_duplicate_conflict, is_transient_status
from .types import RecordOutcome

if TYPE_CHECKING:  # pragma: no cover
    from ..services.settings import SyncSettings

__all__ = ["SupabaseSettings", "SupabaseProgressBackend"]

LOGGER = logging.getLogger(__name__)
_TABLE = "friend_window_opens"


@dataclass(slots=True)
class SupabaseSettings:
    """Subset of settings required to talk to the Supabase REST endpoint."""

    url: str
    api_key: str
    access_token: str | None = None
    request_timeout: float = 10.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 4.0

    @classmethod
    def from_sync_settings(cls, settings: SyncSettings, *, access_token: str | None = None) -> SupabaseSettings:
        return cls(
            url=settings.supabase_url,
            api_key=settings.api_key,
            access_token=access_token,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
        )


class SupabaseProgressBackend:
    """Async client recording and listing opened windows via PostgREST."""

    def __init__(self, settings: SupabaseSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> SupabaseSettings:
        return self._settings

    async def record_open(self, user_id: str, window_number: int) -> RecordOutcome:
        payload = {"friend_id": user_id, "window_number": window_number}
        async for attempt in self._retrying():
            with attempt:
                return await self._insert(payload)
        raise AssertionError("unreachable")  # pragma: no cover

    async def fetch_opened(self, user_id: str) -> List[int]:
        params = {
            "select": "window_number",
            "friend_id": f"eq.{user_id}",
            "order": "window_number.asc",
        }
        async for attempt in self._retrying():
            with attempt:
                response = await self._send("GET", f"/{_TABLE}", params=params)
                break
        if not response.is_success:
            raise self._error_from_response(response)
        return _parse_window_rows(response)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _insert(self, payload: dict[str, Any]) -> RecordOutcome:
        response = await self._send(
            "POST",
            f"/{_TABLE}",
            json=payload,
            headers={"Prefer": "return=minimal"},
        )
        if response.is_success:
            LOGGER.debug("Recorded window %s for %s", payload["window_number"], payload["friend_id"])
            return RecordOutcome.CONFIRMED
        error = self._error_from_response(response)
        if is_duplicate_conflict(error, match_messages=False):
            LOGGER.debug(
                "Window %s already recorded for %s (%s)",
                payload["window_number"],
                payload["friend_id"],
                error.code or error.status,
            )
            return RecordOutcome.DUPLICATE
        raise error

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise TransientBackendError(f"{method} {path} failed: {exc}") from exc
        if is_transient_status(response.status_code):
            raise self._error_from_response(response)
        return response

    def _error_from_response(self, response: httpx.Response) -> BackendError:
        code: str | None = None
        message = response.reason_phrase or f"HTTP {response.status_code}"
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None
        if isinstance(body, dict):
            raw_code = body.get("code")
            code = str(raw_code) if raw_code is not None else None
            message = str(body.get("message") or body.get("details") or message)
        elif response.text:
            message = response.text
        error_type = TransientBackendError if is_transient_status(response.status_code) else BackendError
        return error_type(message, code=code, status=response.status_code)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(TransientBackendError),
        )

    def _build_client(self, settings: SupabaseSettings) -> httpx.AsyncClient:
        token = settings.access_token or settings.api_key
        return httpx.AsyncClient(
            base_url=f"{settings.url.rstrip('/')}/rest/v1",
            headers={
                "apikey": settings.api_key,
                "Authorization": f"Bearer {token}",
            },
            timeout=settings.request_timeout,
        )


def _parse_window_rows(response: httpx.Response) -> List[int]:
    try:
        rows = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise UnexpectedResponseError(
            f"Progress response is not JSON: {exc}", status=response.status_code
        ) from exc
    if not isinstance(rows, list):
        raise UnexpectedResponseError("Progress response is not an array", status=response.status_code)
    windows: List[int] = []
    for row in rows:
        value = row.get("window_number") if isinstance(row, dict) else None
        if isinstance(value, bool) or not isinstance(value, int):
            raise UnexpectedResponseError(
                f"Progress row without an integer window_number: {row!r}", status=response.status_code
            )
        windows.append(value)
    return windows
