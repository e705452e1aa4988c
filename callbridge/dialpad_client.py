"""
Dialpad API client and provider-payload conversion.

Dialpad reports calls in two shapes: the call object (``external_number`` /
``internal_number``, epoch-millisecond dates, ``state``) used by the calls
API and by JWT-delivered webhooks, and the older call-log shape
(``from_number`` / ``to_number``, ISO dates, ``status``) found inside
``events`` arrays. Both are converted into ``CallEvent`` here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import httpx
import structlog
from pydantic import ValidationError

from callbridge.config import Settings
from callbridge.models import CallDirection, CallEvent

log = structlog.get_logger(__name__)


class CallLogError(Exception):
    """The call log could not be fetched or understood."""


class CallLogSource(Protocol):
    async def get_call(self, call_id: str) -> dict[str, Any]:
        ...


# ── Conversion ──────────────────────────────────────────────────


def _epoch_ms_to_datetime(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(float(value)) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise CallLogError(f"Invalid timestamp: {value!r}") from e


def _first_url(value: Any) -> Optional[str]:
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    return str(value) if value else None


def call_event_from_dialpad(data: dict[str, Any]) -> CallEvent:
    """Convert a Dialpad call object into a CallEvent."""
    call_id = data.get("call_id") or data.get("id")
    if not call_id:
        raise CallLogError("Call object has no call_id")

    direction = str(data.get("direction") or "").lower()
    external = str(data.get("external_number") or "")
    internal = str(data.get("internal_number") or "")
    if direction == CallDirection.INBOUND.value:
        from_number, to_number = external, internal
    elif direction == CallDirection.OUTBOUND.value:
        from_number, to_number = internal, external
    else:
        raise CallLogError(f"Unknown call direction: {data.get('direction')!r}")

    start_time = _epoch_ms_to_datetime(data.get("date_started"))
    if start_time is None:
        raise CallLogError(f"Call {call_id} has no date_started")

    state = str(data.get("state") or "")
    status = "answered" if state.lower() == "recording" else state

    target = data.get("target")
    return CallEvent(
        call_id=str(call_id),
        direction=CallDirection(direction),
        from_number=from_number,
        to_number=to_number,
        start_time=start_time,
        end_time=_epoch_ms_to_datetime(data.get("date_ended")) or datetime.now(timezone.utc),
        status=status,
        recording_url=_first_url(data.get("recording_url")) or _first_url(data.get("admin_recording_urls")),
        target=target if isinstance(target, dict) else None,
    )


def call_event_from_call_log(data: dict[str, Any]) -> CallEvent:
    """Convert a call-log event ``data`` block into a CallEvent."""
    if not isinstance(data, dict):
        raise CallLogError("Call log event data is not an object")

    fields = dict(data)
    call_id = fields.get("call_id") or fields.get("id")
    fields["call_id"] = str(call_id) if call_id else None
    for key in ("from_number", "to_number"):
        fields[key] = str(fields[key]) if fields.get(key) else ""
    if isinstance(fields.get("direction"), str):
        fields["direction"] = fields["direction"].lower()
    if not fields.get("recording_url") and fields.get("voicemail_url"):
        fields["recording_url"] = fields["voicemail_url"]

    try:
        return CallEvent.model_validate(fields)
    except ValidationError as e:
        raise CallLogError(f"Invalid call log: {e.error_count()} validation error(s)") from e


# ── API client ──────────────────────────────────────────────────


class DialpadClient:
    """Async client for the Dialpad calls API."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.base_url = settings.dialpad_base_url.rstrip("/")
        self.headers = {
            "Authorization": f"Bearer {settings.dialpad_api_key}",
            "Content-Type": "application/json",
        }
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    async def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.settings.http_timeout_seconds,
                transport=self._transport,
            )
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()

    async def get_call(self, call_id: str) -> dict[str, Any]:
        """Fetch a call object by id."""
        if not self.settings.dialpad_api_key:
            raise CallLogError("No Dialpad API key configured")

        client = await self._client()
        try:
            resp = await client.get(f"/calls/{call_id}")
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            log.error("dialpad_call_fetch_failed", call_id=call_id, status=e.response.status_code)
            raise CallLogError(
                f"Failed to fetch call log: HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            log.error("dialpad_call_fetch_error", call_id=call_id, error=str(e))
            raise CallLogError(f"Failed to fetch call log: {e}") from e

        if not isinstance(data, dict):
            raise CallLogError("Dialpad returned a non-object call log")
        log.info("dialpad_call_fetched", call_id=call_id, state=data.get("state"))
        return data
