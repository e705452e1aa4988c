"""
BuilderPrime API client: phone lookup of clients and call-activity writes.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog

from callbridge.config import Settings
from callbridge.directory import DirectoryError
from callbridge.models import ActivityRecord, Contact

log = structlog.get_logger(__name__)

# BuilderPrime field name -> Contact field name
_FIELD_MAP = {
    "firstName": "first_name",
    "lastName": "last_name",
    "emailAddress": "email",
    "phoneNumber": "phone",
    "companyName": "company",
    "addressLine1": "address",
    "city": "city",
    "state": "state",
    "zip": "zip",
    "notes": "notes",
}


def contact_from_crm(data: dict[str, Any]) -> Contact:
    """Map a BuilderPrime client object onto a Contact.

    BuilderPrime exposes the opportunity key as the client's numeric ``id``.
    """
    raw_id = data.get("id")
    opportunity_id: Optional[int]
    try:
        opportunity_id = int(raw_id) if raw_id is not None else None
    except (TypeError, ValueError):
        opportunity_id = None

    fields: dict[str, Any] = {
        target: str(data[source])
        for source, target in _FIELD_MAP.items()
        if data.get(source) is not None
    }
    tags = data.get("tags")
    custom = data.get("customFields")

    return Contact(
        id="" if raw_id is None else str(raw_id),
        opportunity_id=opportunity_id,
        tags=[str(t) for t in tags] if isinstance(tags, list) else [],
        custom_fields=custom if isinstance(custom, dict) else {},
        **fields,
    )


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    return f"HTTP {resp.status_code}: {resp.reason_phrase}"


class BuilderPrimeClient:
    """Async client for the BuilderPrime CRM."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self.base_url = settings.builderprime_base_url.rstrip("/")
        self.activity_url = settings.builderprime_activity_url
        self.headers = {
            "x-api-key": settings.builderprime_api_key,
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

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        client = await self._client()
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            log.error("builderprime_transport_error", method=method, url=url, error=str(e))
            raise DirectoryError(f"BuilderPrime request failed: {e}") from e

        if resp.is_error:
            message = _error_message(resp)
            log.error(
                "builderprime_api_error",
                method=method,
                url=url,
                status=resp.status_code,
                error=message,
            )
            raise DirectoryError(message, status_code=resp.status_code)

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise DirectoryError(f"BuilderPrime returned invalid JSON: {e}") from e

    # ── Lookup ──────────────────────────────────────────────────

    async def _search(self, phone: str) -> list[Contact]:
        data = await self._request("GET", "/clients", params={"phone": phone})
        if isinstance(data, list):
            return [contact_from_crm(item) for item in data if isinstance(item, dict)]
        if isinstance(data, dict) and data:
            return [contact_from_crm(data)]
        return []

    async def find_by_phone(self, e164: str, last10: str) -> list[Contact]:
        """Search by E.164 first, then by bare last-10 digits."""
        matches = await self._search(e164)
        if not matches and last10:
            log.info("builderprime_lookup_fallback", e164=e164, last10=last10)
            matches = await self._search(last10)

        log.info("builderprime_lookup_complete", e164=e164, matches=len(matches))
        return matches

    # ── Activities ──────────────────────────────────────────────

    async def create_activity(self, record: ActivityRecord) -> None:
        """POST a call activity to the client-activities endpoint."""
        await self._request("POST", self.activity_url, json=record.to_wire())
        log.info(
            "builderprime_activity_created",
            opportunity_id=record.opportunity_id,
            outcome=record.outcome.value,
        )
