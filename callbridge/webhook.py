"""
FastAPI webhook receiver for Dialpad call events.
Authenticates the delivery, detects the payload shape and hands each call
to the EventProcessor. Per-event failures are reported in a 200 response;
only authentication and unparseable bodies fail the whole request.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Header, HTTPException, Request

from callbridge.config import Settings
from callbridge.dialpad_client import CallLogError, call_event_from_call_log, call_event_from_dialpad
from callbridge.directory import ContactDirectory
from callbridge.mock_directory import InMemoryDirectory
from callbridge.models import EventResult, FailureReason, ProcessResult
from callbridge.processor import EventProcessor
from callbridge.signatures import (
    InvalidTokenError,
    decode_compact_token_claims,
    verify_dialpad_signature,
    verify_signature_from_header,
)

log = structlog.get_logger(__name__)

# Events that already carry the full call log
TERMINAL_EVENT_TYPES = frozenset({
    "call_log.created",
    "call_log.updated",
    "call.completed",
    "call.ended",
    "call_log.ended",
})

# Events that only carry a call id; the call log is fetched from Dialpad
REFERENCE_EVENT_TYPES = frozenset({
    "call.connected",
    "call.ringing",
    "call.recording",
})


def _looks_like_compact_token(body: bytes) -> bool:
    stripped = body.strip()
    return bool(stripped) and not stripped.startswith((b"{", b"[")) and stripped.count(b".") == 2


def _annotate(result: ProcessResult, call_id: Any = None, event_type: Optional[str] = None) -> EventResult:
    return EventResult(
        **result.model_dump(),
        call_id=None if call_id is None else str(call_id),
        event_type=event_type,
    )


def _dump(result: ProcessResult) -> dict:
    return result.model_dump(mode="json", exclude_none=True)


def _authenticate_and_parse(body: bytes, content_type: str, signature: Optional[str], secret: str) -> Any:
    """Return the decoded payload or raise the HTTP error for this delivery."""
    if content_type.startswith("application/jwt") or _looks_like_compact_token(body):
        token = body.decode("utf-8", errors="replace").strip()
        if secret and not verify_dialpad_signature(body, token, secret):
            log.warning("webhook_token_signature_mismatch")
            raise HTTPException(status_code=401, detail="Invalid signature")
        try:
            return decode_compact_token_claims(token)
        except InvalidTokenError as e:
            log.warning("webhook_token_undecodable", error=str(e))
            raise HTTPException(status_code=400, detail="Invalid JWT token")

    if secret:
        if not signature:
            log.warning("webhook_signature_missing")
            raise HTTPException(status_code=401, detail="Missing signature")
        if not verify_dialpad_signature(body, signature, secret):
            log.warning("webhook_signature_mismatch")
            raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON")


async def _process_direct_call(processor: EventProcessor, payload: dict) -> dict:
    call_id = payload.get("call_id")
    log.info("direct_call_received", call_id=call_id, state=payload.get("state"))

    try:
        event = call_event_from_dialpad(payload)
    except CallLogError as e:
        result = ProcessResult.fail(FailureReason.INVALID_EVENT_PAYLOAD, str(e))
    else:
        result = await processor.process_call_event(event)

    return {
        "success": True,
        "processed_call": str(call_id),
        "call_state": payload.get("state"),
        "call_direction": payload.get("direction"),
        "result": _dump(result),
    }


async def _process_event(processor: EventProcessor, item: Any) -> EventResult:
    item = item if isinstance(item, dict) else {}
    event_type = str(item.get("event_type") or "")
    data = item.get("data") if isinstance(item.get("data"), dict) else {}
    call_id = data.get("call_id") or data.get("id")

    if event_type in TERMINAL_EVENT_TYPES:
        try:
            event = call_event_from_call_log(data)
        except CallLogError as e:
            log.warning("call_log_event_invalid", event_type=event_type, call_id=call_id, error=str(e))
            return _annotate(ProcessResult.fail(FailureReason.INVALID_EVENT_PAYLOAD, str(e)), call_id, event_type)
        return _annotate(await processor.process_call_event(event), event.call_id, event_type)

    if event_type in REFERENCE_EVENT_TYPES:
        return _annotate(await processor.process_call_reference(call_id), call_id, event_type)

    log.info("event_type_ignored", event_type=event_type)
    return _annotate(ProcessResult.ok("Event type not processed"), call_id, event_type)


async def _process_events(processor: EventProcessor, events: list) -> dict:
    # Strictly sequential: event N finishes before event N+1 starts
    results = [await _process_event(processor, item) for item in events]

    log.info(
        "events_batch_processed",
        events=len(results),
        failed=sum(1 for r in results if not r.success),
    )
    return {
        "success": True,
        "processed_events": len(results),
        "results": [_dump(r) for r in results],
    }


def create_webhook_app(
    settings: Settings,
    processor: EventProcessor,
    directory: ContactDirectory | None = None,
    lifespan=None,
) -> FastAPI:
    """Create and return the FastAPI app with webhook routes."""

    directory = directory if directory is not None else processor.directory
    mock = directory if isinstance(directory, InMemoryDirectory) else None

    app = FastAPI(
        title="Callbridge: Dialpad to BuilderPrime",
        version="0.1.0",
        lifespan=lifespan,
    )

    if not settings.dialpad_webhook_secret:
        log.warning("dialpad_webhook_secret_unset", detail="signature verification disabled")

    # ── Health check ────────────────────────────────────────────
    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "dialpad-webhook",
            "mode": "mock" if mock is not None else "production",
            "stats": mock.stats() if mock is not None else None,
            "processed_calls": len(processor.ledger),
        }

    # ── Mock directory management ───────────────────────────────
    @app.get("/mock/stats")
    async def mock_stats():
        if mock is None:
            raise HTTPException(status_code=400, detail="Mock mode not enabled")
        return mock.stats()

    @app.post("/mock/clear")
    async def mock_clear():
        if mock is None:
            raise HTTPException(status_code=400, detail="Mock mode not enabled")
        mock.clear()
        return {"success": True, "message": "Mock data cleared"}

    # ── Admin ───────────────────────────────────────────────────
    @app.post("/admin/dedup/clear")
    async def clear_dedup_ledger():
        dropped = processor.clear_ledger()
        return {"success": True, "cleared": dropped}

    # ── Dialpad webhook ─────────────────────────────────────────
    @app.post("/webhook/dialpad")
    async def dialpad_webhook(
        request: Request,
        x_dialpad_signature: Optional[str] = Header(None, alias="x-dialpad-signature"),
    ):
        body = await request.body()
        payload = _authenticate_and_parse(
            body,
            request.headers.get("content-type", ""),
            x_dialpad_signature,
            settings.dialpad_webhook_secret,
        )

        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload format")

        if payload.get("call_id") and payload.get("state"):
            return await _process_direct_call(processor, payload)

        events = payload.get("events")
        if isinstance(events, list):
            log.info("events_batch_received", events=len(events))
            return await _process_events(processor, events)

        log.error("webhook_payload_unrecognised", keys=sorted(payload.keys()))
        raise HTTPException(status_code=400, detail="Invalid payload format")

    # ── Generic webhook ─────────────────────────────────────────
    @app.post("/webhook/generic")
    async def generic_webhook(
        request: Request,
        x_signature: Optional[str] = Header(None, alias="x-signature"),
    ):
        body = await request.body()
        secret = settings.generic_webhook_secret

        if secret and not (x_signature and verify_signature_from_header(body, x_signature, secret)):
            log.warning("generic_webhook_signature_invalid")
            raise HTTPException(status_code=401, detail="Invalid signature")

        log.info("generic_webhook_received", size=len(body))
        return {
            "success": True,
            "message": "Generic webhook received",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app
