"""
Call-event pipeline: turns one terminal call event into one CRM activity.

Steps: extract customer number → normalise → idempotency gate → directory
lookup → disambiguate → map outcome → describe → write → commit key.
Every failure becomes a ``ProcessResult``; nothing is raised to the caller
and no step is retried here (re-delivery is the provider's job).
"""

from __future__ import annotations

from datetime import timezone
from typing import Iterable, Optional, Union

import structlog

from callbridge.dialpad_client import CallLogError, CallLogSource, call_event_from_dialpad
from callbridge.directory import ContactDirectory, DirectoryError
from callbridge.ledger import DedupLedger, InMemoryLedger
from callbridge.models import (
    ActivityRecord,
    CallDirection,
    CallEvent,
    CallOutcome,
    Contact,
    DedupKeyPolicy,
    EventResult,
    FailureReason,
    NormalizedPhone,
    ProcessResult,
)
from callbridge.phone_utils import extract_customer_number, format_for_display, normalize_phone

log = structlog.get_logger(__name__)

ALREADY_PROCESSED = "Call already processed"
IN_PROGRESS = "Call already in progress"

_STATUS_OUTCOMES: dict[str, CallOutcome] = {
    "answered": CallOutcome.CONNECTED,
    "connected": CallOutcome.CONNECTED,
    "recording": CallOutcome.CONNECTED,
    "ringing": CallOutcome.CONNECTED,
    "no_answer": CallOutcome.LEFT_VOICEMAIL,
    "no-answer": CallOutcome.LEFT_VOICEMAIL,
    "busy": CallOutcome.BUSY,
    "voicemail": CallOutcome.LEFT_VOICEMAIL,
    "failed": CallOutcome.WRONG_NUMBER,
}


def map_call_outcome(status: Optional[str]) -> CallOutcome:
    """Map a provider status onto the CRM outcome; unknown statuses are CONNECTED."""
    return _STATUS_OUTCOMES.get((status or "").strip().lower(), CallOutcome.CONNECTED)


def build_call_description(event: CallEvent, customer_e164: str) -> str:
    """
    Human-readable activity text.

    Always names the direction and the customer's E.164 number; adds the
    business line when it normalises and the full recording URL when present.
    """
    if event.direction is CallDirection.INBOUND:
        description = f"Inbound call from {customer_e164}"
    else:
        description = f"Outbound call to {customer_e164}"

    line = normalize_phone(event.business_number)
    if line is not None:
        description += f" on line {format_for_display(line.e164)}"

    if event.recording_url:
        description += f" - [Listen to Recording]({event.recording_url})"

    return description


def build_dedup_key(event: CallEvent, phone: NormalizedPhone, policy: DedupKeyPolicy) -> str:
    if policy is DedupKeyPolicy.CALL_ID:
        return event.call_id
    started = event.start_time
    # Naive timestamps are UTC; both forms of one instant must share a key
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    return f"{event.call_id}-{phone.e164}-{started.astimezone(timezone.utc).isoformat()}"


BatchItem = Union[CallEvent, tuple[CallEvent, Optional[str]]]


class EventProcessor:
    """
    Drives a call event through the pipeline against one contact directory.

    Usage:
        processor = EventProcessor(directory, auth_token=settings.crm_write_token)
        result = await processor.process_call_event(event)
    """

    def __init__(
        self,
        directory: ContactDirectory,
        ledger: DedupLedger | None = None,
        auth_token: str = "",
        key_policy: DedupKeyPolicy = DedupKeyPolicy.COMPOSITE,
        call_log_source: CallLogSource | None = None,
    ):
        self.directory = directory
        self.ledger: DedupLedger = ledger if ledger is not None else InMemoryLedger()
        self.key_policy = key_policy
        self.call_log_source = call_log_source
        self._auth_token = auth_token
        self._in_flight: set[str] = set()

    async def process_call_event(self, event: CallEvent) -> ProcessResult:
        """Run one call event through the pipeline."""
        try:
            return await self._process(event)
        except Exception as e:
            log.exception("call_event_unexpected_error", call_id=event.call_id)
            return ProcessResult.fail(FailureReason.UNEXPECTED_ERROR, str(e))

    async def _process(self, event: CallEvent) -> ProcessResult:
        log.info(
            "call_event_received",
            call_id=event.call_id,
            direction=event.direction.value,
            status=event.status,
        )

        # A bare call-id key needs no phone, so the gate runs before extraction
        if self.key_policy is DedupKeyPolicy.CALL_ID and self.ledger.contains(event.call_id):
            log.info("call_already_processed", call_id=event.call_id, key=event.call_id)
            return ProcessResult.ok(ALREADY_PROCESSED)

        # ── Extract + normalise ─────────────────────────────────
        raw_customer = extract_customer_number(event)
        if not raw_customer:
            log.warning("customer_phone_missing", call_id=event.call_id)
            return ProcessResult.fail(
                FailureReason.CUSTOMER_PHONE_EXTRACTION_FAILED,
                "Could not extract customer phone number",
            )

        phone = normalize_phone(raw_customer)
        if phone is None:
            log.warning("customer_phone_invalid", call_id=event.call_id, raw=raw_customer)
            return ProcessResult.fail(
                FailureReason.INVALID_PHONE_FORMAT,
                f"Invalid phone number format: {raw_customer}",
            )

        # ── Idempotency gate ────────────────────────────────────
        key = build_dedup_key(event, phone, self.key_policy)
        if self.ledger.contains(key):
            log.info("call_already_processed", call_id=event.call_id, key=key)
            return ProcessResult.ok(ALREADY_PROCESSED)
        if key in self._in_flight:
            log.info("call_already_in_progress", call_id=event.call_id, key=key)
            return ProcessResult.ok(IN_PROGRESS)

        self._in_flight.add(key)
        try:
            result = await self._write_activity(event, phone)
            if result.success and not self.ledger.insert(key):
                log.warning("dedup_key_committed_concurrently", call_id=event.call_id, key=key)
            return result
        finally:
            self._in_flight.discard(key)

    async def _write_activity(self, event: CallEvent, phone: NormalizedPhone) -> ProcessResult:
        # ── Lookup ──────────────────────────────────────────────
        try:
            candidates = await self.directory.find_by_phone(phone.e164, phone.last10)
        except DirectoryError as e:
            log.error("directory_lookup_failed", call_id=event.call_id, e164=phone.e164, error=str(e))
            return ProcessResult.fail(FailureReason.DIRECTORY_LOOKUP_FAILED, str(e))

        # ── Disambiguate ────────────────────────────────────────
        contact = self._select_contact(candidates, phone)
        if contact is None:
            log.info("contact_not_found", call_id=event.call_id, e164=phone.e164)
            return ProcessResult.fail(
                FailureReason.CONTACT_NOT_FOUND,
                f"No client found for phone number: {phone.e164}",
            )

        if contact.opportunity_id is None:
            log.warning("contact_missing_opportunity_id", call_id=event.call_id, contact_id=contact.id)
            return ProcessResult.fail(
                FailureReason.CONTACT_MISSING_OPPORTUNITY_ID,
                f"Client {contact.id or '(unknown)'} has no opportunity ID",
            )

        # ── Write ───────────────────────────────────────────────
        record = ActivityRecord(
            opportunity_id=contact.opportunity_id,
            outcome=map_call_outcome(event.status),
            description=build_call_description(event, phone.e164),
            auth_token=self._auth_token,
        )
        try:
            await self.directory.create_activity(record)
        except DirectoryError as e:
            log.error(
                "activity_write_failed",
                call_id=event.call_id,
                opportunity_id=record.opportunity_id,
                error=str(e),
            )
            return ProcessResult.fail(FailureReason.ACTIVITY_WRITE_FAILED, str(e))

        log.info(
            "call_event_processed",
            call_id=event.call_id,
            opportunity_id=record.opportunity_id,
            outcome=record.outcome.value,
        )
        return ProcessResult.ok()

    @staticmethod
    def _select_contact(candidates: list[Contact], phone: NormalizedPhone) -> Optional[Contact]:
        if not candidates:
            return None
        if len(candidates) > 1:
            log.warning(
                "multiple_contacts_matched",
                e164=phone.e164,
                count=len(candidates),
                contact_ids=[c.id for c in candidates],
            )
        return candidates[0]

    # ── Entry points for the ingress layer ──────────────────────

    async def process_call_reference(self, call_id: Optional[str]) -> ProcessResult:
        """Fetch the call log for a bare call id, then process it."""
        if not call_id:
            return ProcessResult.fail(FailureReason.CALL_LOG_FETCH_FAILED, "No call ID found in event")
        if self.call_log_source is None:
            return ProcessResult.fail(FailureReason.CALL_LOG_FETCH_FAILED, "No call log source configured")

        try:
            call_log = await self.call_log_source.get_call(str(call_id))
            event = call_event_from_dialpad(call_log)
        except CallLogError as e:
            log.error("call_log_fetch_failed", call_id=call_id, error=str(e))
            return ProcessResult.fail(FailureReason.CALL_LOG_FETCH_FAILED, str(e))

        return await self.process_call_event(event)

    async def process_batch(self, items: Iterable[BatchItem]) -> list[EventResult]:
        """
        Process events one after another, returning one result per input.

        Items are ``CallEvent`` objects or ``(CallEvent, event_type)`` pairs;
        a failed event never stops the ones after it.
        """
        results: list[EventResult] = []
        for item in items:
            if isinstance(item, tuple):
                event, event_type = item
            else:
                event, event_type = item, None
            result = await self.process_call_event(event)
            results.append(
                EventResult(**result.model_dump(), call_id=event.call_id, event_type=event_type)
            )

        log.info(
            "batch_processed",
            events=len(results),
            failed=sum(1 for r in results if not r.success),
        )
        return results

    def clear_ledger(self) -> int:
        """Administrative reset of the dedup ledger; returns the number of keys dropped."""
        dropped = len(self.ledger)
        self.ledger.clear()
        log.info("dedup_ledger_cleared", dropped=dropped)
        return dropped
