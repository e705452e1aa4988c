"""Tests for the call-event pipeline."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from callbridge.dialpad_client import CallLogError
from callbridge.ledger import InMemoryLedger
from callbridge.mock_directory import InMemoryDirectory
from callbridge.models import CallDirection, CallOutcome, Contact, DedupKeyPolicy, FailureReason
from callbridge.processor import (
    ALREADY_PROCESSED,
    IN_PROGRESS,
    EventProcessor,
    build_call_description,
    map_call_outcome,
)

WRITE_TOKEN = "bp-secret-key"


class TestOutcomeMapping:
    @pytest.mark.parametrize(
        "status,outcome",
        [
            ("answered", CallOutcome.CONNECTED),
            ("CONNECTED", CallOutcome.CONNECTED),
            ("recording", CallOutcome.CONNECTED),
            ("Ringing", CallOutcome.CONNECTED),
            ("no_answer", CallOutcome.LEFT_VOICEMAIL),
            ("no-answer", CallOutcome.LEFT_VOICEMAIL),
            ("busy", CallOutcome.BUSY),
            ("voicemail", CallOutcome.LEFT_VOICEMAIL),
            ("FAILED", CallOutcome.WRONG_NUMBER),
            ("hangup", CallOutcome.CONNECTED),
            ("", CallOutcome.CONNECTED),
            (None, CallOutcome.CONNECTED),
        ],
    )
    def test_mapping(self, status, outcome):
        assert map_call_outcome(status) is outcome


class TestDescription:
    def test_inbound_with_recording(self, event_factory):
        url = "https://dialpad.com/r/abc123?token=" + "x" * 300
        text = build_call_description(event_factory(recording_url=url), "+13135551234")
        assert text.startswith("Inbound call from +13135551234")
        assert "on line" in text
        assert text.endswith(f"[Listen to Recording]({url})")

    def test_outbound_without_recording(self, event_factory):
        event = event_factory(
            direction=CallDirection.OUTBOUND,
            from_number="+14155550100",
            to_number="3135551234",
        )
        text = build_call_description(event, "+13135551234")
        assert text.startswith("Outbound call to +13135551234")
        assert "Recording" not in text

    def test_unparseable_business_line_is_omitted(self, event_factory):
        text = build_call_description(event_factory(to_number="ext 12"), "+13135551234")
        assert text == "Inbound call from +13135551234"


@pytest.mark.asyncio
async def test_end_to_end_inbound_answered(processor, directory, event_factory):
    result = await processor.process_call_event(event_factory())

    assert result.success is True
    assert result.error is None
    assert len(directory.activities) == 1
    activity = directory.activities[0]
    assert activity.opportunity_id == 42
    assert activity.outcome is CallOutcome.CONNECTED
    assert "+13135551234" in activity.description
    assert activity.auth_token == WRITE_TOKEN


@pytest.mark.asyncio
async def test_contact_not_found(event_factory):
    directory = InMemoryDirectory()
    processor = EventProcessor(directory, auth_token=WRITE_TOKEN)

    result = await processor.process_call_event(event_factory())

    assert result.success is False
    assert result.reason is FailureReason.CONTACT_NOT_FOUND
    assert "CONTACT_NOT_FOUND" in result.error
    assert directory.activities == []
    assert len(processor.ledger) == 0


@pytest.mark.asyncio
async def test_duplicate_delivery_writes_once(processor, directory, event_factory):
    first = await processor.process_call_event(event_factory())
    second = await processor.process_call_event(event_factory())

    assert first.success is True
    assert second.success is True
    assert second.message == ALREADY_PROCESSED
    assert len(directory.activities) == 1


@pytest.mark.asyncio
async def test_composite_key_allows_reused_call_id(processor, directory, event_factory):
    first = event_factory()
    later = event_factory(start_time=first.start_time + timedelta(days=3))

    await processor.process_call_event(first)
    await processor.process_call_event(later)

    assert len(directory.activities) == 2


@pytest.mark.asyncio
async def test_call_id_policy_suppresses_reused_call_id(directory, event_factory):
    processor = EventProcessor(directory, auth_token=WRITE_TOKEN, key_policy=DedupKeyPolicy.CALL_ID)
    first = event_factory()
    later = event_factory(start_time=first.start_time + timedelta(days=3))

    await processor.process_call_event(first)
    result = await processor.process_call_event(later)

    assert result.message == ALREADY_PROCESSED
    assert len(directory.activities) == 1


@pytest.mark.asyncio
async def test_call_id_policy_gate_precedes_phone_checks(directory, event_factory):
    processor = EventProcessor(directory, auth_token=WRITE_TOKEN, key_policy=DedupKeyPolicy.CALL_ID)
    await processor.process_call_event(event_factory())

    damaged = await processor.process_call_event(event_factory(from_number="555-12"))
    missing = await processor.process_call_event(event_factory(from_number=""))

    assert damaged.success is True
    assert damaged.message == ALREADY_PROCESSED
    assert missing.message == ALREADY_PROCESSED
    assert len(directory.lookups) == 1


@pytest.mark.asyncio
async def test_composite_key_ignores_timestamp_form(processor, directory, event_factory):
    aware = event_factory(start_time=datetime(2024, 5, 1, 17, 0, tzinfo=timezone(timedelta(hours=2))))
    naive = event_factory(start_time=datetime(2024, 5, 1, 15, 0))

    first = await processor.process_call_event(aware)
    second = await processor.process_call_event(naive)

    assert first.message is None
    assert second.message == ALREADY_PROCESSED
    assert len(directory.activities) == 1


@pytest.mark.asyncio
async def test_extraction_failure_not_marked(processor, directory, event_factory):
    result = await processor.process_call_event(event_factory(from_number=""))
    assert result.reason is FailureReason.CUSTOMER_PHONE_EXTRACTION_FAILED
    assert directory.lookups == []

    retry = await processor.process_call_event(event_factory())
    assert retry.success is True
    assert retry.message is None


@pytest.mark.asyncio
async def test_invalid_phone_format(processor, directory, event_factory):
    result = await processor.process_call_event(event_factory(from_number="555-1234"))
    assert result.success is False
    assert result.reason is FailureReason.INVALID_PHONE_FORMAT
    assert "555-1234" in result.error
    assert directory.lookups == []


@pytest.mark.asyncio
async def test_lookup_failure_propagates_message(processor, directory, event_factory):
    directory.fail_lookups_with = "HTTP 503: Service Unavailable"
    result = await processor.process_call_event(event_factory())

    assert result.reason is FailureReason.DIRECTORY_LOOKUP_FAILED
    assert "HTTP 503" in result.error
    assert len(processor.ledger) == 0


@pytest.mark.asyncio
async def test_write_failure_allows_retry(processor, directory, event_factory):
    directory.fail_writes_with = "Invalid secretKey"
    failed = await processor.process_call_event(event_factory())
    assert failed.reason is FailureReason.ACTIVITY_WRITE_FAILED
    assert "Invalid secretKey" in failed.error

    directory.fail_writes_with = None
    retried = await processor.process_call_event(event_factory())
    assert retried.success is True
    assert retried.message is None
    assert len(directory.activities) == 1


@pytest.mark.asyncio
async def test_missing_opportunity_id(event_factory):
    directory = InMemoryDirectory([Contact(id="7", phone="3135551234")])
    processor = EventProcessor(directory, auth_token=WRITE_TOKEN)

    result = await processor.process_call_event(event_factory())

    assert result.reason is FailureReason.CONTACT_MISSING_OPPORTUNITY_ID
    assert directory.activities == []


@pytest.mark.asyncio
async def test_multiple_matches_pick_first_in_order(event_factory):
    contacts = [
        Contact(id="a", opportunity_id=101, phone="+13135551234"),
        Contact(id="b", opportunity_id=102, phone="3135551234"),
        Contact(id="c", opportunity_id=103, phone="1-313-555-1234"),
    ]
    for _ in range(3):
        directory = InMemoryDirectory(contacts)
        processor = EventProcessor(directory, auth_token=WRITE_TOKEN)
        result = await processor.process_call_event(event_factory())
        assert result.success is True
        assert directory.activities[0].opportunity_id == 101


@pytest.mark.asyncio
async def test_outbound_looks_up_to_number(directory, event_factory):
    processor = EventProcessor(directory, auth_token=WRITE_TOKEN)
    event = event_factory(
        direction=CallDirection.OUTBOUND,
        from_number="+14155550100",
        to_number="1 313 555 1234",
        status="busy",
    )

    result = await processor.process_call_event(event)

    assert result.success is True
    assert directory.lookups == [("+13135551234", "3135551234")]
    assert directory.activities[0].outcome is CallOutcome.BUSY
    assert directory.activities[0].description.startswith("Outbound call to +13135551234")


class _ExplodingDirectory:
    async def find_by_phone(self, e164, last10):
        raise RuntimeError("boom")

    async def create_activity(self, record):
        raise AssertionError("not reached")


@pytest.mark.asyncio
async def test_unexpected_errors_are_contained(event_factory):
    processor = EventProcessor(_ExplodingDirectory(), auth_token=WRITE_TOKEN)
    result = await processor.process_call_event(event_factory())
    assert result.success is False
    assert result.reason is FailureReason.UNEXPECTED_ERROR
    assert "boom" in result.error


class _SlowDirectory(InMemoryDirectory):
    async def create_activity(self, record):
        await asyncio.sleep(0.01)
        await super().create_activity(record)


@pytest.mark.asyncio
async def test_concurrent_duplicates_write_once(event_factory):
    directory = _SlowDirectory([Contact(id="42", opportunity_id=42, phone="3135551234")])
    processor = EventProcessor(directory, auth_token=WRITE_TOKEN)

    first, second = await asyncio.gather(
        processor.process_call_event(event_factory()),
        processor.process_call_event(event_factory()),
    )

    assert first.success and second.success
    assert {first.message, second.message} == {None, IN_PROGRESS}
    assert len(directory.activities) == 1


@pytest.mark.asyncio
async def test_batch_continues_after_failure(processor, directory, event_factory):
    events = [
        (event_factory(call_id="1", from_number="bad"), "call.ended"),
        (event_factory(call_id="2"), "call.ended"),
        event_factory(call_id="3", from_number="3135550000"),
    ]

    results = await processor.process_batch(events)

    assert [r.call_id for r in results] == ["1", "2", "3"]
    assert [r.success for r in results] == [False, True, False]
    assert results[0].reason is FailureReason.INVALID_PHONE_FORMAT
    assert results[1].event_type == "call.ended"
    assert results[2].event_type is None
    assert results[2].reason is FailureReason.CONTACT_NOT_FOUND
    assert len(directory.activities) == 1


@pytest.mark.asyncio
async def test_clear_ledger_allows_reprocessing(processor, directory, event_factory):
    await processor.process_call_event(event_factory())
    assert processor.clear_ledger() == 1

    await processor.process_call_event(event_factory())
    assert len(directory.activities) == 2


class _StaticCallLogs:
    def __init__(self, calls):
        self.calls = calls

    async def get_call(self, call_id):
        if call_id not in self.calls:
            raise CallLogError("Failed to fetch call log: HTTP 404")
        return self.calls[call_id]


@pytest.mark.asyncio
async def test_call_reference_fetches_and_processes(directory):
    source = _StaticCallLogs({
        "777": {
            "call_id": 777,
            "direction": "inbound",
            "external_number": "+13135551234",
            "internal_number": "+14155550100",
            "date_started": 1714575600000,
            "state": "recording",
        }
    })
    processor = EventProcessor(directory, auth_token=WRITE_TOKEN, call_log_source=source)

    result = await processor.process_call_reference("777")

    assert result.success is True
    assert directory.activities[0].outcome is CallOutcome.CONNECTED


@pytest.mark.asyncio
async def test_call_reference_failures(directory):
    processor = EventProcessor(directory, auth_token=WRITE_TOKEN)
    no_source = await processor.process_call_reference("777")
    assert no_source.reason is FailureReason.CALL_LOG_FETCH_FAILED

    processor.call_log_source = _StaticCallLogs({})
    missing = await processor.process_call_reference("777")
    assert missing.reason is FailureReason.CALL_LOG_FETCH_FAILED
    assert "404" in missing.error

    no_id = await processor.process_call_reference(None)
    assert no_id.reason is FailureReason.CALL_LOG_FETCH_FAILED


@pytest.mark.asyncio
async def test_shared_ledger_across_processors(directory, event_factory):
    ledger = InMemoryLedger()
    one = EventProcessor(directory, ledger=ledger, auth_token=WRITE_TOKEN)
    two = EventProcessor(directory, ledger=ledger, auth_token=WRITE_TOKEN)

    await one.process_call_event(event_factory())
    result = await two.process_call_event(event_factory())

    assert result.message == ALREADY_PROCESSED
    assert len(directory.activities) == 1
