"""Shared fixtures: an in-memory directory and a processor wired to it."""

from datetime import datetime, timezone

import pytest

from callbridge.mock_directory import InMemoryDirectory
from callbridge.models import CallDirection, CallEvent, Contact
from callbridge.processor import EventProcessor

WRITE_TOKEN = "bp-secret-key"


def make_event(**overrides) -> CallEvent:
    fields = {
        "call_id": "5551001",
        "direction": CallDirection.INBOUND,
        "from_number": "(313) 555-1234",
        "to_number": "+14155550100",
        "start_time": datetime(2024, 5, 1, 15, 0, tzinfo=timezone.utc),
        "end_time": datetime(2024, 5, 1, 15, 4, tzinfo=timezone.utc),
        "status": "answered",
    }
    fields.update(overrides)
    return CallEvent(**fields)


@pytest.fixture
def directory():
    return InMemoryDirectory(
        [Contact(id="42", opportunity_id=42, first_name="Ada", phone="+13135551234")]
    )


@pytest.fixture
def processor(directory):
    return EventProcessor(directory, auth_token=WRITE_TOKEN)


@pytest.fixture
def event_factory():
    return make_event
