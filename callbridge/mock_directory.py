"""
In-memory contact directory for integration tests and keyless local runs.
"""

from __future__ import annotations

import re
from typing import Optional

import structlog

from callbridge.directory import DirectoryError
from callbridge.models import ActivityRecord, Contact

log = structlog.get_logger(__name__)

_NON_DIGITS = re.compile(r"\D")


def _digits(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")


class InMemoryDirectory:
    """
    Deterministic stand-in for the CRM.

    Contacts match when the digits of their stored phone equal either the
    E.164 digits or the bare last-10 digits of the query, mirroring the
    live client's primary and fallback searches. Candidates come back in
    insertion order.
    """

    def __init__(self, contacts: Optional[list[Contact]] = None):
        self._contacts: list[Contact] = []
        self._activities: list[ActivityRecord] = []
        self.lookups: list[tuple[str, str]] = []
        self.fail_lookups_with: Optional[str] = None
        self.fail_writes_with: Optional[str] = None
        for contact in contacts or []:
            self.add_contact(contact)

    # ── Directory capability ───────────────────────────────────

    async def find_by_phone(self, e164: str, last10: str) -> list[Contact]:
        self.lookups.append((e164, last10))
        if self.fail_lookups_with:
            raise DirectoryError(self.fail_lookups_with)

        wanted = {d for d in (_digits(e164), _digits(last10)) if d}
        matches = [c for c in self._contacts if _digits(c.phone) in wanted]
        log.info("mock_lookup", e164=e164, matches=len(matches))
        return matches

    async def create_activity(self, record: ActivityRecord) -> None:
        if self.fail_writes_with:
            raise DirectoryError(self.fail_writes_with)
        self._activities.append(record)
        log.info(
            "mock_activity_created",
            opportunity_id=record.opportunity_id,
            outcome=record.outcome.value,
        )

    # ── Test helpers ────────────────────────────────────────────

    def add_contact(self, contact: Contact) -> Contact:
        self._contacts.append(contact)
        return contact

    @property
    def contacts(self) -> list[Contact]:
        return list(self._contacts)

    @property
    def activities(self) -> list[ActivityRecord]:
        return list(self._activities)

    def stats(self) -> dict[str, int]:
        return {
            "contacts": len(self._contacts),
            "client_activities": len(self._activities),
            "lookups": len(self.lookups),
        }

    def clear(self) -> None:
        self._contacts.clear()
        self._activities.clear()
        self.lookups.clear()
        self.fail_lookups_with = None
        self.fail_writes_with = None
        log.info("mock_directory_cleared")
