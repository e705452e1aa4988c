"""
Contact directory capability shared by the live CRM client and the
in-memory double.
"""

from __future__ import annotations

from typing import Protocol

from callbridge.models import ActivityRecord, Contact


class DirectoryError(Exception):
    """Transport, auth or API failure while talking to the directory."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ContactDirectory(Protocol):
    """
    Phone lookup and activity write against a CRM.

    ``find_by_phone`` returns candidates in the directory's own order (empty
    when nothing matches) and raises ``DirectoryError`` on failure.
    ``create_activity`` raises ``DirectoryError`` when the write is rejected.
    """

    async def find_by_phone(self, e164: str, last10: str) -> list[Contact]:
        ...

    async def create_activity(self, record: ActivityRecord) -> None:
        ...
