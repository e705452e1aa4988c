"""
Shared data models used across the application.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


# ── Enumerations ────────────────────────────────────────────────
class CallDirection(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CallOutcome(str, enum.Enum):
    NO_ANSWER = "NO_ANSWER"
    BUSY = "BUSY"
    WRONG_NUMBER = "WRONG_NUMBER"
    LEFT_LIVE_MESSAGE = "LEFT_LIVE_MESSAGE"
    LEFT_VOICEMAIL = "LEFT_VOICEMAIL"
    CONNECTED = "CONNECTED"


class ActivityType(str, enum.Enum):
    CALL = "CALL"
    EMAIL = "EMAIL"
    SMS = "SMS"
    NOTE = "NOTE"


class FailureReason(str, enum.Enum):
    CUSTOMER_PHONE_EXTRACTION_FAILED = "CUSTOMER_PHONE_EXTRACTION_FAILED"
    INVALID_PHONE_FORMAT = "INVALID_PHONE_FORMAT"
    DIRECTORY_LOOKUP_FAILED = "DIRECTORY_LOOKUP_FAILED"
    CONTACT_NOT_FOUND = "CONTACT_NOT_FOUND"
    CONTACT_MISSING_OPPORTUNITY_ID = "CONTACT_MISSING_OPPORTUNITY_ID"
    ACTIVITY_WRITE_FAILED = "ACTIVITY_WRITE_FAILED"
    CALL_LOG_FETCH_FAILED = "CALL_LOG_FETCH_FAILED"
    INVALID_EVENT_PAYLOAD = "INVALID_EVENT_PAYLOAD"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class DedupKeyPolicy(str, enum.Enum):
    COMPOSITE = "composite"  # call_id + customer e164 + start_time
    CALL_ID = "call_id"


# ── Telephony side ──────────────────────────────────────────────
class CallEvent(BaseModel):
    """One reported call, already extracted from the provider payload."""

    call_id: str
    direction: CallDirection
    from_number: str = ""
    to_number: str = ""
    start_time: datetime
    end_time: Optional[datetime] = None
    status: str = ""
    recording_url: Optional[str] = None
    target: Optional[dict[str, Any]] = None

    @property
    def business_number(self) -> str:
        """The provider-side leg of the call (ours, not the customer's)."""
        if self.direction is CallDirection.INBOUND:
            return self.to_number
        return self.from_number


class NormalizedPhone(BaseModel):
    e164: str = Field(..., description="+1 followed by the 10-digit subscriber number")
    last10: str
    full_digits: str = Field(..., description="e164 without the leading +")

    model_config = {"frozen": True}


# ── CRM side ────────────────────────────────────────────────────
class Contact(BaseModel):
    id: str
    opportunity_id: Optional[int] = None
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    company: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    notes: str = ""
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class ActivityRecord(BaseModel):
    opportunity_id: int
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    activity_type: ActivityType = ActivityType.CALL
    outcome: CallOutcome
    description: str
    auth_token: str = Field(..., repr=False)

    def to_wire(self) -> dict[str, Any]:
        """Body expected by the BuilderPrime client-activities endpoint."""
        return {
            "opportunityId": self.opportunity_id,
            "activityDateTime": int(self.occurred_at.timestamp() * 1000),
            "activityType": self.activity_type.value,
            "callOutcome": self.outcome.value,
            "description": self.description,
            "secretKey": self.auth_token,
        }


# ── Pipeline results ────────────────────────────────────────────
class ProcessResult(BaseModel):
    success: bool
    error: Optional[str] = None
    reason: Optional[FailureReason] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, message: str | None = None) -> "ProcessResult":
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, reason: FailureReason, detail: str = "") -> "ProcessResult":
        error = f"{reason.value}: {detail}" if detail else reason.value
        return cls(success=False, error=error, reason=reason)


class EventResult(ProcessResult):
    """A ProcessResult annotated for correlation inside a batch response."""

    call_id: Optional[str] = None
    event_type: Optional[str] = None
