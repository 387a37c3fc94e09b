"""Core Data Model for Mnemosync.

This module defines the records that flow between the analysis pipeline and
the memory store:

- ScheduledEvent: a dated reminder or appointment extracted from a conversation
- ConversationTurn / ConversationRecord: what was said, by whom, and when
- VisitorProfile: a person the patient has met, keyed by normalised name
- ExtractedFacts: the typed result of parsing one model (or heuristic) response

All datetimes are timezone-aware UTC. Persisted records are pydantic models so
they serialise to JSON without custom encoders.

Example:
    >>> from datetime import date
    >>> event = ScheduledEvent(
    ...     iso_date=date(2026, 2, 16).isoformat(),
    ...     label="Dentist on Feb 16",
    ...     kind=EventKind.APPOINTMENT,
    ... )
    >>> event.as_date()
    datetime.date(2026, 2, 16)
"""

from __future__ import annotations

import re
import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Current time as an aware datetime in the machine's local zone.

    Relative phrases like "today" or "Friday" are resolved against this
    calendar day, not the UTC one.
    """
    return datetime.now().astimezone()


def new_id() -> str:
    """Generate a fresh unique record id."""
    return uuid.uuid4().hex


_WHITESPACE = re.compile(r"\s+")


def normalize_label(text: str) -> str:
    """Normalise free text for duplicate comparison.

    Lowercases, collapses whitespace and drops trailing punctuation.

    Example:
        >>> normalize_label("  Dentist   on Feb 16. ")
        'dentist on feb 16'
    """
    return _WHITESPACE.sub(" ", text).strip().rstrip(".!?;:").strip().lower()


# =============================================================================
# Enums
# =============================================================================


class EventKind(str, Enum):
    """Kinds of scheduled events.

    Attributes:
        APPOINTMENT: Derived from a date mention ("dentist on Friday").
        REMINDER: Derived from an action mention ("take my pills").
        MEETING: Entered explicitly (visits arranged with a named person).
    """

    APPOINTMENT = "appointment"
    REMINDER = "reminder"
    MEETING = "meeting"


class StoreKind(str, Enum):
    """Record collections held by the memory store."""

    EVENTS = "events"
    CONVERSATIONS = "conversations"
    VISITORS = "visitors"


# =============================================================================
# Persisted Records
# =============================================================================


class ScheduledEvent(BaseModel):
    """A dated event surfaced to the patient as a reminder.

    Events are immutable once created. They are deleted only by an explicit
    user action or a bulk clear.

    Attributes:
        id: Unique, stable identifier.
        iso_date: Calendar date in YYYY-MM-DD form. Always valid.
        label: Human-readable text of the event.
        kind: appointment, reminder or meeting.
        created_at: When the event was extracted.
        needs_confirmation: True when the date could not be understood and
            defaulted to the day of extraction.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    iso_date: str
    label: str
    kind: EventKind = EventKind.APPOINTMENT
    created_at: datetime = Field(default_factory=utc_now)
    needs_confirmation: bool = False

    @field_validator("iso_date")
    @classmethod
    def validate_iso_date(cls, v: str) -> str:
        """Reject anything that is not a real calendar date."""
        return date.fromisoformat(v).isoformat()

    def as_date(self) -> date:
        return date.fromisoformat(self.iso_date)

    @property
    def normalized_label(self) -> str:
        return normalize_label(self.label)


class ConversationTurn(BaseModel):
    """One finalised utterance in a conversation transcript."""

    speaker: str
    text: str
    timestamp: datetime = Field(default_factory=utc_now)

    def format_line(self) -> str:
        """Render as the `Speaker: "text"` line used in prompts."""
        return f'{self.speaker}: "{self.text}"'


class ConversationRecord(BaseModel):
    """A saved conversation with its summary and transcript."""

    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utc_now)
    participants: list[str] = Field(default_factory=list)
    summary: str = ""
    transcript: list[ConversationTurn] = Field(default_factory=list)


class VisitorProfile(BaseModel):
    """A person the patient has met.

    Profiles are keyed by case-insensitive name. Re-identifying a visitor
    updates ``last_seen``; it never creates a second profile.
    """

    id: str = Field(default_factory=new_id)
    name: str
    relation: str = "visitor"
    face_descriptor: list[float] | None = None
    first_seen: datetime = Field(default_factory=utc_now)
    last_seen: datetime = Field(default_factory=utc_now)
    context: str = ""

    @property
    def normalized_name(self) -> str:
        return normalize_label(self.name)


class MemoryLogEntry(BaseModel):
    """A line of the short rolling activity log shown to the patient."""

    time: datetime = Field(default_factory=utc_now)
    event: str


# =============================================================================
# Extraction Results
# =============================================================================


class VisitorIdentity(BaseModel):
    """Who the patient was talking to, as reported by a response."""

    model_config = ConfigDict(frozen=True)

    name: str
    relation: str = "visitor"


class RawMention(BaseModel):
    """A substring of source text referring to a date or an action.

    Mentions are transient: they exist between parsing and reconciliation.
    """

    model_config = ConfigDict(frozen=True)

    kind: ClassVar[EventKind] = EventKind.APPOINTMENT

    text: str
    source_segment: str = ""


class RawDateMention(RawMention):
    """A date or dated-task mention; becomes an appointment."""

    kind: ClassVar[EventKind] = EventKind.APPOINTMENT


class RawActionMention(RawMention):
    """A promise or task mention; becomes a reminder."""

    kind: ClassVar[EventKind] = EventKind.REMINDER


DEFAULT_SUMMARY = "No summary available yet."


class ExtractedFacts(BaseModel):
    """Structured result of parsing one analysis response.

    Attributes:
        visitor: Identified visitor, or None when unknown.
        summary: Summary text. Never empty; DEFAULT_SUMMARY when absent.
        dates: Date mentions in response order.
        actions: Action mentions in response order.
        nudges: Routine reminders suggested by scene analysis.
        corrected_transcript: (speaker, text) pairs when the response
            included a TRANSCRIPT section, otherwise None.
    """

    model_config = ConfigDict(frozen=True)

    visitor: VisitorIdentity | None = None
    summary: str = DEFAULT_SUMMARY
    dates: list[RawDateMention] = Field(default_factory=list)
    actions: list[RawActionMention] = Field(default_factory=list)
    nudges: list[str] = Field(default_factory=list)
    corrected_transcript: list[tuple[str, str]] | None = None

    @property
    def mentions(self) -> list[RawMention]:
        """Date mentions followed by action mentions."""
        return [*self.dates, *self.actions]
