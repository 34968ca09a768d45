"""Pydantic models for the calendar sync engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ViewMode(str, Enum):
    """Calendar grid view modes."""

    MONTH = "month"
    WEEK = "week"
    DAY = "day"
    AGENDA = "agenda"


class SyncStatus(str, Enum):
    """Mirror state of a locally stored schedule.

    PENDING: written locally, provider write not yet confirmed
    SYNCED: provider copy matches the local record
    FAILED: last provider attempt failed, eligible for retry
    """

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


def wire_shape_is_all_day(payload: Dict[str, Any]) -> bool:
    """Tell whether a wire payload encodes an all-day event.

    True exactly when start carries a ``date`` and neither side carries a
    ``dateTime``.
    """
    start = payload.get("start")
    end = payload.get("end")
    start = start if isinstance(start, dict) else {}
    end = end if isinstance(end, dict) else {}
    if start.get("dateTime") or end.get("dateTime"):
        return False
    return bool(start.get("date"))


class CalendarEvent(BaseModel):
    """Normalized calendar event used by the grid.

    Boundaries are inclusive: for all-day events ``end`` is local midnight of
    the last included day, never the exclusive wire ``end.date``.

    Attributes:
        id: Provider or backend assigned identifier
        title: Display label
        start: Timezone-aware start instant
        end: Timezone-aware end instant (inclusive)
        all_day: Derived from the wire payload shape
        description: Optional free text
        location: Optional location
        attendees: Attendee email addresses, in wire order
        source_ref: Raw wire payload, kept for edit round-trips
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Event identifier")
    title: str = Field(..., description="Display label")
    start: datetime = Field(..., description="Start instant")
    end: datetime = Field(..., description="End instant (inclusive)")
    all_day: bool = Field(default=False, description="All-day flag (derived)")
    description: Optional[str] = Field(default=None, description="Event description")
    location: Optional[str] = Field(default=None, description="Event location")
    attendees: List[str] = Field(default_factory=list, description="Attendee emails")
    source_ref: Dict[str, Any] = Field(
        default_factory=dict, exclude=True, repr=False, description="Raw wire payload"
    )

    @model_validator(mode="after")
    def check_invariants(self) -> "CalendarEvent":
        """Enforce start <= end and an all-day flag consistent with the payload."""
        if self.end < self.start:
            raise ValueError("end must not precede start")
        if self.source_ref and wire_shape_is_all_day(self.source_ref) != self.all_day:
            raise ValueError("all_day contradicts the wire payload shape")
        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CalendarEvent):
            return NotImplemented
        return self.model_dump() == other.model_dump()

    def __hash__(self) -> int:
        return hash((self.id, self.start, self.end))

    @property
    def html_link(self) -> Optional[str]:
        """Provider deep-link, if the payload carries one."""
        return self.source_ref.get("htmlLink") or None

    @property
    def provider_managed(self) -> bool:
        """Whether the authoritative copy lives at the external calendar."""
        return self.html_link is not None

    @property
    def deletable(self) -> bool:
        """Whether the simple local archive path may remove this event."""
        return not self.provider_managed


class EventDraft(BaseModel):
    """Create/edit form input.

    For all-day drafts ``end`` is the inclusive last day, matching the grid.
    """

    title: str = ""
    start: datetime
    end: datetime
    all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)

    @property
    def attendees_text(self) -> str:
        """Comma-joined attendee emails for the form field."""
        return ", ".join(self.attendees)

    @staticmethod
    def parse_attendees(text: Optional[str]) -> List[str]:
        """Split a comma-separated attendee field into emails, dropping blanks."""
        if not text:
            return []
        return [part.strip() for part in text.split(",") if part.strip()]


class EventPatch(EventDraft):
    """Edit input; ``id`` is required by the update operation."""

    id: Optional[str] = None


class EventsEnvelope(BaseModel):
    """Single typed envelope for list responses from the REST boundary."""

    events: List[Any] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "EventsEnvelope":
        """Build the envelope from ``{events}``, ``{items}`` or a bare list.

        Args:
            payload: Decoded JSON body

        Returns:
            EventsEnvelope with a single ``events`` list
        """
        if isinstance(payload, list):
            return cls(events=payload)
        if isinstance(payload, dict):
            for key in ("events", "items"):
                items = payload.get(key)
                if isinstance(items, list):
                    return cls(events=items)
        return cls(events=[])


class FetchWindow(BaseModel):
    """Half-open ``[start, end)`` query window for one view."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    view_mode: ViewMode

    @property
    def time_min(self) -> str:
        return self.start.isoformat()

    @property
    def time_max(self) -> str:
        return self.end.isoformat()

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end


class SyncResult(BaseModel):
    """Result of one mirror reconciliation pass.

    Attributes:
        events_created: Records inserted at the provider
        events_updated: Records patched at the provider
        events_deleted: Records removed at the provider
        errors: Error messages (if any)
        sync_timestamp: Timestamp when the pass completed
    """

    events_created: int = Field(default=0, description="Events created count")
    events_updated: int = Field(default=0, description="Events updated count")
    events_deleted: int = Field(default=0, description="Events deleted count")
    errors: List[str] = Field(default_factory=list, description="Error messages")
    sync_timestamp: datetime = Field(
        default_factory=datetime.now, description="Sync completion timestamp"
    )

    @property
    def total_events(self) -> int:
        """Total number of events processed."""
        return self.events_created + self.events_updated + self.events_deleted

    @property
    def has_errors(self) -> bool:
        """Check if the pass had any errors."""
        return len(self.errors) > 0

    @property
    def success(self) -> bool:
        """Check if the pass was successful (no errors)."""
        return not self.has_errors
