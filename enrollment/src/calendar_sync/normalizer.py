"""Conversion between wire-format calendar events and CalendarEvent.

The wire format is Google-Calendar shaped::

    {
        "id": "...",
        "summary": "...",
        "start": {"date": "2024-05-01"} | {"dateTime": "...", "timeZone": "..."},
        "end": {"date": "2024-05-03"} | {"dateTime": "...", "timeZone": "..."},
        "attendees": [{"email": "..."}],
        "htmlLink": "...",
    }

All-day wire end dates are exclusive; internal all-day ends are inclusive.
"""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Dict, List, Mapping, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from .models import CalendarEvent, EventDraft, wire_shape_is_all_day

logger = structlog.get_logger(__name__)

UNTITLED_EVENT = "Untitled Event"
DEFAULT_TIMEZONE = "Asia/Manila"
DEFAULT_DURATION = timedelta(hours=1)
ONE_DAY = timedelta(days=1)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return a ZoneInfo for ``name``, falling back to the default zone."""
    try:
        return ZoneInfo(name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone, using default", timezone=name)
        return ZoneInfo(DEFAULT_TIMEZONE)


def _parse_date(value: Any) -> Optional[date]:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _parse_datetime(value: Any, tz: tzinfo) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        # fromisoformat rejects a trailing Z before 3.11
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed


def _midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def parse_boundary(part: Any, all_day: bool, tz: tzinfo) -> Optional[datetime]:
    """Strictly parse one ``start``/``end`` object, None when absent or malformed.

    All-day values become local midnight, so a wire end stays exclusive.
    """
    if not isinstance(part, dict):
        return None
    if all_day:
        day = _parse_date(part.get("date"))
        return _midnight(day, tz) if day else None
    return _parse_datetime(part.get("dateTime"), tz)


def _part(payload: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def _attendee_emails(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    emails = []
    for attendee in raw:
        if isinstance(attendee, dict) and attendee.get("email"):
            emails.append(str(attendee["email"]))
        elif isinstance(attendee, str) and attendee.strip():
            emails.append(attendee.strip())
    return emails


def to_internal(
    wire_event: Mapping[str, Any],
    tz: Optional[tzinfo] = None,
    now: Optional[datetime] = None,
) -> CalendarEvent:
    """Convert a wire event into a CalendarEvent.

    Never raises on bad dates: an unparseable or missing start falls back to
    ``now``, an unparseable or missing end to start + 1 hour (timed) or to the
    start day (all-day), so one bad record cannot abort a whole list.

    Args:
        wire_event: Event dict as returned by the REST boundary
        tz: Zone used for date-only values and naive date-times
        now: Clock override for the fallback instant

    Returns:
        CalendarEvent with inclusive boundaries
    """
    start_part = _part(wire_event, "start")
    end_part = _part(wire_event, "end")
    tz = tz or resolve_timezone(start_part.get("timeZone"))
    now = now or datetime.now(tz)
    all_day = wire_shape_is_all_day(wire_event)

    if all_day:
        first_day = _parse_date(start_part.get("date"))
        if first_day is None:
            logger.warning("Unparseable all-day start, using today", event_id=wire_event.get("id"))
            first_day = now.astimezone(tz).date()
        exclusive_end = _parse_date(end_part.get("date"))
        last_day = exclusive_end - ONE_DAY if exclusive_end else first_day
        start = _midnight(first_day, tz)
        end = max(_midnight(last_day, tz), start)
    else:
        start = _parse_datetime(start_part.get("dateTime"), tz)
        if start is None:
            logger.warning("Unparseable start, using now", event_id=wire_event.get("id"))
            start = now
        end = _parse_datetime(end_part.get("dateTime"), tz)
        if end is None:
            end = start + DEFAULT_DURATION
        end = max(end, start)

    title = wire_event.get("summary") or wire_event.get("title") or UNTITLED_EVENT
    event_id = wire_event.get("id") or wire_event.get("_id") or "event-%s" % uuid4().hex[:9]

    return CalendarEvent(
        id=str(event_id),
        title=str(title),
        start=start,
        end=end,
        all_day=all_day,
        description=wire_event.get("description") or None,
        location=wire_event.get("location") or None,
        attendees=_attendee_emails(wire_event.get("attendees")),
        source_ref=dict(wire_event),
    )


def to_wire(
    event: CalendarEvent | EventDraft,
    all_day: Optional[bool] = None,
    timezone_name: str = DEFAULT_TIMEZONE,
) -> Dict[str, Any]:
    """Convert a CalendarEvent (or a form draft) into a wire body.

    Optional fields (location, attendees) are omitted when empty rather than
    sent as placeholders; the remote API treats absence and emptiness
    differently.

    Args:
        event: Internal event or draft with inclusive boundaries
        all_day: Override for the all-day encoding (defaults to the event's flag)
        timezone_name: Zone name emitted alongside timed values

    Returns:
        Dict suitable for POST/PATCH /calendar/events
    """
    if all_day is None:
        all_day = event.all_day
    title = event.title if event.title and event.title.strip() else UNTITLED_EVENT

    body: Dict[str, Any] = {
        "summary": title,
        "description": event.description or "",
    }
    event_id = getattr(event, "id", None)
    if event_id:
        body["id"] = event_id

    if all_day:
        first_day = event.start.date()
        last_day = max(event.end.date(), first_day)
        body["start"] = {"date": first_day.isoformat()}
        body["end"] = {"date": (last_day + ONE_DAY).isoformat()}
    else:
        body["start"] = {"dateTime": event.start.isoformat(), "timeZone": timezone_name}
        body["end"] = {"dateTime": event.end.isoformat(), "timeZone": timezone_name}

    if event.location:
        body["location"] = event.location

    if event.attendees:
        body["attendees"] = [{"email": email} for email in event.attendees]

    return body


def is_provider_managed(wire_event: Mapping[str, Any]) -> bool:
    """Whether a wire payload belongs to an event managed at the provider."""
    return bool(wire_event.get("htmlLink"))


def can_delete_locally(event: CalendarEvent | Mapping[str, Any]) -> bool:
    """Whether the simple local archive path may remove this event."""
    if isinstance(event, CalendarEvent):
        return event.deletable
    return not is_provider_managed(event)
