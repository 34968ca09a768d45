"""Fetch window computation for calendar views.

Pure and deterministic given ``now``; no I/O.
"""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional, Union

from dateutil.relativedelta import relativedelta

from config.exceptions import InvalidWindowError

from .models import FetchWindow, ViewMode
from .normalizer import resolve_timezone

AnchorLike = Union[datetime, date, str]


def parse_view_mode(view_mode: Union[ViewMode, str]) -> ViewMode:
    """Coerce a view mode value, raising InvalidWindowError when unknown."""
    try:
        return ViewMode(view_mode)
    except ValueError as e:
        raise InvalidWindowError("Unknown view mode: %r" % (view_mode,)) from e


def parse_anchor(anchor: AnchorLike, tz: tzinfo) -> datetime:
    """Coerce an anchor into an aware datetime in ``tz``.

    Raises:
        InvalidWindowError: If the anchor cannot be interpreted as an instant
    """
    if isinstance(anchor, datetime):
        parsed = anchor
    elif isinstance(anchor, date):
        parsed = datetime.combine(anchor, time.min)
    elif isinstance(anchor, str):
        try:
            parsed = datetime.fromisoformat(anchor.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidWindowError("Invalid anchor date: %r" % anchor) from e
    else:
        raise InvalidWindowError("Invalid anchor date: %r" % (anchor,))

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def _start_of_day(instant: datetime) -> datetime:
    return instant.replace(hour=0, minute=0, second=0, microsecond=0)


def compute_window(
    view_mode: Union[ViewMode, str],
    anchor: AnchorLike,
    tz: Optional[tzinfo] = None,
    now: Optional[datetime] = None,
) -> FetchWindow:
    """Compute the ``[start, end)`` fetch window for a view.

    Args:
        view_mode: month, week, day or agenda
        anchor: Date the view is anchored on
        tz: Local zone for midnight boundaries (defaults to the configured zone)
        now: Clock override, used by the agenda view only

    Returns:
        FetchWindow for the view

    Raises:
        InvalidWindowError: If the view mode is unknown or the anchor is invalid
    """
    mode = parse_view_mode(view_mode)
    tz = tz or resolve_timezone(None)
    local_anchor = parse_anchor(anchor, tz)

    if mode is ViewMode.MONTH:
        start = _start_of_day(local_anchor).replace(day=1)
        end = start + relativedelta(months=1)
    elif mode is ViewMode.WEEK:
        # weekday(): Monday=0 .. Sunday=6
        days_since_sunday = (local_anchor.weekday() + 1) % 7
        start = _start_of_day(local_anchor) - timedelta(days=days_since_sunday)
        end = start + timedelta(days=7)
    elif mode is ViewMode.DAY:
        start = _start_of_day(local_anchor)
        end = start + timedelta(days=1)
    else:
        start = now.astimezone(tz) if now else datetime.now(tz)
        end = start + relativedelta(months=1)

    return FetchWindow(start=start, end=end, view_mode=mode)


def shift_anchor(
    view_mode: Union[ViewMode, str],
    anchor: AnchorLike,
    step: int,
    tz: Optional[tzinfo] = None,
) -> datetime:
    """Move an anchor by ``step`` views (toolbar PREV/NEXT).

    Args:
        view_mode: Current view mode
        anchor: Current anchor
        step: Number of views to move, negative for backwards
        tz: Local zone

    Returns:
        The shifted anchor
    """
    mode = parse_view_mode(view_mode)
    local_anchor = parse_anchor(anchor, tz or resolve_timezone(None))
    if mode is ViewMode.WEEK:
        return local_anchor + timedelta(days=7 * step)
    if mode is ViewMode.DAY:
        return local_anchor + timedelta(days=step)
    return local_anchor + relativedelta(months=step)
