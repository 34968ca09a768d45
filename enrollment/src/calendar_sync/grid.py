"""
Grid controller: binds window computation, the sync client and the refresh
scheduler to an interactive calendar surface.

User intents handled:
    - slot selection        -> create draft
    - event selection       -> edit draft
    - toolbar / view switch -> navigation refresh
    - context menu, bulk selection, keyboard delete -> ArchiveReconciler

Every successful create/update/archive is followed by a refresh so the grid
shows server truth instead of a locally patched list.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Callable, List, Optional, Set, Union

import structlog

from config.exceptions import ValidationError

from .archive import ArchiveReconciler, ArchiveResult
from .auth import AuthContext
from .models import CalendarEvent, EventDraft, EventPatch, FetchWindow, ViewMode
from .scheduler import DEFAULT_INTERVAL_S, RefreshScheduler, RefreshTrigger
from .sync_client import CalendarSyncClient
from .window import AnchorLike, compute_window, parse_anchor, parse_view_mode, shift_anchor

logger = structlog.get_logger(__name__)

DEFAULT_SLOT_DURATION = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArchiveOrigin(str, Enum):
    CONTEXT_MENU = "context_menu"
    BULK = "bulk"
    KEYBOARD = "keyboard"


class NavigateAction(str, Enum):
    TODAY = "today"
    PREV = "prev"
    NEXT = "next"


@dataclass(frozen=True)
class SlotSelection:
    """A click-drag over empty grid space.

    ``end`` is the grid's exclusive end. ``all_day`` is inferred from
    whole-day boundaries when not given.
    """

    start: datetime
    end: datetime
    all_day: Optional[bool] = None

    @property
    def spans_whole_days(self) -> bool:
        if self.all_day is not None:
            return self.all_day
        return (
            self.start.time() == time.min
            and self.end.time() == time.min
            and self.end > self.start
        )


class GridController:
    """Drive one calendar view instance.

    Attributes:
        sync_client: Boundary operations
        auth: Shared credential holder
        view_mode: Current view
        anchor: Current anchor date
        calendar_id: Calendar selector (None = client default)
        scheduler: Refresh scheduler owning the displayed list
        archiver: Single archive path
        selection: Multi-select set of event ids
        draft: Open create/edit draft, if any
    """

    def __init__(
        self,
        sync_client: CalendarSyncClient,
        auth: AuthContext,
        view_mode: Union[ViewMode, str] = ViewMode.MONTH,
        anchor: Optional[AnchorLike] = None,
        interval_seconds: float = DEFAULT_INTERVAL_S,
        tz: Optional[tzinfo] = None,
        calendar_id: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.sync_client = sync_client
        self.auth = auth
        self.tz = tz or sync_client.tz
        self.clock = clock or _utcnow
        self.view_mode = parse_view_mode(view_mode)
        self.anchor = parse_anchor(anchor if anchor is not None else self._now(), self.tz)
        self.calendar_id = calendar_id
        self.selection: Set[str] = set()
        self.draft: Optional[EventDraft] = None
        self.draft_focused = False
        self._draft_source: Optional[CalendarEvent] = None
        self.scheduler = RefreshScheduler(self._fetch_window, interval_seconds=interval_seconds)
        self.archiver = ArchiveReconciler(sync_client, self._refresh_after_mutation, self.selection)
        self._credential_generation = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._background: Set[asyncio.Task] = set()

    def _now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    # ------------------------------------------------------------------
    # View state
    # ------------------------------------------------------------------

    @property
    def window(self) -> FetchWindow:
        return compute_window(self.view_mode, self.anchor, tz=self.tz, now=self._now())

    @property
    def events(self) -> List[CalendarEvent]:
        return self.scheduler.events

    @property
    def loading(self) -> bool:
        return self.scheduler.loading

    @property
    def error(self) -> Optional[str]:
        return self.scheduler.error

    async def _fetch_window(self) -> List[CalendarEvent]:
        while True:
            generation = self._credential_generation
            events = await self.sync_client.list_events(self.window, self.calendar_id)
            if generation == self._credential_generation:
                return events
            # Credential changed mid-flight: the result belongs to the old account.
            logger.info("Discarding fetch from previous credential")

    async def open(self) -> None:
        """Mount: start the timer, follow credential changes, load the window."""
        self._unsubscribe = self.auth.subscribe(self._on_credential_change)
        self.scheduler.start()
        await self.scheduler.refresh(RefreshTrigger.NAVIGATION)

    async def close(self) -> None:
        """Unmount: stop the timer and drop pending background refreshes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.scheduler.stop()

    def _on_credential_change(self, token: Optional[str]) -> None:
        self._credential_generation += 1
        self.scheduler.clear()
        self.selection.clear()
        self.close_draft()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Set outside the loop; the next refresh picks up the new token.
            logger.debug("Credential changed with no running loop")
            return
        task = loop.create_task(self.scheduler.refresh(RefreshTrigger.CREDENTIAL_CHANGE))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def navigate(self, anchor: AnchorLike) -> bool:
        """Move the view to ``anchor`` and refresh.

        Raises:
            InvalidWindowError: If the anchor is invalid (view state unchanged)
        """
        new_anchor = parse_anchor(anchor, self.tz)
        compute_window(self.view_mode, new_anchor, tz=self.tz, now=self._now())
        self.anchor = new_anchor
        return await self.scheduler.refresh(RefreshTrigger.NAVIGATION)

    async def change_view(self, view_mode: Union[ViewMode, str]) -> bool:
        """Switch view mode and refresh."""
        self.view_mode = parse_view_mode(view_mode)
        return await self.scheduler.refresh(RefreshTrigger.NAVIGATION)

    async def go(self, action: Union[NavigateAction, str]) -> bool:
        """Toolbar navigation: today, prev or next."""
        action = NavigateAction(action)
        if action is NavigateAction.TODAY:
            return await self.navigate(self._now())
        step = -1 if action is NavigateAction.PREV else 1
        return await self.navigate(shift_anchor(self.view_mode, self.anchor, step, tz=self.tz))

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def select_slot(self, slot: SlotSelection) -> EventDraft:
        """Open a create draft from a slot selection."""
        start = parse_anchor(slot.start, self.tz)
        end = parse_anchor(slot.end, self.tz)
        all_day = slot.spans_whole_days
        if all_day:
            # Grid selections end on the next midnight; drafts keep the last day.
            end = max(end - timedelta(days=1), start)
        elif end <= start:
            end = start + DEFAULT_SLOT_DURATION

        self.draft = EventDraft(title="", start=start, end=end, all_day=all_day)
        self._draft_source = None
        self.draft_focused = True
        return self.draft

    def select_event(self, event: CalendarEvent) -> EventPatch:
        """Open an edit draft pre-populated from a normalized event."""
        patch = EventPatch(
            id=event.id,
            title=event.title,
            start=event.start,
            end=event.end,
            all_day=event.all_day,
            description=event.description,
            location=event.location,
            attendees=list(event.attendees),
        )
        self.draft = patch
        self._draft_source = event
        self.draft_focused = True
        return patch

    def close_draft(self) -> None:
        self.draft = None
        self._draft_source = None
        self.draft_focused = False

    async def save(self, draft: Optional[EventDraft] = None) -> CalendarEvent:
        """Create or update from a draft, then refresh.

        Failures propagate to the form and leave the list untouched.
        """
        draft = draft if draft is not None else self.draft
        if draft is None:
            raise ValidationError("No draft to save")

        if isinstance(draft, EventPatch) and draft.id:
            event = await self.sync_client.update_event(draft)
        else:
            event = await self.sync_client.create_event(draft)

        self.close_draft()
        await self._refresh_after_mutation()
        return event

    async def _refresh_after_mutation(self) -> bool:
        # Dropped while another fetch is in flight; that fetch may predate the
        # write, and the next focus or interval trigger brings the change in.
        return await self.scheduler.refresh(RefreshTrigger.MUTATION)

    async def push_to_provider(self) -> dict:
        """Manual "push to provider" action, then refresh."""
        result = await self.sync_client.push_events(self.calendar_id)
        await self._refresh_after_mutation()
        return result

    # ------------------------------------------------------------------
    # Selection and archive
    # ------------------------------------------------------------------

    def toggle_selection(self, event_id: str) -> bool:
        """Toggle one id; returns whether it is now selected."""
        if event_id in self.selection:
            self.selection.discard(event_id)
            return False
        self.selection.add(event_id)
        return True

    def select_all(self) -> None:
        """Select every locally deletable event, or clear if all are selected."""
        deletable = {event.id for event in self.events if event.deletable}
        if deletable and deletable <= self.selection:
            self.selection.clear()
        else:
            self.selection.update(deletable)

    def clear_selection(self) -> None:
        self.selection.clear()

    async def _archive(self, ids: List[str], origin: ArchiveOrigin) -> ArchiveResult:
        logger.info("Archive requested", origin=origin.value, count=len(ids))
        result = await self.archiver.archive(ids)
        if self.draft is not None and getattr(self.draft, "id", None) in result.archived:
            self.close_draft()
        return result

    async def archive_from_context_menu(self, event: CalendarEvent) -> ArchiveResult:
        """Right-click archive of one event.

        Raises:
            ValidationError: If the event is provider-managed
        """
        if not event.deletable:
            raise ValidationError("Provider-managed events cannot be archived here")
        return await self._archive([event.id], ArchiveOrigin.CONTEXT_MENU)

    async def archive_selected(self) -> ArchiveResult:
        """Bulk archive of the multi-select set."""
        managed = {event.id for event in self.events if not event.deletable}
        skipped = self.selection & managed
        if skipped:
            logger.warning("Skipping provider-managed events", count=len(skipped))
            self.selection.difference_update(skipped)
        return await self._archive(sorted(self.selection), ArchiveOrigin.BULK)

    async def archive_focused_draft(self) -> Optional[ArchiveResult]:
        """Keyboard delete while an edit draft is focused.

        Returns:
            ArchiveResult, or None when no saved event is focused
        """
        draft_id = getattr(self.draft, "id", None)
        if not self.draft_focused or not draft_id:
            return None
        if self._draft_source is not None and not self._draft_source.deletable:
            raise ValidationError("Provider-managed events cannot be archived here")
        return await self._archive([draft_id], ArchiveOrigin.KEYBOARD)
