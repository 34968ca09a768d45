"""Refresh scheduler for one calendar view instance.

State machine: IDLE -> FETCHING -> IDLE on success, IDLE -> FETCHING -> ERROR
-> IDLE on failure. At most one fetch is in flight; a trigger arriving while
FETCHING is dropped, never queued or cancelled. The periodic trigger picks up
whatever a dropped trigger missed.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, List, Optional

import structlog

from config.exceptions import CalendarSyncError

from .models import CalendarEvent

logger = structlog.get_logger(__name__)

DEFAULT_INTERVAL_S = 60.0

FetchCallable = Callable[[], Awaitable[List[CalendarEvent]]]
StateListener = Callable[["SchedulerState"], None]


class SchedulerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ERROR = "error"


class RefreshTrigger(str, Enum):
    """Why a refresh was requested."""

    NAVIGATION = "navigation"
    FOCUS = "focus"
    VISIBILITY = "visibility"
    INTERVAL = "interval"
    MUTATION = "mutation"
    CREDENTIAL_CHANGE = "credential_change"

    @property
    def silent(self) -> bool:
        """Silent refreshes keep the list on screen and show no loading state."""
        return self in _SILENT_TRIGGERS


_SILENT_TRIGGERS = frozenset(
    {
        RefreshTrigger.FOCUS,
        RefreshTrigger.VISIBILITY,
        RefreshTrigger.INTERVAL,
        RefreshTrigger.MUTATION,
    }
)


class RefreshScheduler:
    """Coordinate re-fetch triggers for one view.

    Attributes:
        events: Last successfully fetched list (replaced, never patched)
        loading: True while a non-silent fetch is in flight
        error: Message of the last failed fetch, None after a success
        state: Current SchedulerState
    """

    def __init__(self, fetch: FetchCallable, interval_seconds: float = DEFAULT_INTERVAL_S):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._fetch = fetch
        self.interval_seconds = interval_seconds
        self.events: List[CalendarEvent] = []
        self.loading = False
        self.error: Optional[str] = None
        self.state = SchedulerState.IDLE
        self.fetch_count = 0
        self._listeners: List[StateListener] = []
        self._stop_event = asyncio.Event()
        self._timer_task: Optional[asyncio.Task] = None
        self._disposed = False

    @property
    def running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def disposed(self) -> bool:
        return self._disposed

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback receiving every state transition."""
        self._listeners.append(listener)

    def _transition(self, state: SchedulerState) -> None:
        self.state = state
        for listener in list(self._listeners):
            listener(state)

    async def refresh(self, trigger: RefreshTrigger) -> bool:
        """Run one fetch cycle unless one is already in flight.

        Args:
            trigger: Why the refresh is requested; decides silent vs loading

        Returns:
            True if a fetch ran, False if the trigger was dropped
        """
        if self._disposed:
            logger.debug("Refresh dropped, scheduler stopped", trigger=trigger.value)
            return False
        if self.state is SchedulerState.FETCHING:
            logger.debug("Refresh dropped, fetch in flight", trigger=trigger.value)
            return False

        self._transition(SchedulerState.FETCHING)
        self.fetch_count += 1
        if not trigger.silent:
            self.loading = True

        try:
            events = await self._fetch()
        except CalendarSyncError as e:
            self.events = []
            self.error = str(e) or e.__class__.__name__
            logger.warning(
                "Calendar refresh failed",
                trigger=trigger.value,
                error=self.error,
                error_type=e.__class__.__name__,
            )
            self._transition(SchedulerState.ERROR)
            self._transition(SchedulerState.IDLE)
            return True
        except BaseException:
            self._transition(SchedulerState.IDLE)
            raise
        finally:
            self.loading = False

        self.events = list(events)
        self.error = None
        self._transition(SchedulerState.IDLE)
        logger.debug("Calendar refreshed", trigger=trigger.value, count=len(self.events))
        return True

    async def handle_focus(self) -> bool:
        """Window regained focus."""
        return await self.refresh(RefreshTrigger.FOCUS)

    async def handle_visibility_change(self, visible: bool) -> bool:
        """Document visibility changed; only ``visible`` triggers a refresh."""
        if not visible:
            return False
        return await self.refresh(RefreshTrigger.VISIBILITY)

    def clear(self) -> None:
        """Drop the displayed list (credential change)."""
        self.events = []
        self.error = None

    def start(self) -> None:
        """Start the interval timer. Calling start twice is a no-op."""
        if self._disposed:
            raise RuntimeError("RefreshScheduler cannot be restarted after stop()")
        if self.running:
            return
        self._timer_task = asyncio.get_running_loop().create_task(self._run_timer())

    async def stop(self) -> None:
        """Tear down the timer and dispose the scheduler.

        Later triggers are dropped, so no background fetch outlives the view.
        """
        self._disposed = True
        self._stop_event.set()
        task, self._timer_task = self._timer_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run_timer(self) -> None:
        logger.debug("Refresh timer started", interval_s=self.interval_seconds)
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.refresh(RefreshTrigger.INTERVAL)
            except Exception as e:
                # Keep the timer alive; the next tick re-attempts.
                logger.error("Interval refresh crashed", error=str(e), exc_info=True)
        logger.debug("Refresh timer stopped")
