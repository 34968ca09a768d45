"""Calendar sync client: list/create/update/delete through the REST boundary.

Every operation reads the credential from the injected AuthContext at call
time and fails fast with AuthRequired before any request. Request bodies and
responses pass through the normalizer.
"""

from datetime import tzinfo
from typing import Any, Dict, List, Optional

import structlog

from config.exceptions import (
    FeatureDisabledError,
    MissingIdError,
    ProviderError,
    ValidationError,
)

from .auth import AuthContext
from .backend import BackendClient
from .models import CalendarEvent, EventDraft, EventPatch, FetchWindow
from .normalizer import DEFAULT_TIMEZONE, resolve_timezone, to_internal, to_wire

logger = structlog.get_logger(__name__)


def validate_draft(draft: EventDraft) -> None:
    """Local preconditions for create/update.

    Raises:
        ValidationError: Missing title, or end not after start (timed) /
            last day before first day (all-day)
    """
    if not draft.title or not draft.title.strip():
        raise ValidationError("Title is required")
    if draft.all_day:
        if draft.end.date() < draft.start.date():
            raise ValidationError("End date must not precede start date")
    elif draft.end <= draft.start:
        raise ValidationError("End must be after start")


class CalendarSyncClient:
    """Boundary operations of the calendar sync engine.

    Attributes:
        backend: REST boundary client
        auth: Injected credential holder
        calendar_id: Default calendar selector
        timezone_name: Zone emitted on timed writes and used for date-only reads
        push_enabled: Whether the manual push action is exposed
    """

    def __init__(
        self,
        backend: BackendClient,
        auth: AuthContext,
        calendar_id: str = "primary",
        timezone_name: str = DEFAULT_TIMEZONE,
        push_enabled: bool = False,
    ):
        self.backend = backend
        self.auth = auth
        self.calendar_id = calendar_id
        self.timezone_name = timezone_name
        self.push_enabled = push_enabled

    @property
    def tz(self) -> tzinfo:
        return resolve_timezone(self.timezone_name)

    def _normalize(self, payload: Dict[str, Any]) -> CalendarEvent:
        return to_internal(payload, tz=self.tz)

    async def list_events(
        self, window: FetchWindow, calendar_id: Optional[str] = None
    ) -> List[CalendarEvent]:
        """Fetch and normalize the events of a window.

        Items that cannot be normalized at all (e.g. not a JSON object) are
        discarded with a warning; the rest of the list is still returned.

        Raises:
            AuthRequired: If no credential is available
            NetworkError: If the backend is unreachable
            ProviderError: If the backend rejects the query
        """
        token = self.auth.require_token()
        calendar_id = calendar_id or self.calendar_id
        envelope = await self.backend.list_events(
            token, window.time_min, window.time_max, calendar_id
        )

        events = []
        for index, item in enumerate(envelope.events):
            if not isinstance(item, dict):
                logger.warning(
                    "Discarding malformed event", index=index, item_type=type(item).__name__
                )
                continue
            try:
                events.append(self._normalize(item))
            except ValueError as e:
                logger.warning("Discarding malformed event", index=index, error=str(e))

        logger.debug(
            "Events listed",
            calendar_id=calendar_id,
            view=window.view_mode.value,
            count=len(events),
        )
        return events

    async def create_event(self, draft: EventDraft) -> CalendarEvent:
        """Validate and create an event.

        Raises:
            AuthRequired: If no credential is available
            ValidationError: If the draft is malformed (no request issued)
        """
        token = self.auth.require_token()
        validate_draft(draft)
        body = to_wire(draft, timezone_name=self.timezone_name)
        body["calendarId"] = self.calendar_id
        created = await self.backend.create_event(token, body)
        event = self._normalize(created or body)
        logger.info("Event created", event_id=event.id, all_day=event.all_day)
        return event

    async def update_event(self, patch: EventPatch) -> CalendarEvent:
        """Validate and update an event.

        Raises:
            AuthRequired: If no credential is available
            MissingIdError: If the patch has no id
            ValidationError: If the patch is malformed
        """
        token = self.auth.require_token()
        if not patch.id:
            raise MissingIdError()
        validate_draft(patch)
        body = to_wire(patch, timezone_name=self.timezone_name)
        updated = await self.backend.update_event(token, patch.id, body)
        event = self._normalize(updated or body)
        logger.info("Event updated", event_id=event.id)
        return event

    async def delete_event(self, event_id: str) -> None:
        """Delete (archive) an event.

        A 404 means the event is already gone and is only logged.

        Raises:
            AuthRequired: If no credential is available
            ValidationError: If ``event_id`` is blank
        """
        token = self.auth.require_token()
        if not event_id:
            raise ValidationError("Cannot delete event without an identifier")
        try:
            await self.backend.delete_event(token, event_id)
        except ProviderError as e:
            if e.status != 404:
                raise
            logger.info("Event already deleted", event_id=event_id)
            return
        logger.info("Event deleted", event_id=event_id)

    async def push_events(self, calendar_id: Optional[str] = None) -> Dict[str, Any]:
        """Ask the backend to push locally stored events to the provider.

        Raises:
            FeatureDisabledError: If the push action is not enabled
            AuthRequired: If no credential is available
        """
        if not self.push_enabled:
            raise FeatureDisabledError("Push to provider is disabled")
        token = self.auth.require_token()
        result = await self.backend.push_events(token, calendar_id or self.calendar_id)
        logger.info("Push requested", calendar_id=calendar_id or self.calendar_id)
        return result
