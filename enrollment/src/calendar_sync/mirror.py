"""Provider mirror: writes local schedules to Google Calendar."""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import httplib2
import structlog
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config.exceptions import MirrorError

logger = structlog.get_logger(__name__)

# Scopes required for writing to Google Calendar
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]

# Bounded retry on rate limit
MAX_RATE_LIMIT_RETRIES = 3
RATE_LIMIT_BASE_DELAY_S = 1.0

# Statuses meaning "the provider copy is already gone"
GONE_STATUSES = {404, 410}


async def load_provider_credentials(
    credentials_json: str = "",
    token_path: str = "config/google_token.json",
):
    """Load Google credentials for the mirror.

    Workflow:
    1. Service-account JSON from the environment (as the backend deploys it)
    2. Otherwise an authorized-user token file, refreshed when expired

    Returns:
        google.auth credentials usable by googleapiclient

    Raises:
        MirrorError: If no usable credential is configured
    """
    if credentials_json:
        try:
            info = json.loads(credentials_json)
            return service_account.Credentials.from_service_account_info(
                info, scopes=CALENDAR_SCOPES
            )
        except ValueError as e:
            raise MirrorError("Invalid service account credentials: %s" % e) from e

    path = Path(token_path)
    if not path.exists():
        raise MirrorError("No Google credentials configured (token not found at %s)" % path)

    creds = Credentials.from_authorized_user_file(str(path), CALENDAR_SCOPES)
    if creds.expired and creds.refresh_token:
        try:
            # refresh() is blocking I/O
            await asyncio.to_thread(creds.refresh, Request())
        except RefreshError as e:
            raise MirrorError("Token refresh failed, re-authentication needed: %s" % e) from e
    if not creds.valid:
        raise MirrorError("Google credentials are not valid")
    return creds


class ProviderMirror(ABC):
    """External calendar the local store is mirrored to."""

    @abstractmethod
    async def insert(self, calendar_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Create an event; returns the provider payload (with id, htmlLink)."""

    @abstractmethod
    async def patch(
        self, calendar_id: str, event_id: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def delete(self, calendar_id: str, event_id: str) -> None:
        """Delete an event; an already-deleted event is not an error."""


class GoogleCalendarMirror(ProviderMirror):
    """Google Calendar v3 mirror.

    googleapiclient is synchronous: every ``.execute()`` runs in a worker
    thread so the event loop is never blocked.
    """

    def __init__(
        self,
        credentials: Any = None,
        service: Any = None,
        credentials_loader: Optional[Callable[[], Any]] = None,
    ):
        """
        Args:
            credentials: Ready google.auth credentials
            service: Prebuilt Calendar service (tests)
            credentials_loader: Coroutine function returning credentials lazily
        """
        self.credentials = credentials
        self.service = service
        self.credentials_loader = credentials_loader

    async def _get_service(self):
        if self.service is None:
            if self.credentials is None:
                if self.credentials_loader is None:
                    raise MirrorError("Google Calendar mirror has no credentials")
                self.credentials = await self.credentials_loader()
            # build() does no network I/O with static discovery
            self.service = build(
                "calendar", "v3", credentials=self.credentials, cache_discovery=False
            )
        return self.service

    async def _execute(self, operation: str, make_request: Callable[[Any], Any]) -> Any:
        service = await self._get_service()
        retry_count = 0
        while True:
            try:
                return await asyncio.to_thread(lambda: make_request(service).execute())
            except HttpError as e:
                status = e.resp.status
                if status == 429 and retry_count < MAX_RATE_LIMIT_RETRIES:
                    delay = RATE_LIMIT_BASE_DELAY_S * (2**retry_count)
                    retry_count += 1
                    logger.warning(
                        "Rate limit hit, retrying",
                        operation=operation,
                        retry=retry_count,
                        max_retries=MAX_RATE_LIMIT_RETRIES,
                        delay_s=delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise
            except (TransportError, httplib2.HttpLib2Error, OSError) as e:
                # socket timeouts and refused connections surface as OSError
                raise MirrorError("Google %s failed (transport): %s" % (operation, e)) from e

    async def insert(self, calendar_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self._execute(
                "insert",
                lambda s: s.events().insert(calendarId=calendar_id, body=body),
            )
        except HttpError as e:
            raise MirrorError("Google insert failed (%s): %s" % (e.resp.status, e)) from e

    async def patch(
        self, calendar_id: str, event_id: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        try:
            return await self._execute(
                "patch",
                lambda s: s.events().patch(calendarId=calendar_id, eventId=event_id, body=body),
            )
        except HttpError as e:
            raise MirrorError("Google patch failed (%s): %s" % (e.resp.status, e)) from e

    async def delete(self, calendar_id: str, event_id: str) -> None:
        try:
            await self._execute(
                "delete",
                lambda s: s.events().delete(calendarId=calendar_id, eventId=event_id),
            )
        except HttpError as e:
            if e.resp.status in GONE_STATUSES:
                logger.info("Provider event already deleted", event_id=event_id)
                return
            raise MirrorError("Google delete failed (%s): %s" % (e.resp.status, e)) from e
