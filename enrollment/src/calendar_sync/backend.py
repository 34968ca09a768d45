"""
REST boundary client for the enrollment backend calendar routes.

Routes:
    GET    /calendar/events?timeMin&timeMax&calendarId
    POST   /calendar/events
    PATCH  /calendar/events/{id}
    DELETE /calendar/events/{id}
    POST   /calendar/push

All bodies are JSON. Errors are translated once, here, into the sync engine's
exception taxonomy; list responses are wrapped in a single EventsEnvelope.
"""

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
import structlog

from config.exceptions import AuthRequired, NetworkError, ProviderError

from .models import EventsEnvelope

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_S = 30.0


def _event_payload(data: Any) -> Dict[str, Any]:
    """Single event response: ``{"event": {...}}`` or the event itself."""
    if not isinstance(data, dict):
        return {}
    inner = data.get("event")
    if isinstance(inner, dict):
        return inner
    return data if data.get("id") else {}


class BackendClient:
    """
    Thin async wrapper over the backend calendar routes.

    Attributes:
        http_client: Shared httpx.AsyncClient (not created here)
        base_url: Backend API root, e.g. http://localhost:4000/api
        timeout: Per-request timeout in seconds

    Example:
        >>> backend = BackendClient(httpx.AsyncClient(), "http://localhost:4000/api")
        >>> envelope = await backend.list_events(token, time_min, time_max, "primary")
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_S,
    ):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {token}",
                },
                json=json_body,
                params=params,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.warning("Backend unreachable", method=method, path=path, error=str(e))
            raise NetworkError(f"{method} {path} failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 401:
            raise AuthRequired()

        if response.status_code >= 400:
            message = "Request failed"
            if isinstance(data, dict):
                message = data.get("error") or data.get("message") or message
            logger.warning(
                "Backend request rejected",
                method=method,
                path=path,
                status=response.status_code,
                error=message,
            )
            raise ProviderError(response.status_code, message, data)

        return data

    async def list_events(
        self, token: str, time_min: str, time_max: str, calendar_id: str
    ) -> EventsEnvelope:
        """GET /calendar/events for a window."""
        data = await self._request(
            "GET",
            "/calendar/events",
            token,
            params={"timeMin": time_min, "timeMax": time_max, "calendarId": calendar_id},
        )
        return EventsEnvelope.from_payload(data)

    async def create_event(self, token: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST /calendar/events.

        Returns:
            The stored event payload (empty dict when the backend sent none)
        """
        data = await self._request("POST", "/calendar/events", token, json_body=body)
        return _event_payload(data)

    async def update_event(
        self, token: str, event_id: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        """PATCH /calendar/events/{id}.

        Returns:
            The stored event payload (empty dict when the backend sent none)
        """
        data = await self._request(
            "PATCH", f"/calendar/events/{quote(event_id, safe='')}", token, json_body=body
        )
        return _event_payload(data)

    async def delete_event(self, token: str, event_id: str) -> None:
        """DELETE /calendar/events/{id}."""
        await self._request("DELETE", f"/calendar/events/{quote(event_id, safe='')}", token)

    async def push_events(self, token: str, calendar_id: str) -> Dict[str, Any]:
        """POST /calendar/push (bulk push of local events to the provider)."""
        return await self._request(
            "POST", "/calendar/push", token, json_body={"calendarId": calendar_id}
        )
