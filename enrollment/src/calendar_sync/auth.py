"""Bearer credential holder shared by the sync client and the grid."""

from typing import Callable, List, Optional

import structlog

from config.exceptions import AuthRequired

logger = structlog.get_logger(__name__)

CredentialListener = Callable[[Optional[str]], None]


class AuthContext:
    """Holds the current bearer credential and notifies on change.

    Injected into CalendarSyncClient instead of being read from ambient
    storage, so tests can supply fake credentials.
    """

    def __init__(self, token: Optional[str] = None):
        self._token = token or None
        self._listeners: List[CredentialListener] = []

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def require_token(self) -> str:
        """Return the current token.

        Raises:
            AuthRequired: If no credential is available
        """
        if self._token is None:
            raise AuthRequired()
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        """Replace the credential; listeners fire only on an actual change."""
        token = token or None
        if token == self._token:
            return
        self._token = token
        logger.info("Credential changed", authenticated=token is not None)
        for listener in list(self._listeners):
            listener(token)

    def clear(self) -> None:
        """Sign out."""
        self.set_token(None)

    def subscribe(self, listener: CredentialListener) -> Callable[[], None]:
        """Register a change listener.

        Returns:
            Callable that removes the listener
        """
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe
