from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from smartmark.backend.auth import (
    EVENT_INITIAL_SESSION,
    AuthClient,
    AuthSession,
    AuthSubscription,
    SessionUser,
)
from smartmark.errors import AuthError

logger = logging.getLogger(__name__)

SessionListener = Callable[[str, "AuthSession | None"], None]


class SessionStore:
    """Holds the current auth session and re-broadcasts provider changes.

    ``loading`` stays true until the initial session fetch has resolved,
    successfully or not. After ``close()`` nothing reaching the store from the
    auth client changes its state.
    """

    def __init__(self, auth: AuthClient):
        self.auth = auth
        self.session: AuthSession | None = None
        self.loading = True
        self._listeners: list[SessionListener] = []
        self._subscription: AuthSubscription | None = None
        self._closed = False

    @property
    def user(self) -> SessionUser | None:
        return self.session.user if self.session else None

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def get_current_session(self) -> AuthSession | None:
        return self.session

    def subscribe(self, callback: SessionListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def start(self) -> SessionStore:
        if self._closed or self._subscription is not None:
            return self

        self._subscription = self.auth.on_auth_state_change(self._on_auth_event)
        try:
            session = self.auth.get_session()
        except (AuthError, SQLAlchemyError) as exc:
            logger.warning("Could not restore session: %s", exc)
            session = None

        self.loading = False
        if not self._closed:
            self._set(EVENT_INITIAL_SESSION, session)
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._listeners.clear()

    def _on_auth_event(self, event: str, session: AuthSession | None) -> None:
        if self._closed:
            return
        self._set(event, session)

    def _set(self, event: str, session: AuthSession | None) -> None:
        self.session = session
        for listener in list(self._listeners):
            listener(event, session)
