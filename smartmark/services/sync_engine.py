from __future__ import annotations

import logging
import threading
from typing import Callable

from smartmark.backend import BackendClient
from smartmark.backend.realtime import EVENT_ALL, Channel, ChangeNotification
from smartmark.errors import AuthError, BackendError, SubmissionInProgress, ValidationError
from smartmark.services.common import validate_bookmark_input
from smartmark.services.session_store import SessionStore

logger = logging.getLogger(__name__)

STATE_IDLE = "idle"
STATE_LOADING = "loading"
STATE_READY = "ready"

CHANNEL_NAME = "realtime-bookmarks"
BOOKMARKS_TABLE = "bookmarks"


class BookmarkSyncEngine:
    """The signed-in user's bookmark list, kept in step with the backend.

    Local creates and deletes are applied to the list as soon as the backend
    confirms them. Any change notification from the realtime feed triggers a
    full reload rather than a patch. Notifications that arrive while one of
    this engine's own mutations is in flight are replayed once it finishes.
    """

    def __init__(self, client: BackendClient, store: SessionStore):
        self.client = client
        self.store = store
        self.state = STATE_IDLE
        self.bookmarks: list[dict] = []
        self.cursor = 0
        self.title = ""
        self.url = ""
        self.error: str | None = None
        self.submitting = False
        self.last_load_error: str | None = None

        self._lock = threading.RLock()
        self._user_id: int | None = None
        self._channel: Channel | None = None
        self._unsubscribe_store: Callable[[], None] | None = None
        self._error_listeners: list[Callable[[BackendError], None]] = []
        self._busy = 0
        self._reconcile_pending = False
        self._closed = False

    @property
    def user_id(self) -> int | None:
        return self._user_id

    @property
    def subscribed(self) -> bool:
        return self._channel is not None and self._channel.subscribed

    def start(self) -> BookmarkSyncEngine:
        if self._closed or self._unsubscribe_store is not None:
            return self
        self._unsubscribe_store = self.store.subscribe(self._on_session_change)
        user = self.store.user
        self._bind(user.id if user else None)
        return self

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._close_channel()
            if self._unsubscribe_store is not None:
                self._unsubscribe_store()
                self._unsubscribe_store = None
            self._error_listeners.clear()

    def on_error(self, callback: Callable[[BackendError], None]) -> Callable[[], None]:
        """Listen for background load failures, which are otherwise not raised."""
        self._error_listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._error_listeners:
                self._error_listeners.remove(callback)

        return unsubscribe

    def load(self) -> list[dict]:
        with self._lock:
            self._load_locked()
        self._drain()
        return self.bookmarks

    def _load_locked(self) -> None:
        user_id = self._user_id
        if self._closed or user_id is None:
            return

        previous_state = self.state
        if previous_state == STATE_IDLE:
            self.state = STATE_LOADING
        try:
            # Read before the snapshot so later commits stay visible past it.
            cursor = self.client.realtime.latest_cursor(user_id)
            rows = self.client.bookmarks.select_for_owner(user_id)
        except BackendError as exc:
            self.state = previous_state
            self.last_load_error = exc.message
            logger.warning("Loading bookmarks for user %s failed: %s", user_id, exc)
            for listener in list(self._error_listeners):
                listener(exc)
            return

        if self._closed or user_id != self._user_id:
            return
        self.bookmarks = rows
        self.cursor = cursor
        self.state = STATE_READY
        self.last_load_error = None

    def create(self, title: str | None = None, url: str | None = None) -> dict:
        try:
            return self._create(title, url)
        finally:
            self._drain()

    def _create(self, title: str | None, url: str | None) -> dict:
        with self._lock:
            if self.submitting:
                raise SubmissionInProgress()
            if title is not None:
                self.title = title
            if url is not None:
                self.url = url
            self.error = None

            try:
                clean_title, clean_url = validate_bookmark_input(self.title, self.url)
            except ValidationError as exc:
                self.error = exc.message
                raise
            if self._user_id is None:
                self.error = "Sign in to add bookmarks"
                raise AuthError(self.error)

            self.submitting = True
            self._busy += 1
            try:
                record = self.client.bookmarks.insert(
                    self._user_id, clean_title, clean_url
                )
            except BackendError as exc:
                self.error = exc.message
                raise
            else:
                self.bookmarks = [record, *self.bookmarks]
                self.state = STATE_READY
                return record
            finally:
                self.title = ""
                self.url = ""
                self.submitting = False
                self._busy -= 1

    def delete(self, bookmark_id: int) -> None:
        try:
            self._delete(bookmark_id)
        finally:
            self._drain()

    def _delete(self, bookmark_id: int) -> None:
        with self._lock:
            self.error = None
            if self._user_id is None:
                self.error = "Sign in to delete bookmarks"
                raise AuthError(self.error)

            self._busy += 1
            try:
                self.client.bookmarks.delete(bookmark_id, self._user_id)
            except BackendError as exc:
                self.error = exc.message
                raise
            else:
                self.bookmarks = [
                    bookmark for bookmark in self.bookmarks if bookmark["id"] != bookmark_id
                ]
            finally:
                self._busy -= 1

    def _on_session_change(self, event: str, session) -> None:
        user_id = session.user.id if session else None
        if user_id == self._user_id and (user_id is None or self.subscribed):
            return
        logger.debug("Session event %s rebinds bookmarks to user %s", event, user_id)
        self._bind(user_id)

    def _bind(self, user_id: int | None) -> None:
        with self._lock:
            if self._closed:
                return
            self._close_channel()
            self.bookmarks = []
            self.cursor = 0
            self.state = STATE_IDLE
            self.title = ""
            self.url = ""
            self.error = None
            self.last_load_error = None
            self._reconcile_pending = False
            self._user_id = user_id
            if user_id is None:
                return
            self._channel = (
                self.client.realtime.channel(CHANNEL_NAME)
                .on(
                    EVENT_ALL,
                    table=BOOKMARKS_TABLE,
                    filter=f"user_id=eq.{user_id}",
                    callback=self._on_change,
                )
                .subscribe()
            )
            self._load_locked()
        self._drain()

    def _on_change(self, notification: ChangeNotification) -> None:
        logger.debug(
            "Reconciling bookmarks after %s on %s",
            notification.action,
            notification.table,
        )
        self._reconcile_pending = True
        self._drain()

    def _drain(self) -> None:
        """Reload while a reconcile is pending and nobody else holds the lock.

        The flag is raised before the lock is tried, and every lock holder
        drains after releasing, so a notification is never lost between the
        two. The acquire never blocks: the publisher may itself hold another
        engine's lock.
        """
        while self._reconcile_pending:
            if not self._lock.acquire(blocking=False):
                return
            try:
                if self._closed or self._channel is None or self._busy:
                    return
                self._reconcile_pending = False
                self._load_locked()
            finally:
                self._lock.release()

    def _close_channel(self) -> None:
        if self._channel is not None:
            self.client.realtime.remove_channel(self._channel)
            self._channel = None
