from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from smartmark.errors import BackendError
from smartmark.extensions import db
from smartmark.models import ChangeEvent

logger = logging.getLogger(__name__)

EVENT_INSERT = "INSERT"
EVENT_UPDATE = "UPDATE"
EVENT_DELETE = "DELETE"
EVENT_ALL = "*"

CHANGE_EVENTS = {EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE}


@dataclass(frozen=True)
class ChangeNotification:
    table: str
    action: str
    user_id: int
    record: dict = field(default_factory=dict)
    cursor: int | None = None


def parse_row_filter(expression: str | None) -> tuple[str, str] | None:
    """Parse a ``column=eq.value`` filter. Only equality is supported."""
    if not expression:
        return None
    column, sep, rest = expression.partition("=")
    operator, dot, value = rest.partition(".")
    if not sep or not dot or operator != "eq" or not column.strip():
        raise ValueError(f"unsupported realtime filter: {expression!r}")
    return column.strip(), value


@dataclass
class _Binding:
    event: str
    table: str
    callback: Callable[[ChangeNotification], None]
    row_filter: tuple[str, str] | None = None

    def matches(self, notification: ChangeNotification) -> bool:
        if self.table != notification.table:
            return False
        if self.event != EVENT_ALL and self.event != notification.action:
            return False
        if self.row_filter is None:
            return True
        column, value = self.row_filter
        if column == "user_id":
            return str(notification.user_id) == value
        return str(notification.record.get(column)) == value


class Channel:
    def __init__(self, feed: RealtimeFeed, name: str):
        self.feed = feed
        self.name = name
        self._bindings: list[_Binding] = []
        self._subscribed = False
        self._closed = False

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    def on(
        self,
        event: str,
        table: str,
        callback: Callable[[ChangeNotification], None],
        filter: str | None = None,
    ) -> Channel:
        if event != EVENT_ALL and event not in CHANGE_EVENTS:
            raise ValueError(f"unknown change event: {event!r}")
        self._bindings.append(
            _Binding(
                event=event,
                table=table,
                callback=callback,
                row_filter=parse_row_filter(filter),
            )
        )
        return self

    def subscribe(self) -> Channel:
        if self._closed:
            raise RuntimeError(f"channel {self.name!r} was already removed")
        if not self._subscribed:
            self.feed._attach(self)
            self._subscribed = True
        return self

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._subscribed = False
        self.feed._detach(self)

    def _dispatch(self, notification: ChangeNotification) -> None:
        for binding in list(self._bindings):
            # The channel may be removed by an earlier binding's callback.
            if not self._subscribed:
                return
            if binding.matches(notification):
                binding.callback(notification)


class RealtimeFeed:
    """In-process broker for row-level change notifications.

    Notifications are delivered synchronously on the publishing thread, after
    the write they describe has been committed.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._channels: list[Channel] = []

    def channel(self, name: str) -> Channel:
        return Channel(self, name)

    def remove_channel(self, channel: Channel) -> None:
        channel.unsubscribe()

    @property
    def channel_count(self) -> int:
        with self._lock:
            return len(self._channels)

    def publish(self, notification: ChangeNotification) -> None:
        with self._lock:
            channels = list(self._channels)
        for channel in channels:
            try:
                channel._dispatch(notification)
            except Exception:
                logger.exception(
                    "Realtime subscriber %s failed on %s %s",
                    channel.name,
                    notification.action,
                    notification.table,
                )

    def history(self, user_id: int, since: int = 0, limit: int = 200) -> list[ChangeEvent]:
        return (
            ChangeEvent.query.filter_by(user_id=user_id)
            .filter(ChangeEvent.id > since)
            .order_by(ChangeEvent.id.asc())
            .limit(limit)
            .all()
        )

    def latest_cursor(self, user_id: int) -> int:
        try:
            row = (
                ChangeEvent.query.filter_by(user_id=user_id)
                .order_by(ChangeEvent.id.desc())
                .first()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise BackendError(str(exc)) from exc
        return row.id if row else 0

    def _attach(self, channel: Channel) -> None:
        with self._lock:
            self._channels.append(channel)

    def _detach(self, channel: Channel) -> None:
        with self._lock:
            if channel in self._channels:
                self._channels.remove(channel)
