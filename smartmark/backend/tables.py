from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from smartmark.backend.realtime import (
    EVENT_DELETE,
    EVENT_INSERT,
    ChangeNotification,
    RealtimeFeed,
)
from smartmark.errors import BackendError
from smartmark.extensions import db
from smartmark.models import Bookmark, ChangeEvent

logger = logging.getLogger(__name__)


def _backend_message(exc: Exception) -> str:
    message = str(getattr(exc, "orig", None) or exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def log_change_event(
    user_id: int, table_name: str, action: str, record_id: int | None, payload: dict
) -> ChangeEvent:
    event = ChangeEvent(
        user_id=user_id,
        table_name=table_name,
        action=action,
        record_id=record_id,
        payload=payload,
    )
    db.session.add(event)
    return event


class BookmarkTable:
    """Owner-scoped access to the ``bookmarks`` table.

    Every call is scoped to ``owner_id``; rows belonging to anyone else are
    invisible. Committed writes are recorded as change events and published
    to the realtime feed.
    """

    table_name = Bookmark.__tablename__

    def __init__(self, feed: RealtimeFeed):
        self.feed = feed

    def select_for_owner(self, owner_id: int) -> list[dict]:
        self._require_owner(owner_id)
        try:
            rows = (
                Bookmark.query.filter_by(user_id=owner_id)
                .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
                .all()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise BackendError(_backend_message(exc)) from exc
        return [row.as_dict() for row in rows]

    def insert(self, owner_id: int, title: str, url: str) -> dict:
        self._require_owner(owner_id)
        try:
            bookmark = Bookmark(user_id=owner_id, title=title, url=url)
            db.session.add(bookmark)
            db.session.flush()
            record = bookmark.as_dict()
            event = log_change_event(
                owner_id, self.table_name, EVENT_INSERT, bookmark.id, record
            )
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Bookmark insert failed for user %s: %s", owner_id, exc)
            raise BackendError(_backend_message(exc)) from exc

        self.feed.publish(
            ChangeNotification(
                table=self.table_name,
                action=EVENT_INSERT,
                user_id=owner_id,
                record=record,
                cursor=event.id,
            )
        )
        return record

    def delete(self, bookmark_id: int, owner_id: int) -> dict | None:
        """Delete one row; returns the deleted record, or None when no row matched."""
        self._require_owner(owner_id)
        try:
            bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=owner_id).first()
            if not bookmark:
                return None
            record = bookmark.as_dict()
            event = log_change_event(
                owner_id, self.table_name, EVENT_DELETE, bookmark.id, record
            )
            db.session.delete(bookmark)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning(
                "Bookmark delete %s failed for user %s: %s", bookmark_id, owner_id, exc
            )
            raise BackendError(_backend_message(exc)) from exc

        self.feed.publish(
            ChangeNotification(
                table=self.table_name,
                action=EVENT_DELETE,
                user_id=owner_id,
                record=record,
                cursor=event.id,
            )
        )
        return record

    @staticmethod
    def _require_owner(owner_id) -> None:
        if owner_id is None:
            raise BackendError("permission denied for table bookmarks")
