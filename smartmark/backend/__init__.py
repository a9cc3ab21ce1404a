from __future__ import annotations

from collections.abc import MutableMapping
from dataclasses import dataclass

from flask import Flask

from smartmark.backend.auth import AuthClient
from smartmark.backend.oauth import GoogleOAuthProvider
from smartmark.backend.realtime import RealtimeFeed
from smartmark.backend.tables import BookmarkTable

REALTIME_EXTENSION_KEY = "smartmark.realtime"


@dataclass
class BackendClient:
    """Handle on the hosted backend: identity, table store and change feed."""

    auth: AuthClient
    bookmarks: BookmarkTable
    realtime: RealtimeFeed


def init_realtime(app: Flask) -> RealtimeFeed:
    feed = RealtimeFeed()
    app.extensions[REALTIME_EXTENSION_KEY] = feed
    return feed


def get_realtime_feed(app: Flask) -> RealtimeFeed:
    return app.extensions[REALTIME_EXTENSION_KEY]


def build_oauth_provider(app: Flask) -> GoogleOAuthProvider:
    return GoogleOAuthProvider(
        client_id=app.config["OAUTH_GOOGLE_CLIENT_ID"],
        client_secret=app.config["OAUTH_GOOGLE_CLIENT_SECRET"],
        redirect_url=app.config["OAUTH_REDIRECT_URL"],
        timeout=app.config["OAUTH_HTTP_TIMEOUT"],
    )


def create_backend_client(app: Flask, storage: MutableMapping) -> BackendClient:
    feed = get_realtime_feed(app)
    auth = AuthClient(
        build_oauth_provider(app),
        storage,
        secret_key=app.config["SECRET_KEY"],
        access_ttl_seconds=app.config["ACCESS_TOKEN_TTL_SECONDS"],
        refresh_ttl_seconds=app.config["REFRESH_TOKEN_TTL_SECONDS"],
        state_max_age=app.config["OAUTH_STATE_MAX_AGE"],
    )
    return BackendClient(auth=auth, bookmarks=BookmarkTable(feed), realtime=feed)
