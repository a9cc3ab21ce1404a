from __future__ import annotations

from dataclasses import dataclass

from flask import (
    Flask,
    current_app,
    g,
    jsonify,
    redirect,
    request,
    session,
    url_for,
)

from smartmark.backend import BackendClient, create_backend_client
from smartmark.backend.auth import SESSION_STORAGE_KEY
from smartmark.extensions import db, login_manager
from smartmark.models import User
from smartmark.services.session_store import SessionStore
from smartmark.services.sync_engine import BookmarkSyncEngine


@dataclass
class Workspace:
    client: BackendClient
    store: SessionStore
    engine: BookmarkSyncEngine

    def close(self) -> None:
        self.engine.close()
        self.store.close()


def _request_storage():
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header.removeprefix("Bearer ").strip()
        if not token:
            return {}
        return {SESSION_STORAGE_KEY: {"access_token": token}}
    return session


def mount_workspace() -> Workspace:
    """Build the backend handle, session store and sync engine for this request.

    Everything is torn down again when the request ends.
    """
    workspace = g.get("workspace")
    if workspace is not None:
        return workspace

    client = create_backend_client(current_app._get_current_object(), _request_storage())
    store = SessionStore(client.auth)
    engine = BookmarkSyncEngine(client, store)
    engine.start()
    store.start()
    workspace = Workspace(client=client, store=store, engine=engine)
    g.workspace = workspace
    return workspace


@login_manager.request_loader
def load_user_from_request(_request):
    user = mount_workspace().store.user
    if user is None:
        return None
    return db.session.get(User, user.id)


@login_manager.unauthorized_handler
def unauthorized():
    if request.blueprint == "api":
        return jsonify({"error": "authentication required"}), 401
    return redirect(url_for("web.index"))


def init_workspace(app: Flask) -> None:
    @app.teardown_request
    def unmount_workspace(_exc):
        workspace = g.pop("workspace", None)
        if workspace is not None:
            workspace.close()
