from __future__ import annotations

from flask import jsonify, request
from flask_login import login_required

from smartmark.api import api_bp
from smartmark.errors import AuthError, BackendError, SubmissionInProgress, ValidationError
from smartmark.workspace import mount_workspace


def _user_payload(user):
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "avatar_url": user.avatar_url,
        "provider": user.provider,
    }


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Smart Bookmark"})


@api_bp.route("/session", methods=["GET"])
def session_api():
    store = mount_workspace().store
    session = store.get_current_session()
    return jsonify(
        {
            "loading": store.loading,
            "authenticated": store.is_authenticated,
            "user": _user_payload(session.user) if session else None,
            "expires_at": session.expires_at.isoformat() if session else None,
        }
    )


@api_bp.route("/bookmarks", methods=["GET"])
@login_required
def bookmarks_list_api():
    engine = mount_workspace().engine
    return jsonify(
        {
            "items": engine.bookmarks,
            "cursor": engine.cursor,
            "load_error": engine.last_load_error,
        }
    )


@api_bp.route("/bookmarks", methods=["POST"])
@login_required
def bookmarks_create_api():
    engine = mount_workspace().engine
    payload = request.get_json(silent=True) or {}
    try:
        record = engine.create(
            str(payload.get("title") or ""), str(payload.get("url") or "")
        )
    except ValidationError as exc:
        return jsonify({"error": exc.message}), 400
    except SubmissionInProgress as exc:
        return jsonify({"error": exc.message}), 409
    except AuthError as exc:
        return jsonify({"error": exc.message}), 401
    except BackendError as exc:
        return jsonify({"error": exc.message}), 502
    return jsonify(record), 201


@api_bp.route("/bookmarks/<int:bookmark_id>", methods=["DELETE"])
@login_required
def bookmarks_delete_api(bookmark_id: int):
    engine = mount_workspace().engine
    try:
        engine.delete(bookmark_id)
    except AuthError as exc:
        return jsonify({"error": exc.message}), 401
    except BackendError as exc:
        return jsonify({"error": exc.message}), 502
    return jsonify({"status": "deleted", "id": bookmark_id})


@api_bp.route("/changes", methods=["GET"])
@login_required
def changes_api():
    workspace = mount_workspace()
    user_id = workspace.engine.user_id
    since = request.args.get("since", default=0, type=int)
    limit = max(1, min(request.args.get("limit", default=200, type=int), 500))
    events = workspace.client.realtime.history(user_id, since=since, limit=limit)
    latest_cursor = since
    if events:
        latest_cursor = events[-1].id
    return jsonify(
        {
            "events": [event.as_dict() for event in events],
            "cursor": latest_cursor,
            "has_more": len(events) == limit,
        }
    )
