from __future__ import annotations

from flask import current_app, flash, redirect, render_template, request, session, url_for
from flask_login import login_required

from smartmark.errors import BackendError, ValidationError
from smartmark.web import web_bp
from smartmark.web.views import VIEW_TEMPLATES, VIEW_WORKSPACE, select_view
from smartmark.workspace import mount_workspace

FORM_STASH_KEY = "smartmark.form"


def _workspace_context(workspace) -> dict:
    engine = workspace.engine
    user = workspace.store.user
    form = session.pop(FORM_STASH_KEY, None) or {}
    return {
        "user": user,
        "bookmarks": engine.bookmarks,
        "form_title": form.get("title", ""),
        "form_url": form.get("url", ""),
        "load_error": engine.last_load_error,
        "cursor": engine.cursor,
        "poll_seconds": current_app.config["REALTIME_POLL_SECONDS"],
    }


@web_bp.route("/")
def index():
    workspace = mount_workspace()
    view = select_view(workspace.store)
    context = {}
    if view == VIEW_WORKSPACE:
        context = _workspace_context(workspace)
    return render_template(VIEW_TEMPLATES[view], **context)


@web_bp.route("/bookmarks/list")
@login_required
def bookmark_list_fragment():
    engine = mount_workspace().engine
    return render_template("_bookmark_list.html", bookmarks=engine.bookmarks)


@web_bp.route("/bookmarks", methods=["POST"])
@login_required
def add_bookmark():
    engine = mount_workspace().engine
    try:
        engine.create(request.form.get("title") or "", request.form.get("url") or "")
    except ValidationError as exc:
        flash(exc.message, "error")
        session[FORM_STASH_KEY] = {"title": engine.title, "url": engine.url}
    except BackendError as exc:
        flash(exc.message, "error")
    return redirect(url_for("web.index"))


@web_bp.route("/bookmarks/<int:bookmark_id>/delete", methods=["POST"])
@login_required
def delete_bookmark(bookmark_id: int):
    engine = mount_workspace().engine
    try:
        engine.delete(bookmark_id)
    except BackendError as exc:
        flash(exc.message, "error")
    return redirect(url_for("web.index"))
