from flask import flash, redirect, request, url_for

from smartmark.auth import auth_bp
from smartmark.errors import AuthError
from smartmark.workspace import mount_workspace


@auth_bp.route("/login", methods=["POST"])
def login():
    workspace = mount_workspace()
    if workspace.store.is_authenticated:
        return redirect(url_for("web.index"))

    try:
        authorization_url = workspace.client.auth.sign_in_with_oauth()
    except AuthError as exc:
        flash(exc.message, "error")
        return redirect(url_for("web.index"))
    return redirect(authorization_url)


@auth_bp.route("/auth/callback")
def oauth_callback():
    provider_error = request.args.get("error")
    if provider_error:
        flash(f"Sign-in was cancelled ({provider_error}).", "error")
        return redirect(url_for("web.index"))

    workspace = mount_workspace()
    try:
        workspace.client.auth.exchange_code_for_session(
            request.args.get("code") or "", request.args.get("state") or ""
        )
    except AuthError as exc:
        flash(exc.message, "error")
    return redirect(url_for("web.index"))


@auth_bp.route("/logout", methods=["POST"])
def logout():
    mount_workspace().client.auth.sign_out()
    return redirect(url_for("web.index"))
