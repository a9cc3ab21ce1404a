from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from smartmark.backend import oauth
from smartmark.backend.auth import (
    EVENT_SIGNED_IN,
    EVENT_SIGNED_OUT,
    EVENT_TOKEN_REFRESHED,
    NONCE_STORAGE_KEY,
    SESSION_STORAGE_KEY,
    AuthClient,
)
from smartmark.backend.oauth import GoogleOAuthProvider, ProviderIdentity
from smartmark.errors import AuthError
from smartmark.extensions import db
from smartmark.models import AuthSessionToken, User, hash_token, utcnow


def _provider():
    return GoogleOAuthProvider(
        client_id="cid",
        client_secret="secret",
        redirect_url="http://localhost/auth/callback",
    )


def _client(storage=None):
    return AuthClient(_provider(), {} if storage is None else storage, secret_key="k")


def _identity(subject="sub-1"):
    return ProviderIdentity(
        subject=subject,
        email=f"{subject}@example.com",
        display_name="Ada Lovelace",
        avatar_url=None,
    )


def _state_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def _sign_in(auth: AuthClient, monkeypatch, subject="sub-1"):
    monkeypatch.setattr(
        GoogleOAuthProvider, "fetch_identity", lambda self, code: _identity(subject)
    )
    state = _state_from(auth.sign_in_with_oauth())
    return auth.exchange_code_for_session("code", state)


def test_authorization_url_carries_client_and_state():
    url = _client().sign_in_with_oauth()
    parsed = urlparse(url)
    query = parse_qs(parsed.query)

    assert parsed.netloc == "accounts.google.com"
    assert query["client_id"] == ["cid"]
    assert query["redirect_uri"] == ["http://localhost/auth/callback"]
    assert query["response_type"] == ["code"]
    assert "state" in query


def test_unconfigured_provider_refuses_sign_in():
    provider = GoogleOAuthProvider(client_id="", client_secret="", redirect_url="")
    auth = AuthClient(provider, {}, secret_key="k")

    with pytest.raises(AuthError):
        auth.sign_in_with_oauth()


def test_code_exchange_creates_user_and_session(app, monkeypatch):
    with app.app_context():
        auth = _client()
        events = []
        auth.on_auth_state_change(lambda event, session: events.append(event))

        session = _sign_in(auth, monkeypatch)

        user = User.query.one()
        assert user.provider == "google"
        assert user.provider_subject == "sub-1"
        assert session.user.id == user.id
        assert session.user.display_name == "Ada Lovelace"
        assert auth.storage[SESSION_STORAGE_KEY]["access_token"] == session.access_token
        assert NONCE_STORAGE_KEY not in auth.storage
        assert events == [EVENT_SIGNED_IN]
        assert auth.get_session().user.id == user.id


def test_repeat_sign_in_reuses_user(app, monkeypatch):
    with app.app_context():
        _sign_in(_client(), monkeypatch)
        _sign_in(_client(), monkeypatch)

        assert User.query.count() == 1
        assert AuthSessionToken.query.count() == 2


def test_tampered_state_is_rejected(app, monkeypatch):
    with app.app_context():
        auth = _client()
        monkeypatch.setattr(
            GoogleOAuthProvider, "fetch_identity", lambda self, code: _identity()
        )
        state = _state_from(auth.sign_in_with_oauth())

        with pytest.raises(AuthError):
            auth.exchange_code_for_session("code", state + "x")
        with pytest.raises(AuthError):
            _client().exchange_code_for_session("code", state)

        assert User.query.count() == 0


def test_expired_access_token_is_refreshed(app, monkeypatch):
    with app.app_context():
        auth = _client()
        original = _sign_in(auth, monkeypatch)
        row = AuthSessionToken.query.one()
        row.expires_at = utcnow() - timedelta(seconds=1)
        db.session.commit()
        events = []
        auth.on_auth_state_change(lambda event, session: events.append(event))

        refreshed = auth.get_session()

        assert refreshed is not None
        assert refreshed.user.id == original.user.id
        assert refreshed.access_token != original.access_token
        assert events == [EVENT_TOKEN_REFRESHED]
        old_row = AuthSessionToken.query.filter_by(
            access_token_hash=hash_token(original.access_token)
        ).one()
        assert old_row.revoked_at is not None


def test_expired_refresh_token_signs_out(app, monkeypatch):
    with app.app_context():
        auth = _client()
        _sign_in(auth, monkeypatch)
        row = AuthSessionToken.query.one()
        row.expires_at = utcnow() - timedelta(seconds=1)
        row.refresh_expires_at = utcnow() - timedelta(seconds=1)
        db.session.commit()
        events = []
        auth.on_auth_state_change(lambda event, session: events.append(event))

        assert auth.get_session() is None
        assert SESSION_STORAGE_KEY not in auth.storage
        assert events == [EVENT_SIGNED_OUT]


def test_sign_out_revokes_session(app, monkeypatch):
    with app.app_context():
        storage = {}
        auth = _client(storage)
        session = _sign_in(auth, monkeypatch)
        events = []
        subscription = auth.on_auth_state_change(
            lambda event, value: events.append((event, value))
        )

        auth.sign_out()

        assert events == [(EVENT_SIGNED_OUT, None)]
        assert auth.get_session() is None
        row = AuthSessionToken.query.one()
        assert row.revoked_at is not None

        # A second client holding the old token cannot revive it.
        replay = _client({SESSION_STORAGE_KEY: {"access_token": session.access_token}})
        assert replay.get_session() is None

        subscription.unsubscribe()
        subscription.unsubscribe()
        auth.sign_out()
        assert len(events) == 1


def test_fetch_identity_exchanges_code_over_http(monkeypatch):
    seen = []

    def handler(request):
        seen.append(request.url.path)
        if request.url.path == "/token":
            return httpx.Response(200, json={"access_token": "google-token"})
        assert request.headers["Authorization"] == "Bearer google-token"
        return httpx.Response(
            200,
            json={"sub": "42", "email": "ada@example.com", "name": "Ada"},
        )

    real_client = httpx.Client
    monkeypatch.setattr(
        oauth.httpx,
        "Client",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )

    identity = _provider().fetch_identity("code")

    assert seen == ["/token", "/v1/userinfo"]
    assert identity.subject == "42"
    assert identity.email == "ada@example.com"


def test_fetch_identity_wraps_http_errors(monkeypatch):
    real_client = httpx.Client
    monkeypatch.setattr(
        oauth.httpx,
        "Client",
        lambda **kwargs: real_client(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(400, json={"error": "invalid_grant"})
            ),
            **kwargs,
        ),
    )

    with pytest.raises(AuthError) as excinfo:
        _provider().fetch_identity("code")

    assert "Sign-in with Google failed" in excinfo.value.message
