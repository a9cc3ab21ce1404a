from __future__ import annotations

import logging
import secrets
from collections.abc import MutableMapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from itsdangerous import BadData, URLSafeTimedSerializer
from sqlalchemy.exc import SQLAlchemyError

from smartmark.backend.oauth import GoogleOAuthProvider
from smartmark.errors import AuthError
from smartmark.extensions import db
from smartmark.models import AuthSessionToken, User, as_utc, hash_token, utcnow

logger = logging.getLogger(__name__)

EVENT_INITIAL_SESSION = "INITIAL_SESSION"
EVENT_SIGNED_IN = "SIGNED_IN"
EVENT_SIGNED_OUT = "SIGNED_OUT"
EVENT_TOKEN_REFRESHED = "TOKEN_REFRESHED"

SESSION_STORAGE_KEY = "smartmark.auth"
NONCE_STORAGE_KEY = "smartmark.oauth_nonce"


@dataclass(frozen=True)
class SessionUser:
    id: int
    provider: str
    email: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_model(cls, user: User) -> SessionUser:
        return cls(
            id=user.id,
            provider=user.provider,
            email=user.email,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
        )

    @property
    def label(self) -> str:
        return self.display_name or self.email or f"user {self.id}"


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    refresh_token: str | None
    expires_at: datetime
    user: SessionUser

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or utcnow())


class AuthSubscription:
    def __init__(self, client: AuthClient, callback):
        self._client = client
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._client._remove_subscription(self)


class AuthClient:
    """Session management on top of an OAuth identity provider.

    ``storage`` is where the browser-side session is persisted between
    requests (the Flask session in the web app, a plain dict in tests).
    """

    def __init__(
        self,
        provider: GoogleOAuthProvider,
        storage: MutableMapping,
        secret_key: str,
        access_ttl_seconds: int = 3600,
        refresh_ttl_seconds: int = 30 * 24 * 3600,
        state_max_age: int = 600,
    ):
        self.provider = provider
        self.storage = storage
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.state_max_age = state_max_age
        self._serializer = URLSafeTimedSerializer(secret_key, salt="oauth-state")
        self._subscriptions: list[AuthSubscription] = []

    def on_auth_state_change(
        self, callback: Callable[[str, AuthSession | None], None]
    ) -> AuthSubscription:
        subscription = AuthSubscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def get_session(self) -> AuthSession | None:
        stored = self.storage.get(SESSION_STORAGE_KEY)
        if not stored:
            return None

        access_token = stored.get("access_token") or ""
        row = AuthSessionToken.query.filter_by(
            access_token_hash=hash_token(access_token)
        ).first()
        if row is None or row.revoked_at is not None:
            self._forget()
            return None
        if as_utc(row.expires_at) <= utcnow():
            return self.refresh_session()
        return self._session_from(row, access_token, stored.get("refresh_token"))

    def sign_in_with_oauth(self) -> str:
        nonce = secrets.token_urlsafe(16)
        self.storage[NONCE_STORAGE_KEY] = nonce
        state = self._serializer.dumps({"nonce": nonce, "provider": self.provider.name})
        return self.provider.authorization_url(state)

    def exchange_code_for_session(self, code: str, state: str) -> AuthSession:
        try:
            payload = self._serializer.loads(state or "", max_age=self.state_max_age)
        except BadData as exc:
            raise AuthError("Sign-in request expired or was tampered with") from exc
        expected_nonce = self.storage.pop(NONCE_STORAGE_KEY, None)
        if not expected_nonce or payload.get("nonce") != expected_nonce:
            raise AuthError("Sign-in request expired or was tampered with")

        identity = self.provider.fetch_identity(code)
        try:
            user = User.query.filter_by(
                provider=self.provider.name, provider_subject=identity.subject
            ).first()
            if not user:
                user = User(provider=self.provider.name, provider_subject=identity.subject)
                db.session.add(user)
            user.email = identity.email
            user.display_name = identity.display_name
            user.avatar_url = identity.avatar_url
            db.session.flush()
            session = self._issue(user)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise AuthError(f"Could not start a session: {exc}") from exc

        logger.info("User %s signed in with %s", user.id, self.provider.name)
        self._emit(EVENT_SIGNED_IN, session)
        return session

    def refresh_session(self) -> AuthSession | None:
        stored = self.storage.get(SESSION_STORAGE_KEY) or {}
        refresh_token = stored.get("refresh_token")
        row = None
        if refresh_token:
            row = AuthSessionToken.query.filter_by(
                refresh_token_hash=hash_token(refresh_token)
            ).first()

        if (
            row is None
            or row.revoked_at is not None
            or as_utc(row.refresh_expires_at) <= utcnow()
        ):
            had_session = bool(stored)
            self._forget()
            if had_session:
                self._emit(EVENT_SIGNED_OUT, None)
            return None

        row.revoked_at = utcnow()
        session = self._issue(row.user)
        db.session.commit()
        logger.debug("Refreshed session for user %s", row.user_id)
        self._emit(EVENT_TOKEN_REFRESHED, session)
        return session

    def sign_out(self) -> None:
        stored = self.storage.get(SESSION_STORAGE_KEY) or {}
        access_token = stored.get("access_token")
        if access_token:
            row = AuthSessionToken.query.filter_by(
                access_token_hash=hash_token(access_token)
            ).first()
            if row and row.revoked_at is None:
                row.revoked_at = utcnow()
                db.session.commit()
                logger.info("User %s signed out", row.user_id)
        self._forget()
        self._emit(EVENT_SIGNED_OUT, None)

    def _issue(self, user: User) -> AuthSession:
        now = utcnow()
        access_token, access_hash = AuthSessionToken.issue_token("sma")
        refresh_token, refresh_hash = AuthSessionToken.issue_token("smr")
        row = AuthSessionToken(
            user_id=user.id,
            access_token_hash=access_hash,
            refresh_token_hash=refresh_hash,
            expires_at=now + timedelta(seconds=self.access_ttl_seconds),
            refresh_expires_at=now + timedelta(seconds=self.refresh_ttl_seconds),
        )
        db.session.add(row)
        self.storage[SESSION_STORAGE_KEY] = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": row.expires_at.isoformat(),
        }
        return AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=row.expires_at,
            user=SessionUser.from_model(user),
        )

    def _session_from(
        self, row: AuthSessionToken, access_token: str, refresh_token: str | None
    ) -> AuthSession:
        return AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=as_utc(row.expires_at),
            user=SessionUser.from_model(row.user),
        )

    def _forget(self) -> None:
        self.storage.pop(SESSION_STORAGE_KEY, None)

    def _emit(self, event: str, session: AuthSession | None) -> None:
        for subscription in list(self._subscriptions):
            if subscription.active:
                subscription.callback(event, session)

    def _remove_subscription(self, subscription: AuthSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
