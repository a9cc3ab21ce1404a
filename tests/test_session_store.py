from datetime import timedelta

from smartmark.backend.auth import (
    EVENT_INITIAL_SESSION,
    EVENT_SIGNED_IN,
    EVENT_SIGNED_OUT,
    EVENT_TOKEN_REFRESHED,
    AuthSession,
    SessionUser,
)
from smartmark.errors import AuthError
from smartmark.models import utcnow
from smartmark.services.session_store import SessionStore


class FakeAuth:
    def __init__(self, session=None, error=None):
        self.session = session
        self.error = error
        self.subscriptions = []

    def get_session(self):
        if self.error:
            raise self.error
        return self.session

    def on_auth_state_change(self, callback):
        subscription = FakeSubscription(self, callback)
        self.subscriptions.append(subscription)
        return subscription

    def emit(self, event, session):
        for subscription in list(self.subscriptions):
            subscription.callback(event, session)


class FakeSubscription:
    def __init__(self, auth, callback):
        self.auth = auth
        self.callback = callback
        self.unsubscribe_calls = 0

    def unsubscribe(self):
        self.unsubscribe_calls += 1
        if self in self.auth.subscriptions:
            self.auth.subscriptions.remove(self)


def _session(user_id=1, token="access"):
    return AuthSession(
        access_token=token,
        refresh_token="refresh",
        expires_at=utcnow() + timedelta(hours=1),
        user=SessionUser(id=user_id, provider="google", display_name="Ada"),
    )


def test_loading_until_initial_session_resolves():
    session = _session()
    store = SessionStore(FakeAuth(session))
    events = []
    store.subscribe(lambda event, value: events.append((event, value)))

    assert store.loading is True
    assert store.get_current_session() is None

    store.start()

    assert store.loading is False
    assert store.get_current_session() is session
    assert store.user.id == 1
    assert store.is_authenticated is True
    assert events == [(EVENT_INITIAL_SESSION, session)]


def test_initial_fetch_failure_still_finishes_loading():
    store = SessionStore(FakeAuth(error=AuthError("provider unavailable"))).start()

    assert store.loading is False
    assert store.session is None
    assert store.is_authenticated is False


def test_provider_events_replace_session():
    auth = FakeAuth(None)
    store = SessionStore(auth).start()
    events = []
    store.subscribe(lambda event, value: events.append(event))

    signed_in = _session()
    auth.emit(EVENT_SIGNED_IN, signed_in)
    assert store.session is signed_in

    refreshed = _session(token="rotated")
    auth.emit(EVENT_TOKEN_REFRESHED, refreshed)
    assert store.session is refreshed
    assert store.user.id == 1

    auth.emit(EVENT_SIGNED_OUT, None)
    assert store.session is None
    assert store.user is None
    assert events == [EVENT_SIGNED_IN, EVENT_TOKEN_REFRESHED, EVENT_SIGNED_OUT]


def test_unsubscribed_listener_stops_receiving():
    auth = FakeAuth(None)
    store = SessionStore(auth).start()
    events = []
    unsubscribe = store.subscribe(lambda event, value: events.append(event))

    unsubscribe()
    unsubscribe()
    auth.emit(EVENT_SIGNED_IN, _session())

    assert events == []
    assert store.is_authenticated is True


def test_close_is_idempotent_and_ignores_late_events():
    auth = FakeAuth(_session())
    store = SessionStore(auth).start()
    subscription = auth.subscriptions[0]
    late = []
    store.subscribe(lambda event, value: late.append(event))

    store.close()
    store.close()

    assert subscription.unsubscribe_calls == 1
    assert auth.subscriptions == []

    # A callback captured before teardown must not touch state.
    subscription.callback(EVENT_SIGNED_OUT, None)
    assert store.session is not None
    assert late == []


def test_start_after_close_does_nothing():
    auth = FakeAuth(_session())
    store = SessionStore(auth)
    store.close()
    store.start()

    assert auth.subscriptions == []
    assert store.session is None
