from types import SimpleNamespace

import pytest
from flask import render_template

from smartmark.errors import ValidationError
from smartmark.services.common import is_absolute_url, validate_bookmark_input
from smartmark.services.session_store import SessionStore
from smartmark.web.views import (
    VIEW_LOADING,
    VIEW_SIGNED_OUT,
    VIEW_TEMPLATES,
    VIEW_WORKSPACE,
    select_view,
)


def test_absolute_urls():
    assert is_absolute_url("https://example.com/docs")
    assert is_absolute_url("http://localhost:8080/x?y=1")
    assert not is_absolute_url("not-a-url")
    assert not is_absolute_url("ftp:/bad")
    assert not is_absolute_url("//example.com")
    assert not is_absolute_url("https://example.com:99999")
    assert not is_absolute_url("http://[::1")


def test_only_web_schemes_are_accepted():
    assert is_absolute_url("HTTPS://example.com")
    assert not is_absolute_url("javascript://x%0aalert(1)")
    assert not is_absolute_url("data://text/html,hi")
    assert not is_absolute_url("ftp://example.com/file")


def test_validate_strips_and_returns_clean_values():
    assert validate_bookmark_input("  Docs ", " https://example.com/docs ") == (
        "Docs",
        "https://example.com/docs",
    )


@pytest.mark.parametrize(
    "title,url,message",
    [
        ("", "https://x.com", "Title and URL are required"),
        ("Docs", "", "Title and URL are required"),
        ("   ", "https://x.com", "Title and URL are required"),
        (None, None, "Title and URL are required"),
        ("Docs", "ftp:/bad", "Invalid URL format"),
        ("Docs", "javascript://x%0aalert(1)", "Invalid URL format"),
    ],
)
def test_validate_rejects(title, url, message):
    with pytest.raises(ValidationError) as excinfo:
        validate_bookmark_input(title, url)
    assert excinfo.value.message == message


def test_select_view():
    assert select_view(SimpleNamespace(loading=True, is_authenticated=False)) == VIEW_LOADING
    assert (
        select_view(SimpleNamespace(loading=False, is_authenticated=False))
        == VIEW_SIGNED_OUT
    )
    assert (
        select_view(SimpleNamespace(loading=False, is_authenticated=True))
        == VIEW_WORKSPACE
    )


def test_unstarted_store_renders_loading_shell(app):
    store = SessionStore(auth=None)
    view = select_view(store)
    assert view == VIEW_LOADING

    with app.test_request_context("/"):
        html = render_template(VIEW_TEMPLATES[view])

    assert "Loading..." in html
    assert "Sign in with Google" not in html
