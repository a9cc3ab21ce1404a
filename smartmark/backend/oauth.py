from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from smartmark.errors import AuthError

logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"

DEFAULT_HEADERS = {
    "User-Agent": "SmartBookmark/1.0",
    "Accept": "application/json",
}


@dataclass
class ProviderIdentity:
    subject: str
    email: str | None
    display_name: str | None
    avatar_url: str | None


def _normalize_error(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


class GoogleOAuthProvider:
    name = "google"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_url: str,
        timeout: float = 10.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_url)

    def authorization_url(self, state: str) -> str:
        if not self.configured:
            raise AuthError("Google sign-in is not configured")
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"

    def fetch_identity(self, code: str) -> ProviderIdentity:
        if not self.configured:
            raise AuthError("Google sign-in is not configured")
        if not code:
            raise AuthError("Missing authorization code")

        try:
            with httpx.Client(timeout=self.timeout, headers=DEFAULT_HEADERS) as client:
                token_response = client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "code": code,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "redirect_uri": self.redirect_url,
                        "grant_type": "authorization_code",
                    },
                )
                token_response.raise_for_status()
                access_token = token_response.json().get("access_token")
                if not access_token:
                    raise AuthError("Identity provider returned no access token")

                info_response = client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                info_response.raise_for_status()
                info = info_response.json()
        except httpx.HTTPError as exc:
            logger.warning("Google token exchange failed: %s", exc)
            raise AuthError(
                f"Sign-in with Google failed: {_normalize_error(exc)}"
            ) from exc

        subject = str(info.get("sub") or "").strip()
        if not subject:
            raise AuthError("Identity provider returned no subject")
        return ProviderIdentity(
            subject=subject,
            email=info.get("email"),
            display_name=info.get("name"),
            avatar_url=info.get("picture"),
        )
