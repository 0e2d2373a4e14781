"""
Outbound side of the OAuth authorization-code grant.

Only Google is wired up; anything else that implements the same four
methods can be registered under its own name in ``app.extensions``.
"""

from dataclasses import dataclass
from typing import Optional

from authlib.common.errors import AuthlibBaseError
from authlib.integrations.requests_client import OAuth2Session
from flask import current_app
from requests import RequestException

from security.errors import ProviderError

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

HTTP_TIMEOUT_SECONDS = 10


@dataclass
class OAuthProfile:
    provider_user_id: str
    email: Optional[str]
    email_verified: bool
    name: str
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    picture: Optional[str] = None


class GoogleProvider:
    name = "google"
    scope = "email profile"

    def __init__(self, client_id=None, client_secret=None, callback_url=None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url

    @classmethod
    def from_config(cls, config):
        return cls(
            client_id=config.get("GOOGLE_CLIENT_ID"),
            client_secret=config.get("GOOGLE_CLIENT_SECRET"),
            callback_url=config.get("GOOGLE_CALLBACK_URL"),
        )

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.callback_url)

    def _client(self, token=None) -> OAuth2Session:
        return OAuth2Session(
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=self.scope,
            redirect_uri=self.callback_url,
            token=token,
        )

    def authorization_url(self, state: str) -> str:
        with self._client() as client:
            url, _ = client.create_authorization_url(
                GOOGLE_AUTH_URL,
                state=state,
                response_type="code",
                prompt="select_account",  # always show the account chooser
            )
        return url

    def exchange_code(self, code: str) -> dict:
        try:
            with self._client() as client:
                token = client.fetch_token(
                    GOOGLE_TOKEN_URL,
                    code=code,
                    grant_type="authorization_code",
                    timeout=HTTP_TIMEOUT_SECONDS,
                )
        except (AuthlibBaseError, RequestException, ValueError) as exc:
            raise ProviderError(str(exc), code="token_exchange_failed")

        if not token.get("access_token"):
            raise ProviderError("no access_token in token response", code="token_exchange_failed")
        return dict(token)

    def fetch_profile(self, access_token: str) -> OAuthProfile:
        try:
            with self._client(token={"access_token": access_token, "token_type": "Bearer"}) as client:
                resp = client.get(GOOGLE_USERINFO_URL, timeout=HTTP_TIMEOUT_SECONDS)
                resp.raise_for_status()
                data = resp.json()
        except (RequestException, ValueError) as exc:
            raise ProviderError(str(exc), code="userinfo_failed")

        if not data.get("id"):
            raise ProviderError("userinfo response without id", code="userinfo_failed")

        return OAuthProfile(
            provider_user_id=str(data["id"]),
            email=(data.get("email") or "").strip().lower() or None,
            email_verified=bool(data.get("verified_email")),
            name=data.get("name") or "",
            given_name=data.get("given_name"),
            family_name=data.get("family_name"),
            picture=data.get("picture"),
        )


def init_oauth_providers(app) -> dict:
    providers = {"google": GoogleProvider.from_config(app.config)}
    app.extensions["oauth_providers"] = providers
    return providers


def get_provider(name: str):
    return current_app.extensions["oauth_providers"].get(name)


def configured_providers() -> dict:
    return {
        name: provider
        for name, provider in current_app.extensions["oauth_providers"].items()
        if provider.is_configured()
    }
