import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from familyhub.core.settings import OAuthConfig

logger = logging.getLogger(__name__)

PROVIDER_SCOPES: dict[str, tuple[str, ...]] = {
    "google_calendar": (
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/calendar.events",
    ),
    "google_photos": ("https://www.googleapis.com/auth/photoslibrary.readonly",),
}


class OAuthError(Exception):
    """Raised when the provider token endpoint cannot give us a usable grant.

    ``code`` is a short machine-readable string that is safe to put in a
    redirect URL (e.g. ``token_exchange_failed``, ``invalid_grant``).
    """

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or code)
        self.code = code


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class ProviderAccount:
    user_id: Optional[str]
    email: Optional[str]


class OAuthClient:
    def __init__(self, config: OAuthConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    async def aclose(self) -> None:
        await self.client.aclose()

    @property
    def is_configured(self) -> bool:
        return bool(self.config.google_client_id and self.config.google_client_secret)

    def _client_fields(self) -> dict[str, str]:
        if not self.is_configured:
            raise OAuthError("oauth_not_configured", "Google client id/secret missing")
        return {
            "client_id": self.config.google_client_id or "",
            "client_secret": self.config.google_client_secret or "",
        }

    async def _post_token(self, form: dict[str, str]) -> TokenGrant:
        try:
            response = await self.client.post(
                self.config.token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.warning("OAuth token endpoint unreachable", extra={"error": type(exc).__name__})
            raise OAuthError("token_endpoint_unreachable", str(exc)) from exc

        try:
            body: Any = response.json()
        except ValueError:
            body = {}

        if not response.is_success:
            # Google returns {"error": "invalid_grant", "error_description": ...}
            code = body.get("error") if isinstance(body, dict) else None
            logger.warning(
                "OAuth token endpoint rejected request",
                extra={"status_code": response.status_code, "error": code},
            )
            raise OAuthError(code or "token_exchange_failed", f"HTTP {response.status_code}")

        if not isinstance(body, dict) or not body.get("access_token"):
            raise OAuthError("malformed_token_response")

        try:
            expires_in = int(body.get("expires_in", 3600))
        except (TypeError, ValueError) as exc:
            raise OAuthError("malformed_token_response") from exc

        return TokenGrant(
            access_token=body["access_token"],
            expires_in=expires_in,
            refresh_token=body.get("refresh_token") or None,
        )

    def redirect_uri(self, provider: Optional[str] = None) -> str:
        uri = self.config.google_redirect_uri or ""
        return uri.replace("{provider}", provider) if provider else uri

    def authorization_url(self, provider: str, state: str) -> str:
        client_id = self._client_fields()["client_id"]
        params = {
            "client_id": client_id,
            "redirect_uri": self.redirect_uri(provider),
            "response_type": "code",
            "scope": " ".join(PROVIDER_SCOPES[provider]),
            # A refresh token is only issued on an offline, re-consented grant
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.config.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, provider: Optional[str] = None) -> TokenGrant:
        form = {
            **self._client_fields(),
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri(provider),
        }
        return await self._post_token(form)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        form = {
            **self._client_fields(),
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        return await self._post_token(form)

    async def fetch_account(self, access_token: str) -> ProviderAccount:
        """Best effort; a failed lookup only loses the display email."""
        try:
            response = await self.client.get(
                self.config.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.info(f"Userinfo lookup failed: {exc}")
            return ProviderAccount(user_id=None, email=None)
        if not isinstance(data, dict):
            return ProviderAccount(user_id=None, email=None)
        return ProviderAccount(user_id=data.get("id"), email=data.get("email"))
