"""Caller authentication for the notification API.

User sessions are issued by the managed auth backend; this module only
verifies the HS256 access token it hands out. Cron triggers authenticate with
a shared bearer secret instead.
"""
from __future__ import annotations

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from familyhub.core.settings import Settings, get_settings

bearer_scheme = HTTPBearer(auto_error=False)

OAUTH_STATE_TTL = timedelta(minutes=10)
# Distinguishes state tokens from session tokens signed with the same secret
OAUTH_STATE_PURPOSE = "oauth_state"


class InvalidOAuthState(Exception):
    pass


def decode_access_token(token: str, settings: Settings) -> dict:
    options = {"verify_aud": False}
    try:
        payload = jwt.decode(
            token,
            settings.security.jwt_secret,
            algorithms=["HS256"],
            issuer=settings.security.jwt_issuer,
            options=options,
        )
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid auth")
    if not payload.get("sub") or payload.get("purpose") == OAUTH_STATE_PURPOSE:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid auth")
    return payload


def get_current_owner(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Auth required")
    payload = decode_access_token(credentials.credentials, settings)
    return str(payload["sub"])


def cron_auth_required(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.security.cron_secret
    if not expected:
        # Trigger routes stay closed until a secret is configured
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="CRON_SECRET not configured")

    header = request.headers.get("authorization", "")
    if not hmac.compare_digest(header, f"Bearer {expected}"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def create_oauth_state(owner_id: str, provider: str, settings: Settings, now: Optional[datetime] = None) -> str:
    """Signed ``state`` for the consent redirect: owner, provider, nonce, 10 minute expiry."""
    now = now or datetime.now(timezone.utc)
    claims = {
        "sub": owner_id,
        "provider": provider,
        "nonce": secrets.token_hex(16),
        "purpose": OAUTH_STATE_PURPOSE,
        "iat": int(now.timestamp()),
        "exp": int((now + OAUTH_STATE_TTL).timestamp()),
    }
    return jwt.encode(claims, settings.security.jwt_secret, algorithm="HS256")


def verify_oauth_state(state: str, provider: str, settings: Settings) -> str:
    """Returns the owner id carried by ``state``; raises InvalidOAuthState otherwise."""
    try:
        payload = jwt.decode(state, settings.security.jwt_secret, algorithms=["HS256"], options={"verify_aud": False})
    except JWTError as exc:
        raise InvalidOAuthState(str(exc)) from exc
    if payload.get("purpose") != OAUTH_STATE_PURPOSE:
        raise InvalidOAuthState("not an OAuth state token")
    if payload.get("provider") != provider:
        raise InvalidOAuthState("provider mismatch")
    if not payload.get("sub") or not payload.get("nonce"):
        raise InvalidOAuthState("incomplete state")
    return str(payload["sub"])
