"""Request-scoped collaborators.

Long-lived clients (push gateway, OAuth, feed cache) are built once at
startup and hung on ``app.state``; routers reach them through these
dependencies so tests can swap them per app.
"""
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.core.crypto import get_cipher
from familyhub.core.db import get_db_session
from familyhub.services.credential_vault import CredentialVault
from familyhub.services.f1_feeds import F1FeedService
from familyhub.services.oauth_client import OAuthClient
from familyhub.services.push_dispatcher import PushDispatcher


async def require_session(session: Optional[AsyncSession] = Depends(get_db_session)) -> AsyncSession:
    if session is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database not configured")
    return session


def get_dispatcher(request: Request) -> PushDispatcher:
    return request.app.state.dispatcher


def get_feeds(request: Request) -> F1FeedService:
    return request.app.state.feeds


def get_oauth_client(request: Request) -> OAuthClient:
    return request.app.state.oauth_client


def get_vault(
    session: AsyncSession = Depends(require_session),
    oauth_client: OAuthClient = Depends(get_oauth_client),
) -> CredentialVault:
    try:
        cipher = get_cipher()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="APP_SECRET_KEY not configured")
    return CredentialVault(session, cipher, oauth_client)
