import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from familyhub.api.deps import get_oauth_client, get_vault
from familyhub.core.security import InvalidOAuthState, create_oauth_state, get_current_owner, verify_oauth_state
from familyhub.core.settings import Settings, get_settings
from familyhub.models.oauth_integration import OAuthProvider
from familyhub.services.credential_vault import CredentialVault
from familyhub.services.oauth_client import OAuthClient, OAuthError

router = APIRouter()
logger = logging.getLogger(__name__)

SETTINGS_PAGE = "/settings"


def _settings_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(url=f"{SETTINGS_PAGE}?{urlencode(params)}", status_code=status.HTTP_302_FOUND)


def _provider(provider: str) -> OAuthProvider:
    try:
        return OAuthProvider(provider)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown provider: {provider}")


@router.get("/{provider}/auth", summary="Consent URL for connecting an integration")
async def authorization_url(
    provider: str,
    owner_id: str = Depends(get_current_owner),
    oauth_client: OAuthClient = Depends(get_oauth_client),
    settings: Settings = Depends(get_settings),
) -> dict:
    integration = _provider(provider)
    if not oauth_client.is_configured:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Google OAuth not configured")
    state = create_oauth_state(owner_id, integration.value, settings)
    return {"url": oauth_client.authorization_url(integration.value, state)}


@router.get("/{provider}/callback", summary="OAuth redirect target", response_model=None)
async def oauth_callback(
    provider: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    vault: CredentialVault = Depends(get_vault),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """The browser lands here without a bearer header; the owner comes from
    the signed ``state`` issued by the auth route."""
    integration = _provider(provider)
    if error:
        return _settings_redirect(google_error=error)
    if not code:
        return _settings_redirect(google_error="no_code")
    if not state:
        return _settings_redirect(google_error="not_authenticated")

    try:
        owner_id = verify_oauth_state(state, integration.value, settings)
    except InvalidOAuthState as exc:
        logger.warning(f"Rejected {integration.value} callback state: {exc}")
        return _settings_redirect(google_error="invalid_state")

    try:
        await vault.complete_authorization(owner_id, integration, code)
    except OAuthError as exc:
        logger.warning(f"OAuth exchange for {integration.value} failed: {exc.code}")
        return _settings_redirect(google_error=exc.code)
    except SQLAlchemyError as exc:
        logger.error(f"Could not store {integration.value} credentials for {owner_id}: {exc}")
        return _settings_redirect(google_error="db_error")

    return _settings_redirect(google_connected="true")


@router.get("/{provider}", summary="Connection status")
async def integration_status(
    provider: str,
    owner_id: str = Depends(get_current_owner),
    vault: CredentialVault = Depends(get_vault),
) -> dict:
    integration = _provider(provider)
    return {"provider": integration.value, "connected": await vault.is_connected(owner_id, integration)}


@router.delete("/{provider}", summary="Disconnect an integration")
async def disconnect_integration(
    provider: str,
    owner_id: str = Depends(get_current_owner),
    vault: CredentialVault = Depends(get_vault),
) -> dict:
    integration = _provider(provider)
    removed = await vault.disconnect(owner_id, integration)
    return {"success": True, "removed": removed}
