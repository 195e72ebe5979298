"""Encrypted OAuth credentials with transparent refresh.

Tokens are Fernet-encrypted at rest. Callers only ever see a plaintext access
token or ``None``; ``None`` means "not connected or no longer usable" and the
owner has to go through the consent flow again.
"""
import logging
from datetime import timedelta
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.core.crypto import CipherError, TokenCipher
from familyhub.models.oauth_integration import OAuthIntegration, OAuthProvider
from familyhub.services.oauth_client import OAuthClient, OAuthError, TokenGrant
from familyhub.utils.timezone import Clock, utcnow

logger = logging.getLogger(__name__)

# Refresh this long before the provider-reported expiry
EXPIRY_BUFFER = timedelta(minutes=5)

ProviderLike = Union[OAuthProvider, str]


def _provider_value(provider: ProviderLike) -> str:
    return OAuthProvider(provider).value


class CredentialVault:
    def __init__(
        self,
        session: AsyncSession,
        cipher: TokenCipher,
        oauth_client: OAuthClient,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self.cipher = cipher
        self.oauth_client = oauth_client
        self.clock = clock

    async def _load(self, owner_id: str, provider: ProviderLike) -> Optional[OAuthIntegration]:
        stmt = select(OAuthIntegration).where(
            OAuthIntegration.user_id == owner_id,
            OAuthIntegration.provider == _provider_value(provider),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def is_connected(self, owner_id: str, provider: ProviderLike) -> bool:
        return await self._load(owner_id, provider) is not None

    async def get_valid_access_token(self, owner_id: str, provider: ProviderLike) -> Optional[str]:
        record = await self._load(owner_id, provider)
        if record is None:
            return None

        now = self.clock()
        if record.token_expires_at - EXPIRY_BUFFER > now:
            try:
                return self.cipher.decrypt(record.access_token_enc)
            except CipherError as exc:
                logger.error(f"Stored access token for {owner_id}/{record.provider} unreadable: {exc}")
                return None

        if not record.refresh_token_enc:
            logger.info(f"Access token for {owner_id}/{record.provider} expired and no refresh token stored")
            return None

        try:
            refresh_token = self.cipher.decrypt(record.refresh_token_enc)
        except CipherError as exc:
            logger.error(f"Stored refresh token for {owner_id}/{record.provider} unreadable: {exc}")
            return None

        try:
            grant = await self.oauth_client.refresh(refresh_token)
        except OAuthError as exc:
            logger.warning(
                "Token refresh failed",
                extra={"user_id": owner_id, "provider": record.provider, "error": exc.code},
            )
            return None

        # Concurrent refreshes for the same row race here; last write wins.
        self._apply_grant(record, grant, now)
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(f"Failed to persist refreshed token for {owner_id}/{record.provider}: {exc}")
            return None

        logger.info(f"Refreshed access token for {owner_id}/{record.provider}")
        return grant.access_token

    def _apply_grant(self, record: OAuthIntegration, grant: TokenGrant, now) -> None:
        record.access_token_enc = self.cipher.encrypt(grant.access_token)
        record.token_expires_at = now + timedelta(seconds=grant.expires_in)
        if grant.refresh_token:
            record.refresh_token_enc = self.cipher.encrypt(grant.refresh_token)
        record.updated_at = now

    async def complete_authorization(self, owner_id: str, provider: ProviderLike, code: str) -> OAuthIntegration:
        """Exchanges an authorization code and upserts the encrypted pair.

        Raises OAuthError on exchange failure; database errors propagate.
        """
        grant = await self.oauth_client.exchange_code(code, _provider_value(provider))
        account = await self.oauth_client.fetch_account(grant.access_token)
        now = self.clock()

        record = await self._load(owner_id, provider)
        if record is None:
            record = OAuthIntegration(
                user_id=owner_id,
                provider=_provider_value(provider),
                created_at=now,
            )
            self.session.add(record)

        self._apply_grant(record, grant, now)
        record.provider_user_id = account.user_id or record.provider_user_id
        record.provider_email = account.email or record.provider_email

        await self.session.commit()
        logger.info(f"Connected {record.provider} for {owner_id}")
        return record

    async def disconnect(self, owner_id: str, provider: ProviderLike) -> bool:
        record = await self._load(owner_id, provider)
        if record is None:
            return False
        await self.session.delete(record)
        await self.session.commit()
        return True
