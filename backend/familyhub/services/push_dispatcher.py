"""Apple Push Notification delivery.

One alert per device token over HTTP/2, authenticated with a short-lived
ES256 provider token. Rejections carry the gateway's ``reason`` string
verbatim so it can land in the notification ledger.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
from jose import jwt
from jose.exceptions import JOSEError
from sqlalchemy.ext.asyncio import AsyncSession

from familyhub.core.logging import mask_token
from familyhub.core.settings import PushConfig
from familyhub.services import device_registry
from familyhub.services.external_fetch import ExternalFetchError, SleepFn, request_with_retry
from familyhub.utils.timezone import Clock, utcnow

logger = logging.getLogger(__name__)

APNS_PRODUCTION_HOST = "api.push.apple.com"
APNS_SANDBOX_HOST = "api.sandbox.push.apple.com"

# Provider tokens are valid for 60 minutes; refresh with a 10 minute margin.
TOKEN_REFRESH_AFTER = timedelta(minutes=50)

NOT_CONFIGURED = "apns_not_configured"
UNSUPPORTED_PLATFORM = "unsupported_platform"
REQUEST_FAILED = "request_failed"

# The device will never accept pushes on this token again
PRUNABLE_REASONS = frozenset({"BadDeviceToken", "Unregistered", "DeviceTokenNotForTopic"})


class ApnsTokenProvider:
    """Caches the signed provider token.

    Refresh is check-and-replace without a lock: two coroutines racing past
    expiry both sign, and the later one wins. Both tokens are valid.
    """

    def __init__(self, key_id: str, team_id: str, private_key: str, clock: Clock = utcnow) -> None:
        self.key_id = key_id
        self.team_id = team_id
        self._private_key = private_key
        self._clock = clock
        self._token: Optional[str] = None
        self._issued_at: Optional[datetime] = None

    def _sign(self, issued_at: datetime) -> str:
        iat = int(issued_at.replace(tzinfo=timezone.utc).timestamp())
        return jwt.encode(
            {"iss": self.team_id, "iat": iat},
            self._private_key,
            algorithm="ES256",
            headers={"kid": self.key_id},
        )

    def get_token(self) -> str:
        now = self._clock()
        if self._token and self._issued_at and now - self._issued_at < TOKEN_REFRESH_AFTER:
            return self._token
        self._token = self._sign(now)
        self._issued_at = now
        logger.debug("Signed new APNs provider token")
        return self._token


@dataclass
class PushPayload:
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    sound: str = "default"
    badge: Optional[int] = 1

    def to_apns(self) -> dict[str, Any]:
        aps: dict[str, Any] = {"alert": {"title": self.title, "body": self.body}, "sound": self.sound}
        if self.badge is not None:
            aps["badge"] = self.badge
        # Custom keys sit beside "aps"; they never override it
        return {**self.data, "aps": aps}


@dataclass
class DeliveryResult:
    device_token: str
    success: bool
    status_code: Optional[int] = None
    reason: Optional[str] = None

    @property
    def should_prune(self) -> bool:
        return not self.success and self.reason in PRUNABLE_REASONS


@dataclass
class DispatchSummary:
    owner_id: Optional[str]
    sent: int = 0
    total: int = 0
    failures: list[DeliveryResult] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.sent > 0

    def error_summary(self) -> Optional[str]:
        if not self.failures:
            return None
        reasons = sorted({f.reason or "unknown" for f in self.failures})
        return ", ".join(reasons)


class PushDispatcher:
    def __init__(
        self,
        config: PushConfig,
        client: Optional[httpx.AsyncClient] = None,
        clock: Clock = utcnow,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.config = config
        self._clock = clock
        self._sleep = sleep
        self._client = client
        self._token_provider: Optional[ApnsTokenProvider] = None
        self._key_error: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        """True once the signing key has actually produced a provider token."""
        if not self.config.is_configured or self._key_error:
            return False
        try:
            self.token_provider.get_token()
        except JOSEError as exc:
            self._key_error = str(exc)
            logger.error(f"APNs signing key is unusable: {exc}")
            return False
        return True

    @property
    def host(self) -> str:
        return APNS_SANDBOX_HOST if self.config.use_sandbox else APNS_PRODUCTION_HOST

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(http2=True, timeout=self.config.timeout_seconds)
        return self._client

    @property
    def token_provider(self) -> ApnsTokenProvider:
        if self._token_provider is None:
            private_key = self.config.signing_key()
            if not (self.config.key_id and self.config.team_id and private_key):
                raise RuntimeError("APNs signing key not configured")
            self._token_provider = ApnsTokenProvider(
                key_id=self.config.key_id,
                team_id=self.config.team_id,
                private_key=private_key,
                clock=self._clock,
            )
        return self._token_provider

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "authorization": f"bearer {self.token_provider.get_token()}",
            "apns-topic": self.config.bundle_id,
            "apns-push-type": "alert",
            "apns-priority": "10",
        }

    @staticmethod
    def _rejection_reason(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("reason"):
            return str(body["reason"])
        return response.text or f"HTTP {response.status_code}"

    async def send(self, device_token: str, payload: PushPayload, platform: str = "ios") -> DeliveryResult:
        if platform != "ios":
            return DeliveryResult(device_token=device_token, success=False, reason=UNSUPPORTED_PLATFORM)

        if not self.is_configured:
            logger.info(f"APNs not configured, would send '{payload.title}' to {mask_token(device_token)}")
            return DeliveryResult(device_token=device_token, success=False, reason=NOT_CONFIGURED)

        url = f"https://{self.host}/3/device/{device_token}"
        try:
            headers = self._headers()
        except JOSEError as exc:
            self._key_error = str(exc)
            logger.error(f"APNs provider token could not be signed: {exc}")
            return DeliveryResult(device_token=device_token, success=False, reason=NOT_CONFIGURED)

        try:
            response = await request_with_retry(
                self.client,
                "POST",
                url,
                max_attempts=self.config.max_attempts,
                sleep=self._sleep,
                json=payload.to_apns(),
                headers=headers,
            )
        except ExternalFetchError as exc:
            logger.error(f"APNs request failed for {mask_token(device_token)}: {exc}")
            return DeliveryResult(device_token=device_token, success=False, reason=REQUEST_FAILED)

        if response.is_success:
            return DeliveryResult(device_token=device_token, success=True, status_code=response.status_code)

        reason = self._rejection_reason(response)
        logger.warning(
            "APNs rejected notification",
            extra={"token": mask_token(device_token), "status_code": response.status_code, "reason": reason},
        )
        return DeliveryResult(
            device_token=device_token,
            success=False,
            status_code=response.status_code,
            reason=reason,
        )

    async def send_to_owner(self, session: AsyncSession, owner_id: str, payload: PushPayload) -> DispatchSummary:
        """Fans out to every device of the owner. Partial failure is reported, never raised."""
        devices = await device_registry.tokens_for_owner(session, owner_id)
        summary = DispatchSummary(owner_id=owner_id, total=len(devices))
        if not devices:
            return summary

        results = await asyncio.gather(
            *(self.send(device.token, payload, platform=device.platform) for device in devices)
        )

        for result in results:
            if result.success:
                summary.sent += 1
            else:
                summary.failures.append(result)

        dead = [r.device_token for r in summary.failures if r.should_prune]
        if dead:
            await device_registry.prune_tokens(session, dead)

        logger.info(f"Push to {owner_id}: {summary.sent}/{summary.total} delivered")
        return summary

    async def send_to_all(self, session: AsyncSession, payload: PushPayload) -> dict[str, DispatchSummary]:
        owners = await device_registry.owners_with_tokens(session)
        summaries: dict[str, DispatchSummary] = {}
        # Owners share the session, so they go one at a time
        for owner_id in owners:
            summaries[owner_id] = await self.send_to_owner(session, owner_id, payload)
        return summaries
