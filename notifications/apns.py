"""
Apple Push Notification service client.

Pushes go over HTTP/2 to ``/3/device/<token>`` with a provider token (ES256
JWT) in the authorization header. Every outcome is reduced to a
``PushResult``; transport exceptions never escape ``send``.
"""

import time
from typing import Any, Dict, Optional

import httpx
import structlog
from jose import jwt

from notifications.models import PushResult, PushStatus
from utilities.config import config
from utilities.logger import short_token

logger = structlog.get_logger(__name__)

# Apple rejects provider tokens older than one hour.
TOKEN_REFRESH_SECONDS = 50 * 60

INVALID_TOKEN_REASONS = frozenset({"BadDeviceToken", "Unregistered", "DeviceTokenNotForTopic"})


def build_payload(title: str, body: str, badge: int, sound: str = "default") -> Dict[str, Any]:
    """Alert payload as sent to APNs."""
    return {
        "aps": {
            "alert": {"title": title, "body": body},
            "badge": badge,
            "sound": sound,
        }
    }


def classify_response(status_code: int, reason: Optional[str]) -> PushStatus:
    """
    Map an APNs answer to a push status.

    410 always means the token is gone. A 400 is only a token problem when
    the reason says so; otherwise it concerns the request itself.
    """
    if status_code == 200:
        return PushStatus.SUCCESS
    if status_code == 410:
        return PushStatus.INVALID
    if status_code == 400 and reason in INVALID_TOKEN_REASONS:
        return PushStatus.INVALID
    return PushStatus.FAILED


class ApnsClient:
    """
    Async APNs client with a cached provider token.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        topic: Optional[str] = None,
        key_id: Optional[str] = None,
        team_id: Optional[str] = None,
        private_key: Optional[str] = None,
    ):
        """
        Initialize the APNs client.

        Args:
            client: Optional preconfigured HTTP client (tests pass a mock transport)
            topic: App bundle identifier, defaults to the configured topic
            key_id: Signing key identifier
            team_id: Developer team identifier
            private_key: PEM encoded ES256 signing key
        """
        self.logger = logger.bind(component="apns")
        self.topic = topic or config.apns_topic
        self.key_id = key_id or config.apns_key_id
        self.team_id = team_id or config.apns_team_id
        self.private_key = private_key or config.get_apns_private_key()
        self._client = client
        self._owns_client = client is None
        self._token: Optional[str] = None
        self._token_issued_at = 0.0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=config.get_apns_host(),
                http2=True,
                timeout=config.push_timeout,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def provider_token(self) -> str:
        """Signed provider token, reused until it is close to expiry."""
        now = time.time()
        if self._token is None or now - self._token_issued_at > TOKEN_REFRESH_SECONDS:
            self._token = jwt.encode(
                {"iss": self.team_id, "iat": int(now)},
                self.private_key,
                algorithm="ES256",
                headers={"kid": self.key_id},
            )
            self._token_issued_at = now
            self.logger.debug("Issued APNs provider token", key_id=self.key_id)
        return self._token

    def is_configured(self) -> bool:
        return bool(self.key_id and self.team_id and self.private_key)

    async def send(
        self,
        device_token: str,
        payload: Dict[str, Any],
        priority: int = 10,
        push_type: str = "alert",
        timeout: Optional[float] = None,
    ) -> PushResult:
        """
        Deliver one payload to one device.

        Args:
            device_token: APNs device token (hex)
            payload: JSON payload, usually from ``build_payload``
            priority: 10 for immediate delivery, 1 for power-saving
            push_type: Value of the apns-push-type header
            timeout: Request timeout override in seconds

        Returns:
            PushResult; timeouts, connection and signing errors become FAILED
        """
        device = short_token(device_token)
        try:
            headers = {
                "authorization": f"bearer {self.provider_token()}",
                "apns-topic": self.topic,
                "apns-priority": str(priority),
                "apns-push-type": push_type,
            }
            response = await self._get_client().post(
                f"/3/device/{device_token}",
                json=payload,
                headers=headers,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except Exception as e:
            self.logger.warning("Push request failed", device=device, error=str(e), error_type=type(e).__name__)
            return PushResult(status=PushStatus.FAILED, reason=str(e) or type(e).__name__)

        reason = None
        if response.status_code != 200:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                reason = body.get("reason")
            else:
                reason = response.text or None

        status = classify_response(response.status_code, reason)
        if status == PushStatus.SUCCESS:
            self.logger.debug("Push delivered", device=device)
        else:
            self.logger.warning(
                "Push rejected",
                device=device,
                status_code=response.status_code,
                reason=reason,
                push_status=status.value,
            )
        return PushResult(status=status, status_code=response.status_code, reason=reason)

    async def check_token(self, device_token: str) -> PushResult:
        """
        Probe a token with a content-free, low-priority push.

        Only an INVALID result means the token is dead. Timeouts and other
        failures are reported as FAILED and must be treated as still valid.
        """
        return await self.send(
            device_token,
            {},
            priority=1,
            push_type="background",
            timeout=config.token_probe_timeout,
        )
