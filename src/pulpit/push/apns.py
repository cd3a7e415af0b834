"""APNs push dispatcher.

Talks HTTP/2 to Apple's provider API with token-based authentication:
an ES256 JWT (``iss`` = team id, ``kid`` = key id) signed with the .p8 key
and reused until it is 50 minutes old (Apple rejects tokens older than an
hour and throttles tokens refreshed more often than every 20 minutes).
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import httpx
from joserfc import jwt as jose_jwt
from joserfc.jwk import ECKey

from pulpit.config import APNsSettings
from pulpit.errors import PushDeliveryError
from pulpit.models.types import CorrelationID, DeviceToken
from pulpit.observability.logging import get_logger
from pulpit.observability.metrics import MetricsCollector, get_metrics

logger = get_logger(__name__)

APNS_PRODUCTION_HOST = "https://api.push.apple.com"
APNS_SANDBOX_HOST = "https://api.sandbox.push.apple.com"

JWT_ALG_ES256 = "ES256"
PROVIDER_TOKEN_TTL_SECONDS = 50 * 60
DEFAULT_APNS_TIMEOUT = 10.0

APNS_PRIORITY_IMMEDIATE = "10"
APNS_PRIORITY_BACKGROUND = "5"


class ProviderTokenSigner:
    """Signs and caches the APNs provider token.

    Thread-safe; the cached token is replaced once it reaches the TTL.
    """

    def __init__(
        self,
        signing_key: str,
        key_id: str,
        team_id: str,
        ttl_seconds: float = PROVIDER_TOKEN_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._key = ECKey.import_key(signing_key)
        self._key_id = key_id
        self._team_id = team_id
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._token: str | None = None
        self._issued_at = 0.0

    def token(self) -> str:
        with self._lock:
            now = self._clock()
            if self._token is None or now - self._issued_at >= self._ttl_seconds:
                header = {"alg": JWT_ALG_ES256, "kid": self._key_id}
                claims = {"iss": self._team_id, "iat": int(now)}
                self._token = jose_jwt.encode(
                    header, claims, self._key, algorithms=[JWT_ALG_ES256]
                )
                self._issued_at = now
                logger.debug("pulpit.apns.token_refreshed", key_id=self._key_id)
            return self._token


def build_command_payload(
    command_id: CorrelationID, name: str, input: str | None = None
) -> dict[str, Any]:
    """Silent push body carrying an execute_shortcut command.

    Example:
        >>> build_command_payload("01HX", "backup")["aps"]
        {'content-available': 1}
    """
    command: dict[str, Any] = {
        "type": "execute_shortcut",
        "id": command_id,
        "shortcutName": name,
    }
    if input is not None:
        command["input"] = input
    return {"aps": {"content-available": 1}, "command": command}


def build_alert_payload(
    title: str | None,
    text: str | None,
    metadata: dict[str, Any] | None = None,
    *,
    sound: str | None = None,
    thread_id: str | None = None,
    is_time_sensitive: bool = False,
    image: str | None = None,
) -> dict[str, Any]:
    """Visible notification body; ``metadata`` rides along under ``preacher``."""
    aps: dict[str, Any] = {
        "alert": {"title": title or "", "body": text or ""},
        "mutable-content": 1,
        "interruption-level": "time-sensitive" if is_time_sensitive else "active",
    }
    if sound != "vibrateOnly":
        aps["sound"] = sound or "default"
    if thread_id:
        aps["thread-id"] = thread_id
    payload: dict[str, Any] = {"aps": aps, "preacher": metadata or {}}
    if image:
        payload["image"] = image
    return payload


class APNsDispatcher:
    """PushDispatcher backed by the APNs HTTP/2 provider API.

    Example:
        >>> dispatcher = APNsDispatcher.from_settings(settings.apns)
        >>> await dispatcher.send_command(device.push_token, "01HX...", "backup")
        >>> await dispatcher.aclose()
    """

    def __init__(
        self,
        signer: ProviderTokenSigner,
        bundle_id: str,
        *,
        production: bool = False,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_APNS_TIMEOUT,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._signer = signer
        self._bundle_id = bundle_id
        self._host = APNS_PRODUCTION_HOST if production else APNS_SANDBOX_HOST
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(http2=True, timeout=timeout_seconds)
        self._metrics = metrics or get_metrics()

    @classmethod
    def from_settings(
        cls, settings: APNsSettings, client: httpx.AsyncClient | None = None
    ) -> APNsDispatcher:
        """Load the signing key from disk and build a dispatcher.

        Raises:
            FileNotFoundError: If the key file does not exist
        """
        signing_key = settings.key_path.read_text(encoding="utf-8")
        signer = ProviderTokenSigner(signing_key, settings.key_id, settings.team_id)
        logger.info(
            "pulpit.apns.initialized",
            key_id=settings.key_id,
            team_id=settings.team_id,
            bundle_id=settings.bundle_id,
            environment="production" if settings.production else "sandbox",
        )
        return cls(signer, settings.bundle_id, production=settings.production, client=client)

    @property
    def host(self) -> str:
        return self._host

    async def send_command(
        self,
        device_token: DeviceToken,
        command_id: CorrelationID,
        name: str,
        input: str | None = None,
    ) -> None:
        await self._post(
            device_token,
            build_command_payload(command_id, name, input),
            push_type="background",
            priority=APNS_PRIORITY_BACKGROUND,
        )

    async def send_alert(
        self,
        device_token: DeviceToken,
        title: str | None,
        text: str | None,
        metadata: dict[str, Any] | None = None,
        *,
        sound: str | None = None,
        thread_id: str | None = None,
        is_time_sensitive: bool = False,
        image: str | None = None,
    ) -> None:
        payload = build_alert_payload(
            title,
            text,
            metadata,
            sound=sound,
            thread_id=thread_id,
            is_time_sensitive=is_time_sensitive,
            image=image,
        )
        await self._post(
            device_token, payload, push_type="alert", priority=APNS_PRIORITY_IMMEDIATE
        )

    async def _post(
        self,
        device_token: DeviceToken,
        payload: dict[str, Any],
        *,
        push_type: str,
        priority: str,
    ) -> None:
        headers = {
            "authorization": f"bearer {self._signer.token()}",
            "apns-topic": self._bundle_id,
            "apns-push-type": push_type,
            "apns-priority": priority,
        }
        url = f"{self._host}/3/device/{device_token}"
        try:
            response = await self._client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            self._metrics.increment_counter("pulpit_push_errors_total", {"reason": "network"})
            raise PushDeliveryError(0, str(exc) or type(exc).__name__) from exc

        if response.status_code == 200:
            self._metrics.increment_counter("pulpit_push_sent_total", {"push_type": push_type})
            logger.debug(
                "pulpit.apns.sent",
                push_type=push_type,
                apns_id=response.headers.get("apns-id"),
            )
            return

        reason = _error_reason(response)
        self._metrics.increment_counter("pulpit_push_errors_total", {"reason": reason})
        if reason in ("BadDeviceToken", "Unregistered"):
            logger.warning("pulpit.apns.bad_device_token", reason=reason)
        raise PushDeliveryError(response.status_code, reason)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _error_reason(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(body, dict) and isinstance(body.get("reason"), str):
        return body["reason"]
    return f"HTTP {response.status_code}"


__all__ = [
    "APNS_PRODUCTION_HOST",
    "APNS_SANDBOX_HOST",
    "APNsDispatcher",
    "ProviderTokenSigner",
    "build_alert_payload",
    "build_command_payload",
]
