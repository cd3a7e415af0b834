"""Webhook execution target.

An execution whose target is a webhook bypasses device sessions entirely:
the input is POSTed as ``{"input": ...}`` and the HTTP response becomes the
outcome (2xx is success, the body is the output).
"""

from __future__ import annotations

import time
from dataclasses import dataclass

import httpx

from pulpit.models.entities import ExecutionOutcome
from pulpit.models.enums import DeliveryChannel, ExecutionStatus
from pulpit.observability.logging import get_logger

logger = get_logger(__name__)

# Default timeout for webhook HTTP requests (seconds).
DEFAULT_WEBHOOK_TIMEOUT = 30.0


@dataclass(frozen=True)
class WebhookResult:
    url: str
    status_code: int
    success: bool
    elapsed_ms: float
    body: str | None = None
    error: str | None = None

    def to_outcome(self) -> ExecutionOutcome:
        return ExecutionOutcome(
            status=ExecutionStatus.SUCCEEDED if self.success else ExecutionStatus.FAILED,
            channel=DeliveryChannel.WEBHOOK,
            success=self.success,
            output=self.body,
            error=self.error,
        )


class WebhookCaller:
    """POSTs execution input to a webhook URL.

    Example:
        >>> caller = WebhookCaller()
        >>> outcome = await caller.call("https://example.com/deploy", input="main")
        >>> outcome.success, outcome.output
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_WEBHOOK_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._external_client = client

    async def post(self, url: str, input: str | None = None) -> WebhookResult:
        payload = {"input": input} if input is not None else {}
        start = time.monotonic()
        try:
            if self._external_client is not None:
                response = await self._external_client.post(url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                    response = await client.post(url, json=payload)
        except httpx.TimeoutException as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "pulpit.webhook.timeout",
                url=url,
                timeout_seconds=self._timeout_seconds,
                elapsed_ms=round(elapsed_ms, 1),
            )
            return WebhookResult(
                url=url,
                status_code=0,
                success=False,
                elapsed_ms=round(elapsed_ms, 1),
                error=f"Timeout after {self._timeout_seconds}s: {exc}",
            )
        except httpx.HTTPError as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.warning(
                "pulpit.webhook.failed",
                url=url,
                error=str(exc),
                elapsed_ms=round(elapsed_ms, 1),
            )
            return WebhookResult(
                url=url,
                status_code=0,
                success=False,
                elapsed_ms=round(elapsed_ms, 1),
                error=str(exc) or type(exc).__name__,
            )

        elapsed_ms = (time.monotonic() - start) * 1000
        success = response.is_success
        logger.info(
            "pulpit.webhook.called",
            url=url,
            status_code=response.status_code,
            success=success,
            elapsed_ms=round(elapsed_ms, 1),
        )
        return WebhookResult(
            url=url,
            status_code=response.status_code,
            success=success,
            elapsed_ms=round(elapsed_ms, 1),
            body=response.text,
            error=None if success else f"HTTP {response.status_code}",
        )

    async def call(self, url: str, input: str | None = None) -> ExecutionOutcome:
        """POST to ``url`` and map the response to an ExecutionOutcome."""
        result = await self.post(url, input)
        return result.to_outcome()


__all__ = ["DEFAULT_WEBHOOK_TIMEOUT", "WebhookCaller", "WebhookResult"]
