"""
Upstream automation endpoint client for Gateway.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from shared.errors import UpstreamApplicationError, UpstreamTransportError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, retry_async

USER_AGENT = "SecureWebhookGateway/1.0"

# Only failures below the HTTP layer are retried.
TRANSPORT_ERRORS = (httpx.TransportError,)

MAX_ERROR_BODY_CHARS = 500


class UpstreamDeadlineExceeded(httpx.TimeoutException):
    """The whole attempt, body included, outlived the hard deadline."""


class _NonFiniteNumber(Exception):
    pass


def _reject_non_finite(constant: str) -> float:
    raise _NonFiniteNumber(constant)


def _finite_float(text: str) -> float:
    value = float(text)
    # Overflowing literals such as 1e999 decode to inf
    if not math.isfinite(value):
        raise _NonFiniteNumber(text)
    return value


@dataclass
class UpstreamResponse:
    """A 2xx reply from the upstream endpoint."""

    status_code: int
    data: Any
    attempts: int
    duration: float


class UpstreamClient:
    """Forwards sanitized payloads to upstream webhooks.

    Every attempt runs under a hard timeout. Timeouts and connection
    failures are retried with linear backoff up to ``max_attempts``; any HTTP
    response, including 4xx/5xx, ends the loop immediately.
    """

    def __init__(self,
                 timeout: float = 30.0,
                 max_attempts: int = 3,
                 retry_delay: float = 1.0,
                 webhook_secret: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.timeout = timeout
        self.webhook_secret = webhook_secret
        self.metrics = metrics
        self.retry_config = RetryConfig(
            max_attempts=max_attempts,
            base_delay=retry_delay,
            max_delay=max(retry_delay * max_attempts, retry_delay),
            jitter=False,
            backoff_strategy="linear",
        )
        self.logger = get_logger("gateway.upstream_client")
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _headers(self, request_id: str) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Request-ID": request_id,
        }
        if self.webhook_secret:
            headers["X-Webhook-Secret"] = self.webhook_secret
        return headers

    async def forward(self, url: str, payload: Dict[str, Any], request_id: str,
                      resource: str = "default") -> UpstreamResponse:
        """POST ``payload`` to ``url`` and return the parsed 2xx body."""
        attempts = 0
        headers = self._headers(request_id)

        async def _post() -> httpx.Response:
            nonlocal attempts
            attempts += 1
            # httpx timeouts bound each phase; the deadline bounds the attempt
            try:
                return await asyncio.wait_for(
                    self._client.post(url, json=payload, headers=headers),
                    self.timeout,
                )
            except asyncio.TimeoutError:
                raise UpstreamDeadlineExceeded(f"No complete reply within {self.timeout}s") from None

        def _on_retry(attempt: int, exc: BaseException) -> None:
            self.logger.warning(
                "Upstream transport failure, retrying",
                request_id=request_id,
                attempt=attempt,
                error=type(exc).__name__,
            )
            if self.metrics is not None:
                self.metrics.increment_counter("upstream_retries_total", resource=resource)

        start = time.time()
        try:
            response = await retry_async(
                _post,
                exceptions=TRANSPORT_ERRORS,
                config=self.retry_config,
                on_retry=_on_retry,
            )
        except RetryError as exc:
            duration = time.time() - start
            self._observe(resource, "transport_error", duration)
            timed_out = isinstance(exc.last_exception, httpx.TimeoutException)
            self.logger.error(
                "Upstream unreachable after retries",
                request_id=request_id,
                attempts=exc.attempts,
                timed_out=timed_out,
                error=str(exc.last_exception),
            )
            raise UpstreamTransportError(
                "Service timeout",
                details={
                    "reason": "timeout" if timed_out else "connection_failure",
                    "attempts": exc.attempts,
                },
                attempts=exc.attempts,
            ) from exc.last_exception

        duration = time.time() - start
        self.logger.info(
            "Upstream responded",
            request_id=request_id,
            status_code=response.status_code,
            attempts=attempts,
        )

        if not response.is_success:
            self._observe(resource, "application_error", duration)
            raise UpstreamApplicationError(
                response.status_code,
                body=response.text[:MAX_ERROR_BODY_CHARS],
            )

        try:
            data = self._parse_body(response)
        except UpstreamApplicationError:
            self._observe(resource, "invalid_reply", duration)
            self.logger.error(
                "Upstream reply not relayable",
                request_id=request_id,
                status_code=response.status_code,
            )
            raise

        self._observe(resource, "success", duration)
        return UpstreamResponse(
            status_code=response.status_code,
            data=data,
            attempts=attempts,
            duration=duration,
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        """Decode a 2xx body; non-JSON text is wrapped as ``{"output": text}``.

        NaN and infinities can not be re-signed as canonical JSON, so a reply
        carrying them is refused as a bad gateway.
        """
        if not response.content:
            return {}
        try:
            return response.json(parse_constant=_reject_non_finite, parse_float=_finite_float)
        except _NonFiniteNumber:
            raise UpstreamApplicationError(
                502,
                body=response.text[:MAX_ERROR_BODY_CHARS],
                message="Upstream reply contains non-finite numbers",
            ) from None
        except ValueError:
            return {"output": response.text}

    def _observe(self, resource: str, outcome: str, duration: float) -> None:
        if self.metrics is None:
            return
        self.metrics.increment_counter("upstream_requests_total", resource=resource, outcome=outcome)
        self.metrics.observe_histogram("upstream_duration_seconds", duration, resource=resource)
