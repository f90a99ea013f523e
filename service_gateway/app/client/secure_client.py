"""
Caller-side client for the Secure Webhook Gateway.

In ``ClientMode.SIGNED`` every request is wrapped in a signed envelope and
sent to ``/secure/{resource}``; the gateway's response signature is checked
before the reply is handed back. ``ClientMode.DIRECT`` posts the locally
sanitized payload straight to an upstream webhook URL with no signing. The
mode is fixed at construction and never changes for the client's lifetime.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from shared.errors import (
    ConfigurationError,
    RateLimitError,
    SignatureError,
    UpstreamApplicationError,
    UpstreamTransportError,
)
from shared.logging import get_logger, mask_secret
from shared.retry import RetryConfig, RetryError, retry_async

from ..adapters.upstream_client import UpstreamDeadlineExceeded
from ..domain.clock import Clock, epoch_millis
from ..ratelimit.fixed_window import FixedWindowRateLimiter
from ..signing.hmac_signer import RequestSigner, generate_nonce
from ..validation.sanitizer import sanitize

USER_AGENT = "SecureWebhookClient/1.0"

DEFAULT_LOCAL_LIMIT = 10


class ClientMode(str, Enum):
    SIGNED = "signed"
    DIRECT = "direct"


@dataclass
class ClientResponse:
    """A successful reply as seen by the caller."""

    data: Any
    request_id: str
    status_code: int
    attempts: int
    signature_valid: bool
    rate_limit_remaining: int


class SecureWebhookClient:
    """Sends automation requests through the gateway (or directly upstream)."""

    def __init__(self,
                 base_url: str,
                 api_key: Optional[str] = None,
                 signing_key: Optional[str] = None,
                 mode: ClientMode = ClientMode.SIGNED,
                 timeout: float = 30.0,
                 max_attempts: int = 3,
                 retry_delay: float = 1.0,
                 rate_limit_max_requests: int = DEFAULT_LOCAL_LIMIT,
                 rate_limit_window_ms: int = 60_000,
                 client_id: str = "local",
                 verify_responses: bool = True,
                 clock: Clock = epoch_millis,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        mode = ClientMode(mode)
        if mode is ClientMode.SIGNED and not (api_key and signing_key):
            raise ConfigurationError("Signed mode requires an API key and a signing key")

        self.mode = mode
        self.base_url = base_url
        self.api_key = api_key
        self.client_id = client_id
        self.verify_responses = verify_responses
        self._signer = RequestSigner(signing_key) if signing_key else None
        self._clock = clock
        self._limiter = FixedWindowRateLimiter(
            max_requests=rate_limit_max_requests,
            window_ms=rate_limit_window_ms,
            clock=clock,
        )
        self.retry_config = RetryConfig(
            max_attempts=max_attempts,
            base_delay=retry_delay,
            max_delay=max(retry_delay * max_attempts, retry_delay),
            jitter=False,
            backoff_strategy="linear",
        )
        self.timeout = timeout
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self.logger = get_logger("gateway.secure_client")

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SecureWebhookClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def build_envelope(self, payload: Mapping[str, Any], request_id: str) -> Tuple[Dict[str, Any], Dict[str, str], str]:
        """Return ``(body, headers, nonce)`` for one signed attempt."""
        nonce = generate_nonce()
        timestamp = self._clock()
        signature = self._signer.sign(payload, timestamp, nonce)
        body = {**payload, "nonce": nonce}
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-API-Key": self.api_key,
            "X-Request-ID": request_id,
            "X-Timestamp": str(timestamp),
            "X-Signature": signature,
        }
        return body, headers, nonce

    def verify_response(self, response: httpx.Response, nonce: str) -> bool:
        """Check the gateway's signature over the response body."""
        signature = response.headers.get("X-Signature")
        timestamp = response.headers.get("X-Timestamp")
        if not signature or not timestamp:
            return False
        try:
            body = response.json()
            responded_at = int(timestamp)
        except ValueError:
            return False
        if not isinstance(body, dict):
            return False
        return self._signer.verify(body, responded_at, nonce, signature)

    async def send(self, resource: str, payload: Mapping[str, Any]) -> ClientResponse:
        """Deliver ``payload`` for ``resource``.

        Raises ``RateLimitError`` when the local window is exhausted,
        ``UpstreamTransportError`` once every attempt failed to connect,
        ``UpstreamApplicationError`` for a non-2xx reply and
        ``SignatureError`` when the reply's signature does not verify.
        """
        decision = self._limiter.check(self._limiter.make_key(self.client_id, self.api_key))
        if not decision.allowed:
            raise RateLimitError(
                decision.retry_after_seconds,
                message="Rate limit exceeded. Please try again later.",
                details={"scope": "client"},
            )

        request_id = str(uuid.uuid4())
        if self.mode is ClientMode.SIGNED:
            response, attempts, nonce = await self._send_signed(resource, dict(payload), request_id)
        else:
            response, attempts = await self._send_direct(dict(payload), request_id)
            nonce = None

        if not response.is_success:
            raise UpstreamApplicationError(
                response.status_code,
                body=response.text[:500],
                message=self._error_message(response),
            )

        signature_valid = False
        if nonce is not None and self.verify_responses:
            signature_valid = self.verify_response(response, nonce)
            if not signature_valid:
                self.logger.warning("Response signature verification failed", request_id=request_id)
                raise SignatureError("Response signature verification failed", {"requestId": request_id})

        body = self._parse_body(response)
        data = body.get("data") if self.mode is ClientMode.SIGNED and isinstance(body, dict) else body
        return ClientResponse(
            data=data,
            request_id=response.headers.get("X-Request-ID", request_id),
            status_code=response.status_code,
            attempts=attempts,
            signature_valid=signature_valid,
            rate_limit_remaining=decision.remaining,
        )

    async def _send_signed(self, resource: str, payload: Dict[str, Any], request_id: str):
        attempts = 0
        nonce = ""

        async def _post() -> httpx.Response:
            nonlocal attempts, nonce
            attempts += 1
            # Each attempt gets a fresh nonce and timestamp so a retry is never a replay.
            body, headers, nonce = self.build_envelope(payload, request_id)
            return await self._client.post(f"/secure/{resource}", json=body, headers=headers)

        response = await self._with_retries(_post, request_id)
        return response, attempts, nonce

    async def _send_direct(self, payload: Dict[str, Any], request_id: str):
        attempts = 0
        body = {
            key: sanitize(value) if isinstance(value, str) else value
            for key, value in payload.items()
        }
        body.update({"requestId": request_id, "timestamp": self._clock()})
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Request-ID": request_id,
        }

        async def _post() -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return await self._client.post(self.base_url, json=body, headers=headers)

        response = await self._with_retries(_post, request_id)
        return response, attempts

    async def _with_retries(self, func, request_id: str) -> httpx.Response:
        async def _attempt() -> httpx.Response:
            try:
                return await asyncio.wait_for(func(), self.timeout)
            except asyncio.TimeoutError:
                raise UpstreamDeadlineExceeded(f"No complete reply within {self.timeout}s") from None

        def _on_retry(attempt: int, exc: BaseException) -> None:
            self.logger.warning(
                "Request attempt failed, retrying",
                request_id=request_id,
                attempt=attempt,
                error=type(exc).__name__,
            )

        try:
            return await retry_async(
                _attempt,
                exceptions=(httpx.TransportError,),
                config=self.retry_config,
                on_retry=_on_retry,
            )
        except RetryError as exc:
            self.logger.error(
                "Secure webhook request failed",
                request_id=request_id,
                client_id=self.client_id,
                api_key=mask_secret(self.api_key),
                attempts=exc.attempts,
                error=str(exc.last_exception),
            )
            raise UpstreamTransportError(
                "Service timeout",
                details={"attempts": exc.attempts},
                attempts=exc.attempts,
            ) from exc.last_exception

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"output": response.text}

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return "Request failed"
        if isinstance(body, dict) and isinstance(body.get("error"), str):
            return body["error"]
        return "Request failed"
