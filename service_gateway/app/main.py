"""
Secure Webhook Gateway service.
"""

import asyncio
import uuid
from typing import Any, Dict, Optional

import httpx
from fastapi import Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import GatewayConfig, get_gateway_config
from shared.errors import GatewayError, PayloadTooLargeError
from shared.logging import clear_context, set_request_id, set_resource_context

from .adapters.upstream_client import UpstreamClient
from .auth.credentials import CredentialStore
from .domain.clock import Clock, epoch_millis
from .domain.pipeline import GatewayHandler, InboundRequest
from .domain.resources import RESOURCES
from .incidents.incident_log import IncidentLog, IncidentType
from .ratelimit.fixed_window import FixedWindowRateLimiter, get_client_ip
from .replay.nonce_ledger import NonceLedger
from .signing.hmac_signer import RequestSigner


class GatewayService(BaseService):
    """Secure webhook gateway service implementation."""

    def __init__(self,
                 config: Optional[GatewayConfig] = None,
                 clock: Clock = epoch_millis,
                 upstream_transport: Optional[httpx.AsyncBaseTransport] = None):
        config = config if config is not None else get_gateway_config()
        super().__init__("gateway", config.port, config)
        self.clock = clock

        self.credentials = CredentialStore.from_settings(self.config.api_key, self.config.signing_key)
        self.signer = RequestSigner(self.credentials.signing_key)
        self.ledger = NonceLedger(self.config.nonce_tolerance_ms, clock=clock)
        self.rate_limiter = FixedWindowRateLimiter(
            max_requests=self.config.rate_limit_max_requests,
            window_ms=self.config.rate_limit_window_ms,
            clock=clock,
        )
        self.incidents = IncidentLog(self.config.incident_capacity, clock=clock, metrics=self.metrics)
        self.upstream_client = UpstreamClient(
            timeout=self.config.upstream_timeout_seconds,
            max_attempts=self.config.upstream_max_attempts,
            retry_delay=self.config.upstream_retry_delay_seconds,
            webhook_secret=self.config.upstream_webhook_secret,
            transport=upstream_transport,
            metrics=self.metrics,
        )
        self.handler = GatewayHandler(
            credentials=self.credentials,
            limiter=self.rate_limiter,
            ledger=self.ledger,
            signer=self.signer,
            incidents=self.incidents,
            upstream=self.upstream_client,
            config=self.config,
            metrics=self.metrics,
            clock=clock,
        )
        self._sweep_task: Optional[asyncio.Task] = None

        @self.app.on_event("startup")
        async def _startup():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            self.incidents.record(
                IncidentType.SERVER_START,
                port=self.config.port,
                env=self.config.env,
            )

        @self.app.on_event("shutdown")
        async def _shutdown():
            if self._sweep_task is not None:
                self._sweep_task.cancel()
                try:
                    await self._sweep_task
                except asyncio.CancelledError:
                    pass
                self._sweep_task = None
            await self.upstream_client.close()
            self.incidents.record(IncidentType.SERVER_SHUTDOWN)

        self._setup_gateway_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _set_rate_limit_headers(self, response: Response, rate_result: Dict[str, Any]) -> None:
        """Propagate rate limiting metadata via standard headers."""
        limit = rate_result.get("limit")
        remaining = rate_result.get("remaining")
        reset = rate_result.get("reset_in_seconds")

        if limit is not None:
            response.headers["X-RateLimit-Limit"] = str(limit)
        if remaining is not None:
            response.headers["X-RateLimit-Remaining"] = str(remaining)
        if reset is not None:
            response.headers["X-RateLimit-Reset"] = str(reset)

    def sweep(self) -> Dict[str, int]:
        """Drop expired nonces and stale rate buckets."""
        evicted = self.ledger.sweep()
        pruned = self.rate_limiter.prune()
        self.metrics.set_gauge("nonce_ledger_size", self.ledger.size)
        return {"nonces_evicted": evicted, "buckets_pruned": pruned}

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            try:
                result = self.sweep()
            except Exception as e:
                self.logger.error("Sweep failed", error=str(e), exc_info=True)
                continue
            if any(result.values()):
                self.logger.debug("Sweep completed", **result)

    async def _read_body(self, request: Request, request_id: str) -> bytes:
        """Read the body, refusing it once it passes ``max_request_bytes``.

        A declared ``Content-Length`` over the ceiling is refused before any
        byte is read; otherwise the stream is counted as it arrives.
        """
        limit = self.config.max_request_bytes
        declared = request.headers.get("Content-Length", "")
        if declared.isdigit() and int(declared) > limit:
            raise self._oversize(request, request_id, int(declared))

        body = bytearray()
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > limit:
                raise self._oversize(request, request_id, len(body))
        return bytes(body)

    def _oversize(self, request: Request, request_id: str, size: int) -> PayloadTooLargeError:
        self.incidents.record(
            IncidentType.INVALID_PAYLOAD,
            request_id=request_id,
            ip=get_client_ip(request),
            reason="too_large",
            size=size,
            limit=self.config.max_request_bytes,
        )
        return PayloadTooLargeError(self.config.max_request_bytes)

    def _setup_gateway_routes(self):
        """Set up gateway routes."""

        @self.app.post("/secure/{resource}")
        async def secure_resource(resource: str, request: Request):
            """Authenticate, verify and relay one signed request upstream."""
            request_id = set_request_id(request.headers.get("X-Request-ID") or str(uuid.uuid4()))
            set_resource_context(resource)
            inbound: Optional[InboundRequest] = None

            try:
                inbound = InboundRequest(
                    resource=resource,
                    body=await self._read_body(request, request_id),
                    request_id=request_id,
                    client_ip=get_client_ip(request),
                    api_key=request.headers.get("X-API-Key"),
                    timestamp_header=request.headers.get("X-Timestamp"),
                    signature=request.headers.get("X-Signature"),
                )
                result = await self.handler.handle(inbound)
            except GatewayError as exc:
                self.metrics.record_error(exc.code)
                response = self.error_response(exc, request_id)
            except Exception as exc:
                # Answered here so the generated request id survives into the body
                self.logger.error("Unhandled pipeline failure", error=str(exc), exc_info=True)
                internal = GatewayError("INTERNAL_ERROR", "Internal server error")
                self.metrics.record_error(internal.code)
                response = self.error_response(internal, request_id)
            else:
                response = JSONResponse(
                    status_code=result.status_code,
                    content=result.body,
                    headers=result.headers,
                )
            finally:
                clear_context()

            if inbound is not None and inbound.rate_limit is not None:
                self._set_rate_limit_headers(response, inbound.rate_limit.to_dict())
            return response

        @self.app.get("/status")
        async def security_status(request: Request):
            """Operational counters for credentialed callers."""
            request_id = set_request_id(request.headers.get("X-Request-ID") or str(uuid.uuid4()))
            try:
                self.handler.authenticate(
                    request.headers.get("X-API-Key"),
                    get_client_ip(request),
                    request_id,
                    "/status",
                )
            except GatewayError as exc:
                self.metrics.record_error(exc.code)
                return self.error_response(exc, request_id)
            finally:
                clear_context()

            recent = self.incidents.recent(self.config.status_incident_limit)
            return {
                "timestamp": self.clock(),
                "requestId": request_id,
                "config": {
                    "rateLimitWindow": self.config.rate_limit_window_ms,
                    "rateLimitMax": self.config.rate_limit_max_requests,
                    "timestampTolerance": self.config.nonce_tolerance_ms,
                    "resources": sorted(RESOURCES),
                    "signResponses": self.config.sign_responses,
                },
                "statistics": {
                    "activeApiKeys": self.credentials.active_count,
                    "storedNonces": self.ledger.size,
                    "rateLimitBuckets": self.rate_limiter.bucket_count,
                    "totalIncidents": self.incidents.total_recorded,
                    "incidentsByType": self.incidents.count_by_type(),
                    "recentIncidents": [incident.summary() for incident in recent],
                },
                "health": "healthy",
            }

    async def _check_dependencies(self):
        """Check gateway dependencies."""
        dependencies = {}
        for name, resource in sorted(RESOURCES.items()):
            configured = resource.upstream_url(self.config) is not None
            dependencies[f"upstream_{name}"] = "configured" if configured else "not_configured"
        return dependencies


def create_app():
    """Create FastAPI application."""
    service = GatewayService()
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
