"""
Request pipeline for ``POST /secure/{resource}``.

Every inbound request walks the same ordered gates::

    RECEIVED -> AUTHENTICATED -> RATE_CHECKED -> SIGNATURE_VERIFIED
      -> REPLAY_CHECKED -> VALIDATED -> SANITIZED -> FORWARDING
      -> RESPONDED | FAILED

A gate that refuses the request raises its ``GatewayError`` subclass and
appends one incident. No gate is skipped and none runs out of order.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from shared.errors import (
    AuthenticationError,
    ConfigurationError,
    GatewayError,
    PayloadError,
    RateLimitError,
    ReplayError,
    ResourceNotFoundError,
    SignatureError,
    UpstreamApplicationError,
    UpstreamTransportError,
    ValidationError,
)
from shared.logging import get_logger, set_client_context
from shared.metrics import MetricsCollector

from ..adapters.upstream_client import UpstreamClient
from ..auth.credentials import CallerIdentity, CredentialStore
from ..incidents.incident_log import IncidentLog, IncidentType
from ..ratelimit.fixed_window import FixedWindowRateLimiter, RateLimitDecision
from ..replay.nonce_ledger import NonceLedger
from ..signing.hmac_signer import RequestSigner
from ..validation.validator import validate_payload
from .clock import Clock, epoch_millis
from .resources import SecureResource, get_resource, sanitize_fields

NONCE_FIELD = "nonce"


class RequestState(str, Enum):
    RECEIVED = "RECEIVED"
    AUTHENTICATED = "AUTHENTICATED"
    RATE_CHECKED = "RATE_CHECKED"
    SIGNATURE_VERIFIED = "SIGNATURE_VERIFIED"
    REPLAY_CHECKED = "REPLAY_CHECKED"
    VALIDATED = "VALIDATED"
    SANITIZED = "SANITIZED"
    FORWARDING = "FORWARDING"
    RESPONDED = "RESPONDED"
    FAILED = "FAILED"


@dataclass
class InboundRequest:
    """One request as it moves through the pipeline.

    The transport layer fills in the raw inputs; the handler records the
    state reached and the rate-limit decision so error responses can still
    carry rate-limit headers.
    """

    resource: str
    body: bytes
    request_id: str
    client_ip: str
    api_key: Optional[str] = None
    timestamp_header: Optional[str] = None
    signature: Optional[str] = None

    state: RequestState = RequestState.RECEIVED
    history: List[RequestState] = field(default_factory=lambda: [RequestState.RECEIVED])
    rate_limit: Optional[RateLimitDecision] = None

    def advance(self, state: RequestState) -> None:
        self.state = state
        self.history.append(state)


@dataclass
class GatewayResult:
    """A successful, relayable response."""

    body: Dict[str, Any]
    headers: Dict[str, str]
    status_code: int = 200


class GatewayHandler:
    """Runs the pipeline against the shared, injected stores."""

    def __init__(self,
                 credentials: CredentialStore,
                 limiter: FixedWindowRateLimiter,
                 ledger: NonceLedger,
                 signer: RequestSigner,
                 incidents: IncidentLog,
                 upstream: UpstreamClient,
                 config: Any,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Clock = epoch_millis):
        self.credentials = credentials
        self.limiter = limiter
        self.ledger = ledger
        self.signer = signer
        self.incidents = incidents
        self.upstream = upstream
        self.config = config
        self.metrics = metrics
        self._clock = clock
        self.logger = get_logger("gateway.pipeline")

    async def handle(self, request: InboundRequest) -> GatewayResult:
        """Process ``request``; raises ``GatewayError`` from the refusing gate."""
        try:
            result = await self._run(request)
        except GatewayError as exc:
            failed_at = request.state
            request.advance(RequestState.FAILED)
            if self.metrics is not None:
                self.metrics.increment_counter(
                    "pipeline_rejections_total", stage=failed_at.value, code=exc.code
                )
            self.logger.warning(
                "Request refused",
                request_id=request.request_id,
                resource=request.resource,
                after_state=failed_at.value,
                code=exc.code,
                status_code=exc.status_code,
            )
            raise
        except Exception as exc:
            request.advance(RequestState.FAILED)
            self.incidents.record(
                IncidentType.WEBHOOK_ERROR,
                request_id=request.request_id,
                resource=request.resource,
                error=type(exc).__name__,
            )
            raise

        request.advance(RequestState.RESPONDED)
        self.logger.info(
            "Request relayed",
            request_id=request.request_id,
            resource=request.resource,
        )
        return result

    async def _run(self, request: InboundRequest) -> GatewayResult:
        resource = self._resolve(request)

        caller = self._authenticate(request)
        request.advance(RequestState.AUTHENTICATED)

        self._check_rate(request, caller)
        request.advance(RequestState.RATE_CHECKED)

        payload, nonce, timestamp = self._verify_signature(request)
        request.advance(RequestState.SIGNATURE_VERIFIED)

        self._check_replay(request, nonce, timestamp)
        request.advance(RequestState.REPLAY_CHECKED)

        self._validate(request, resource, payload)
        request.advance(RequestState.VALIDATED)

        fields = sanitize_fields(resource.schema, payload)
        request.advance(RequestState.SANITIZED)

        request.advance(RequestState.FORWARDING)
        data = await self._forward(request, resource, fields)

        return self._respond(request, data, nonce)

    def _resolve(self, request: InboundRequest) -> SecureResource:
        resource = get_resource(request.resource)
        if resource is None:
            self.incidents.record(
                IncidentType.NOT_FOUND,
                request_id=request.request_id,
                resource=request.resource,
                ip=request.client_ip,
            )
            raise ResourceNotFoundError(request.resource)
        return resource

    def authenticate(self, api_key: Optional[str], client_ip: str, request_id: str, path: str) -> CallerIdentity:
        """Resolve the caller's credential, recording an incident on failure."""
        try:
            caller = self.credentials.authenticate(api_key)
        except AuthenticationError as exc:
            missing = exc.details.get("reason") == "missing"
            self.incidents.record(
                IncidentType.MISSING_API_KEY if missing else IncidentType.INVALID_API_KEY,
                request_id=request_id,
                ip=client_ip,
                path=path,
            )
            raise
        set_client_context(caller.masked)
        return caller

    def _authenticate(self, request: InboundRequest) -> CallerIdentity:
        return self.authenticate(
            request.api_key,
            request.client_ip,
            request.request_id,
            f"/secure/{request.resource}",
        )

    def _check_rate(self, request: InboundRequest, caller: CallerIdentity) -> None:
        key = self.limiter.make_key(request.client_ip, caller.api_key)
        decision = self.limiter.check(key)
        request.rate_limit = decision
        if decision.allowed:
            return

        if self.metrics is not None:
            self.metrics.increment_counter("rate_limit_hits_total", resource=request.resource)
        self.incidents.record(
            IncidentType.RATE_LIMIT_EXCEEDED,
            request_id=request.request_id,
            ip=request.client_ip,
            api_key=caller.masked,
            count=decision.count,
        )
        raise RateLimitError(
            decision.retry_after_seconds,
            details={"limit": decision.limit, "resetAt": decision.reset_at},
        )

    def _parse_body(self, request: InboundRequest) -> Dict[str, Any]:
        try:
            body = json.loads(request.body or b"")
        except (ValueError, UnicodeDecodeError):
            body = None
        if not isinstance(body, dict):
            self.incidents.record(
                IncidentType.INVALID_PAYLOAD,
                request_id=request.request_id,
                ip=request.client_ip,
            )
            raise PayloadError("Request body must be a JSON object")
        return body

    def _verify_signature(self, request: InboundRequest):
        body = self._parse_body(request)
        nonce = body.get(NONCE_FIELD)

        missing = [
            name for name, value in (
                ("X-Timestamp", request.timestamp_header),
                ("X-Signature", request.signature),
                (NONCE_FIELD, nonce),
            )
            if not value
        ]
        if missing:
            self.incidents.record(
                IncidentType.MISSING_SECURITY_HEADERS,
                request_id=request.request_id,
                ip=request.client_ip,
                missing=missing,
            )
            raise SignatureError("Missing security headers", {"missing": missing})

        if not isinstance(nonce, str):
            self.incidents.record(
                IncidentType.INVALID_PAYLOAD,
                request_id=request.request_id,
                ip=request.client_ip,
            )
            raise PayloadError("nonce must be a string")

        try:
            timestamp = int(request.timestamp_header.strip())
        except ValueError:
            self.incidents.record(
                IncidentType.INVALID_TIMESTAMP,
                request_id=request.request_id,
                ip=request.client_ip,
                header_timestamp=request.timestamp_header,
            )
            raise SignatureError("Invalid timestamp", {"reason": "unparseable"})

        now = self._clock()
        if not self.ledger.is_fresh(timestamp, now=now):
            self.incidents.record(
                IncidentType.INVALID_TIMESTAMP,
                request_id=request.request_id,
                ip=request.client_ip,
                header_timestamp=timestamp,
                skew_ms=now - timestamp,
            )
            raise SignatureError("Request expired or timestamp invalid", {"reason": "stale"})

        payload = {key: value for key, value in body.items() if key != NONCE_FIELD}
        if not self.signer.verify(payload, timestamp, nonce, request.signature):
            self.incidents.record(
                IncidentType.INVALID_SIGNATURE,
                request_id=request.request_id,
                ip=request.client_ip,
            )
            raise SignatureError("Invalid signature", {"reason": "mismatch"})

        return payload, nonce, timestamp

    def _check_replay(self, request: InboundRequest, nonce: str, timestamp: int) -> None:
        if self.ledger.accept(nonce, timestamp):
            return
        self.incidents.record(
            IncidentType.REPLAY_ATTACK,
            request_id=request.request_id,
            ip=request.client_ip,
            nonce=nonce[:8],
        )
        raise ReplayError()

    def _validate(self, request: InboundRequest, resource: SecureResource, payload: Dict[str, Any]) -> None:
        errors = validate_payload(resource.schema, payload)
        if not errors:
            return
        self.incidents.record(
            IncidentType.VALIDATION_FAILED,
            request_id=request.request_id,
            resource=resource.name,
            errors=errors,
        )
        raise ValidationError(errors)

    async def _forward(self, request: InboundRequest, resource: SecureResource,
                       fields: Dict[str, Any]) -> Any:
        url = resource.upstream_url(self.config)
        if not url:
            self.incidents.record(
                IncidentType.CONFIGURATION_ERROR,
                request_id=request.request_id,
                resource=resource.name,
                setting=resource.url_setting,
            )
            raise ConfigurationError(
                "Service configuration error",
                {"setting": resource.url_setting},
            )

        upstream_payload = resource.build_upstream_payload(fields, request.request_id, self._clock())
        try:
            reply = await self.upstream.forward(url, upstream_payload, request.request_id, resource=resource.name)
        except UpstreamTransportError as exc:
            self.incidents.record(
                IncidentType.UPSTREAM_TIMEOUT,
                request_id=request.request_id,
                resource=resource.name,
                attempts=exc.attempts,
            )
            raise
        except UpstreamApplicationError as exc:
            self.incidents.record(
                IncidentType.UPSTREAM_ERROR,
                request_id=request.request_id,
                resource=resource.name,
                upstream_status=exc.upstream_status,
            )
            raise
        return resource.shape_reply(reply.data)

    def _respond(self, request: InboundRequest, data: Any, nonce: str) -> GatewayResult:
        responded_at = self._clock()
        body = {
            "success": True,
            "data": data,
            "requestId": request.request_id,
            "timestamp": responded_at,
        }
        headers = {"X-Request-ID": request.request_id}
        if getattr(self.config, "sign_responses", True):
            headers["X-Signature"] = self.signer.sign(body, responded_at, nonce)
            headers["X-Timestamp"] = str(responded_at)
        return GatewayResult(body=body, headers=headers)
