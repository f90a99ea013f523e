"""
Shared error handling for the Secure Webhook Gateway.

Every terminal failure of the request pipeline is a ``GatewayError``
subclass. The HTTP status travels with the exception so the service's
exception handler stays a single mapping.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


Details = Union[Dict[str, Any], List[Any]]


class ErrorResponse(BaseModel):
    """Standard error response format."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    code: str
    error: str
    details: Details = Field(default_factory=dict)
    request_id: Optional[str] = Field(default=None, alias="requestId")
    retry_after: Optional[int] = Field(default=None, alias="retryAfter")

    def to_body(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class GatewayError(Exception):
    """Base exception for gateway services."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Details] = None):
        self.code = code
        self.message = message
        self.details = details if details is not None else {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            error=self.message,
            details=self.details,
            request_id=request_id,
        )


class AuthenticationError(GatewayError):
    """Missing or unknown credential."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Details] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class SignatureError(GatewayError):
    """Missing security headers, stale timestamp or bad MAC."""

    status_code = 401

    def __init__(self, message: str = "Invalid signature", details: Optional[Details] = None):
        super().__init__("SIGNATURE_ERROR", message, details)


class ReplayError(GatewayError):
    """Nonce already seen inside the tolerance window."""

    status_code = 401

    def __init__(self, message: str = "Invalid nonce (possible replay attack)", details: Optional[Details] = None):
        super().__init__("REPLAY_ERROR", message, details)


class RateLimitError(GatewayError):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, retry_after: int, message: str = "Rate limit exceeded", details: Optional[Details] = None):
        self.retry_after = retry_after
        super().__init__("RATE_LIMIT_ERROR", message, details)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        response = super().to_response(request_id)
        response.retry_after = self.retry_after
        return response


class ValidationError(GatewayError):
    """Field-level validation failures, aggregated."""

    status_code = 400

    def __init__(self, errors: List[str], message: str = "Validation failed"):
        self.errors = list(errors)
        super().__init__("VALIDATION_ERROR", message, self.errors)


class PayloadError(GatewayError):
    """Request body is not a JSON object."""

    status_code = 400

    def __init__(self, message: str = "Invalid JSON", details: Optional[Details] = None):
        super().__init__("PAYLOAD_ERROR", message, details)


class PayloadTooLargeError(PayloadError):
    """Request body exceeds the configured ceiling."""

    status_code = 413

    def __init__(self, limit: int):
        self.limit = limit
        GatewayError.__init__(self, "PAYLOAD_TOO_LARGE", "Request entity too large", {"limit": limit})


class ResourceNotFoundError(GatewayError):
    """Unknown secure resource."""

    status_code = 404

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__("RESOURCE_NOT_FOUND", "Endpoint not found", {"resource": resource})


class ConfigurationError(GatewayError):
    """A required setting is missing for the affected request path."""

    status_code = 500

    def __init__(self, message: str = "Service configuration error", details: Optional[Details] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class UpstreamTransportError(GatewayError):
    """Upstream unreachable or timed out after every retry."""

    status_code = 504

    def __init__(self, message: str = "Service timeout", details: Optional[Details] = None, attempts: int = 0):
        self.attempts = attempts
        super().__init__("UPSTREAM_TRANSPORT_ERROR", message, details)


class UpstreamApplicationError(GatewayError):
    """Upstream answered with a non-2xx status; relayed, never retried."""

    def __init__(self, upstream_status: int, body: str = "",
                 message: str = "Upstream service temporarily unavailable"):
        self.upstream_status = upstream_status
        self.body = body
        super().__init__(
            "UPSTREAM_APPLICATION_ERROR",
            message,
            {"upstream_status": upstream_status},
        )

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return self.upstream_status
