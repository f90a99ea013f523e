"""
Shared configuration management for the Secure Webhook Gateway.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # CORS
    allowed_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:8080", "http://localhost:5173"]
    )


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


class GatewayConfig(ServiceConfig):
    """Settings for the secure webhook gateway.

    Every value may be supplied through the environment with the
    ``GATEWAY_`` prefix, e.g. ``GATEWAY_UPSTREAM_EMAIL_URL``.
    """

    # Shared secrets. Generated at startup when left empty.
    api_key: Optional[str] = Field(default=None)
    signing_key: Optional[str] = Field(default=None)

    # Upstream automation endpoints
    upstream_email_url: Optional[str] = Field(default=None)
    upstream_prompt_url: Optional[str] = Field(default=None)
    upstream_webhook_secret: Optional[str] = Field(default=None)
    upstream_timeout_seconds: float = Field(default=30.0, gt=0)
    upstream_max_attempts: int = Field(default=3, ge=1)
    upstream_retry_delay_seconds: float = Field(default=1.0, ge=0)

    # Rate limiting
    rate_limit_window_seconds: int = Field(default=60, gt=0)
    rate_limit_max_requests: int = Field(default=30, gt=0)

    # Replay protection
    nonce_tolerance_seconds: int = Field(default=300, gt=0)
    sweep_interval_seconds: float = Field(default=30.0, gt=0)

    # Largest accepted request body, in bytes
    max_request_bytes: int = Field(default=10 * 1024 * 1024, gt=0)

    # Incident log
    incident_capacity: int = Field(default=1000, gt=0)
    status_incident_limit: int = Field(default=10, ge=0)

    sign_responses: bool = Field(default=True)

    @property
    def nonce_tolerance_ms(self) -> int:
        return self.nonce_tolerance_seconds * 1000

    @property
    def rate_limit_window_ms(self) -> int:
        return self.rate_limit_window_seconds * 1000


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)


def get_gateway_config(port: int = 3002, **overrides) -> GatewayConfig:
    """Get configuration for the gateway, applying explicit overrides."""
    return GatewayConfig(service_name="gateway", port=port, **overrides)
