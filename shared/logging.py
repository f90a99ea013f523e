"""
Shared logging configuration for the Secure Webhook Gateway.

Every event is JSON with the service name, the correlation context of the
request being processed (request id, masked caller, resource) and an epoch
millisecond ``ts_ms`` matching the gateway's wire timestamps. Known secret
fields are masked before rendering, whatever component logged them.
"""

import sys
import structlog
import logging
import uuid
import time
from typing import Any, Dict, FrozenSet, Optional
from contextvars import ContextVar

# Correlation context for the request being processed
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
client_id_var: ContextVar[Optional[str]] = ContextVar('client_id', default=None)
resource_var: ContextVar[Optional[str]] = ContextVar('resource', default=None)

SECRET_FIELDS: FrozenSet[str] = frozenset({
    "api_key",
    "signing_key",
    "signature",
    "webhook_secret",
    "x_api_key",
    "x_signature",
    "x_webhook_secret",
})


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            add_epoch_millis,
            redact_secrets,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Derive the service from a dotted logger name."""
    # "gateway.nonce_ledger" -> service "gateway"
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the current request's correlation fields; explicit fields win."""
    for key, var in (("request_id", request_id_var), ("client_id", client_id_var), ("resource", resource_var)):
        value = var.get()
        if value:
            event_dict.setdefault(key, value)

    return event_dict


def add_epoch_millis(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict["ts_ms"] = int(time.time() * 1000)
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask secret-bearing fields, including inside nested dicts."""
    return _redact(event_dict)


def _redact(values: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in list(values.items()):
        normalized = key.lower().replace("-", "_")
        if normalized in SECRET_FIELDS and isinstance(value, str):
            # Already-masked values pass through unchanged
            values[key] = value if value.endswith("...") else mask_secret(value)
        elif isinstance(value, dict):
            values[key] = _redact(dict(value))
    return values


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_client_context(client_id: Optional[str] = None):
    """Set the masked caller in context."""
    if client_id:
        client_id_var.set(client_id)


def set_resource_context(resource: Optional[str] = None):
    if resource:
        resource_var.set(resource)


def clear_context():
    """Clear all context variables."""
    request_id_var.set(None)
    client_id_var.set(None)
    resource_var.set(None)


def mask_secret(value: Optional[str], visible: int = 8) -> str:
    """Render a credential for logs without disclosing it."""
    if not value:
        return ""
    return value[:visible] + "..."


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
