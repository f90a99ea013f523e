"""
Shared utilities for the Secure Webhook Gateway.

This package aggregates common building blocks consumed by the gateway
service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helper with linear, exponential or fixed backoff

Any cross-service logic should live here to avoid import cycles across
service packages. Do not import from service_* packages into shared/.
"""
