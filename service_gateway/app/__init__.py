"""
Secure Webhook Gateway service.

The gateway fronts automation webhooks, enforcing per request:
- Authentication: static API credential
- Rate limiting: in-process fixed-window buckets
- Integrity: HMAC-SHA-256 request signatures with a timestamp window
- Replay protection: self-expiring nonce ledger
- Input hygiene: field validation and injection sanitization
- Forwarding: bounded-timeout upstream calls with linear-backoff retries

Structure:
- app.main: FastAPI app, routes, and service wiring.
- app.domain: Request pipeline, resource catalog, clock.
- app.auth: Credential store.
- app.signing: Canonicalization, signing and verification.
- app.replay: Nonce ledger.
- app.ratelimit: Fixed-window rate limiter.
- app.validation: Field validation and sanitization.
- app.incidents: Bounded incident log.
- app.adapters: HTTP client for the upstream automation endpoint.
- app.client: Caller-side client that speaks the gateway protocol.
"""

# Initialize the domain package first so the clock module is loaded before the
# subpackages that import it (avoids a circular import via domain.pipeline).
from . import domain  # noqa: E402,F401
