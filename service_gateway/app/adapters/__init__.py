"""
Adapters package for the Gateway Service.

Contains the HTTP client wrapper for the upstream automation endpoint. The
adapter encapsulates:

- Request headers and correlation identifiers
- Hard per-attempt timeouts and linear-backoff retries
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .upstream_client import UpstreamClient, UpstreamResponse

__all__ = [
    "UpstreamClient",
    "UpstreamResponse",
]
