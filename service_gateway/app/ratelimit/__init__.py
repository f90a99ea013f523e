"""
Rate limiting package for the Gateway.

Holds the fixed-window limiter that enforces per-client request ceilings
and the helper that derives a client's network origin.
"""

from .fixed_window import FixedWindowRateLimiter, RateBucket, RateLimitDecision, get_client_ip

__all__ = ["FixedWindowRateLimiter", "RateBucket", "RateLimitDecision", "get_client_ip"]
