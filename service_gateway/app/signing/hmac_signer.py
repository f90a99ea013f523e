"""
HMAC-SHA-256 request and response signing for the gateway.

The MAC covers a canonical form of the payload followed by the nonce and
the timestamp::

    <payload JSON, keys sorted, no whitespace>\\n<nonce>\\n<timestamp>

Signer and verifier must produce byte-identical canonical forms; any
divergence is a verification failure, never a retryable condition.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
from typing import Any, Mapping, Union

NONCE_BYTES = 16

Key = Union[str, bytes]


def generate_nonce() -> str:
    """Return a fresh hex-encoded single-use token."""
    return secrets.token_hex(NONCE_BYTES)


def canonical_json(payload: Mapping[str, Any]) -> str:
    """Serialize ``payload`` deterministically (sorted keys, no whitespace)."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def canonicalize(payload: Mapping[str, Any], timestamp: int, nonce: str) -> bytes:
    """Build the exact byte string covered by the MAC."""
    return "\n".join((canonical_json(payload), nonce, str(int(timestamp)))).encode("utf-8")


def _key_bytes(key: Key) -> bytes:
    return key if isinstance(key, bytes) else key.encode("utf-8")


def sign(payload: Mapping[str, Any], timestamp: int, nonce: str, key: Key) -> str:
    """Compute the hex HMAC-SHA-256 signature of an envelope."""
    message = canonicalize(payload, timestamp, nonce)
    return hmac.new(_key_bytes(key), message, hashlib.sha256).hexdigest()


def verify(payload: Mapping[str, Any], timestamp: int, nonce: str, signature: str, key: Key) -> bool:
    """Check ``signature`` against a recomputed MAC in constant time.

    Malformed signatures (wrong type, non-ASCII) simply fail verification.
    """
    if not isinstance(signature, str) or not signature:
        return False
    try:
        expected = sign(payload, timestamp, nonce, key)
    except (TypeError, ValueError):
        # payload not JSON-serializable or timestamp not an int
        return False
    try:
        return hmac.compare_digest(expected, signature.strip().lower())
    except TypeError:
        return False


class RequestSigner:
    """Binds the signing primitives to one process-lifetime key."""

    def __init__(self, key: Key):
        if not key:
            raise ValueError("signing key must not be empty")
        self._key = key

    def sign(self, payload: Mapping[str, Any], timestamp: int, nonce: str) -> str:
        return sign(payload, timestamp, nonce, self._key)

    def verify(self, payload: Mapping[str, Any], timestamp: int, nonce: str, signature: str) -> bool:
        return verify(payload, timestamp, nonce, signature, self._key)
