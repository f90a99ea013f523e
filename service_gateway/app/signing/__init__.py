"""
Signing package for the Gateway.

Canonicalization plus HMAC-SHA-256 signing and constant-time verification
of request envelopes and relayed responses.
"""

from .hmac_signer import (
    RequestSigner,
    canonical_json,
    canonicalize,
    generate_nonce,
    sign,
    verify,
)

__all__ = [
    "RequestSigner",
    "canonical_json",
    "canonicalize",
    "generate_nonce",
    "sign",
    "verify",
]
