"""
Replay protection package for the Gateway.

Holds the nonce ledger that enforces at-most-once acceptance of a nonce
within the timestamp tolerance window.
"""

from .nonce_ledger import NonceLedger, DEFAULT_TOLERANCE_MS

__all__ = ["NonceLedger", "DEFAULT_TOLERANCE_MS"]
