"""
Authentication helpers for the Secure Webhook Gateway.
"""

from .credentials import CallerIdentity, CredentialStore, generate_api_key, generate_signing_key

__all__ = [
    "CallerIdentity",
    "CredentialStore",
    "generate_api_key",
    "generate_signing_key",
]
