"""
Caller-side client for the Secure Webhook Gateway.
"""

from .secure_client import ClientMode, ClientResponse, SecureWebhookClient

__all__ = [
    "ClientMode",
    "ClientResponse",
    "SecureWebhookClient",
]
