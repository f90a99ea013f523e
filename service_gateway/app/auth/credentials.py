"""
Process-lifetime credentials for the gateway.

The API credential and the signing key are created once at startup, from
configuration or freshly generated, and never change afterwards.
"""

from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from shared.errors import AuthenticationError, ConfigurationError
from shared.logging import get_logger, mask_secret

API_KEY_BYTES = 32
SIGNING_KEY_BYTES = 64


def generate_api_key() -> str:
    return secrets.token_hex(API_KEY_BYTES)


def generate_signing_key() -> str:
    return secrets.token_hex(SIGNING_KEY_BYTES)


@dataclass(frozen=True)
class CallerIdentity:
    """The authenticated caller of one request."""

    api_key: str

    @property
    def masked(self) -> str:
        return mask_secret(self.api_key)


class CredentialStore:
    """Holds the accepted API credentials and the signing key."""

    def __init__(self, api_keys: Iterable[str], signing_key: str):
        keys = tuple(key for key in api_keys if key)
        if not keys:
            raise ConfigurationError("At least one API key is required")
        if not signing_key:
            raise ConfigurationError("Signing key is required")
        if signing_key in keys:
            raise ConfigurationError("Signing key must differ from every API key")

        self._api_keys: Tuple[str, ...] = keys
        self._signing_key = signing_key
        self.logger = get_logger("gateway.credentials")

    @classmethod
    def from_settings(cls, api_key: Optional[str], signing_key: Optional[str]) -> "CredentialStore":
        """Build the store, generating whichever secret configuration omits."""
        logger = get_logger("gateway.credentials")
        if not api_key:
            api_key = generate_api_key()
            logger.warning("No API key configured, generated one for this process",
                           api_key=mask_secret(api_key))
        if not signing_key:
            signing_key = generate_signing_key()
            logger.warning("No signing key configured, generated one for this process")
        return cls([api_key], signing_key)

    @property
    def signing_key(self) -> str:
        return self._signing_key

    @property
    def primary_api_key(self) -> str:
        return self._api_keys[0]

    @property
    def active_count(self) -> int:
        return len(self._api_keys)

    def is_valid(self, api_key: Optional[str]) -> bool:
        """Constant-time membership test; compares against every key."""
        if not api_key:
            return False
        candidate = api_key.encode("utf-8")
        matched = False
        for key in self._api_keys:
            if hmac.compare_digest(candidate, key.encode("utf-8")):
                matched = True
        return matched

    def authenticate(self, api_key: Optional[str]) -> CallerIdentity:
        """Resolve ``api_key`` to a caller or raise ``AuthenticationError``."""
        if not api_key:
            raise AuthenticationError("API key required", {"reason": "missing"})
        if not self.is_valid(api_key):
            raise AuthenticationError("Invalid API key", {"reason": "invalid"})
        return CallerIdentity(api_key=api_key)
