"""
Unit tests for the credential store.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_gateway.app.auth import CredentialStore, generate_api_key, generate_signing_key
from shared.errors import AuthenticationError, ConfigurationError
from shared.test_helpers import TEST_API_KEY, TEST_SIGNING_KEY


class TestCredentialStore:
    """Test cases for CredentialStore."""

    @pytest.fixture
    def store(self):
        return CredentialStore([TEST_API_KEY], TEST_SIGNING_KEY)

    def test_authenticate_valid_key(self, store):
        caller = store.authenticate(TEST_API_KEY)
        assert caller.api_key == TEST_API_KEY
        assert caller.masked == TEST_API_KEY[:8] + "..."

    def test_missing_key(self, store):
        with pytest.raises(AuthenticationError) as exc_info:
            store.authenticate(None)
        assert exc_info.value.status_code == 401
        assert exc_info.value.details == {"reason": "missing"}

    def test_invalid_key(self, store):
        with pytest.raises(AuthenticationError) as exc_info:
            store.authenticate(TEST_API_KEY + "x")
        assert exc_info.value.message == "Invalid API key"

    def test_multiple_keys(self):
        store = CredentialStore(["key-a", "key-b"], TEST_SIGNING_KEY)
        assert store.is_valid("key-b")
        assert not store.is_valid("key-c")
        assert store.active_count == 2
        assert store.primary_api_key == "key-a"

    def test_signing_key_must_differ(self):
        with pytest.raises(ConfigurationError):
            CredentialStore(["same"], "same")

    @pytest.mark.parametrize("keys, signing_key", [([], "s"), ([""], "s"), (["k"], "")])
    def test_incomplete_configuration(self, keys, signing_key):
        with pytest.raises(ConfigurationError):
            CredentialStore(keys, signing_key)

    def test_from_settings_generates_missing_secrets(self):
        store = CredentialStore.from_settings(None, None)
        assert len(store.primary_api_key) == 64
        assert len(store.signing_key) == 128
        assert store.primary_api_key != store.signing_key

    def test_from_settings_keeps_configured_secrets(self):
        store = CredentialStore.from_settings(TEST_API_KEY, TEST_SIGNING_KEY)
        assert store.primary_api_key == TEST_API_KEY
        assert store.signing_key == TEST_SIGNING_KEY

    def test_generators_are_hex(self):
        assert int(generate_api_key(), 16) >= 0
        assert len(generate_signing_key()) == 128
