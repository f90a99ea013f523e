"""
Unit tests for gateway configuration.
"""

import pytest
from pydantic import ValidationError

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import get_gateway_config
from shared.test_helpers import TEST_API_KEY, TEST_SIGNING_KEY, test_environment


class TestGatewayConfig:
    """Test cases for GatewayConfig."""

    def test_defaults(self):
        config = get_gateway_config()
        assert config.service_name == "gateway"
        assert config.port == 3002
        assert config.rate_limit_window_ms == 60_000
        assert config.rate_limit_max_requests == 30
        assert config.nonce_tolerance_ms == 300_000
        assert config.upstream_max_attempts == 3
        assert config.sign_responses is True
        assert config.max_request_bytes == 10 * 1024 * 1024

    def test_environment_variables(self, monkeypatch):
        for name, value in test_environment.get_mock_config().items():
            monkeypatch.setenv(name, value)

        config = get_gateway_config()

        assert config.env == "test"
        assert config.api_key == TEST_API_KEY
        assert config.signing_key == TEST_SIGNING_KEY
        assert config.upstream_email_url == "http://upstream.test/webhook/email-writer"
        assert config.upstream_retry_delay_seconds == 0

    def test_overrides_win_over_environment(self, monkeypatch):
        monkeypatch.setenv("GATEWAY_RATE_LIMIT_MAX_REQUESTS", "5")
        config = get_gateway_config(rate_limit_max_requests=7)
        assert config.rate_limit_max_requests == 7

    def test_rejects_non_positive_limits(self):
        with pytest.raises(ValidationError):
            get_gateway_config(rate_limit_max_requests=0)
        with pytest.raises(ValidationError):
            get_gateway_config(upstream_max_attempts=0)
