"""
Test helper functions and factory methods for the Secure Webhook Gateway.
"""

import hashlib
import hmac
import json
import uuid
from typing import Any, Dict, List, Optional, Tuple

TEST_API_KEY = "test-api-key-0123456789abcdef0123456789abcdef"
TEST_SIGNING_KEY = "test-signing-key-fedcba9876543210fedcba9876543210fedcba9876543210"

# 2023-11-14T22:13:20Z
DEFAULT_EPOCH_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced epoch-millis clock."""

    def __init__(self, start: int = DEFAULT_EPOCH_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


class PayloadFactory:
    """Factory for creating request payloads."""

    @staticmethod
    def email_payload(**overrides) -> Dict[str, Any]:
        """The reference email request."""
        payload = {
            "recipientName": "Jane Doe",
            "purpose": "follow-up",
            "tone": "professional",
            "keyPoints": "discuss Q3 roadmap",
            "length": "short",
        }
        payload.update(overrides)
        return payload

    @staticmethod
    def prompt_payload(**overrides) -> Dict[str, Any]:
        payload = {
            "taskDescription": "Summarise a quarterly sales report",
            "useCaseCategory": "analysis",
            "desiredOutputFormat": "bullet list",
            "temperature": 0.5,
            "maxTokens": 800,
        }
        payload.update(overrides)
        return payload

    @staticmethod
    def injection_corpus() -> List[str]:
        """Hostile strings every text field must refuse or neutralise."""
        return [
            "<script>alert(1)</script>",
            "<SCRIPT SRC=//evil.example/x.js></SCRIPT>",
            "<scr<script>ipt>alert(1)</script>",
            "javascript:alert(document.cookie)",
            "<img src=x onerror=alert(1)>",
            "<body onload=steal()>",
            "data:text/html;base64,PHNjcmlwdD4=",
            "vbscript:msgbox(1)",
            "eval(atob('YWxlcnQoMSk='))",
            "width: expression(alert(1))",
            "@import url(//evil.example/x.css)",
            "' OR '1'='1' OR 'a'='a",
            "admin' --",
            "1 /* comment */ = 1",
            "x WHERE id=1 OR 1=1",
            "a AND b=1 AND c",
        ]

    @staticmethod
    def upstream_email_reply() -> List[Dict[str, Any]]:
        return [{"email": "Hi Jane,\n\nFollowing up on the Q3 roadmap.\n\nBest regards"}]

    @staticmethod
    def upstream_prompt_reply() -> Dict[str, Any]:
        return {
            "message": "You are an analyst. Summarise the report as bullets.",
            "suggestions": ["Name the quarter"],
            "improvements": ["Added a role"],
        }


class EnvelopeSigner:
    """Build signed request envelopes the way a well-behaved caller does.

    The MAC is computed here independently of the gateway's signer so the
    wire format itself is under test.
    """

    def __init__(self, api_key: str = TEST_API_KEY, signing_key: str = TEST_SIGNING_KEY, clock=None):
        self.api_key = api_key
        self.signing_key = signing_key
        self.clock = clock

    def signature(self, payload: Dict[str, Any], timestamp: int, nonce: str, key: Optional[str] = None) -> str:
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        message = f"{canonical}\n{nonce}\n{timestamp}".encode("utf-8")
        secret = (key or self.signing_key).encode("utf-8")
        return hmac.new(secret, message, hashlib.sha256).hexdigest()

    def build(self,
              payload: Dict[str, Any],
              nonce: Optional[str] = None,
              timestamp: Optional[int] = None,
              request_id: Optional[str] = None) -> Tuple[Dict[str, Any], Dict[str, str]]:
        """Return ``(json_body, headers)`` for one request."""
        nonce = nonce or uuid.uuid4().hex
        if timestamp is None:
            timestamp = self.clock() if self.clock is not None else DEFAULT_EPOCH_MS
        headers = {
            "X-API-Key": self.api_key,
            "X-Timestamp": str(timestamp),
            "X-Signature": self.signature(payload, timestamp, nonce),
        }
        if request_id:
            headers["X-Request-ID"] = request_id
        return {**payload, "nonce": nonce}, headers


class GatewayTestEnvironment:
    """Test environment configuration."""

    @staticmethod
    def get_mock_config() -> Dict[str, Any]:
        """Get mock environment configuration."""
        return {
            "GATEWAY_ENV": "test",
            "GATEWAY_LOG_LEVEL": "debug",
            "GATEWAY_API_KEY": TEST_API_KEY,
            "GATEWAY_SIGNING_KEY": TEST_SIGNING_KEY,
            "GATEWAY_UPSTREAM_EMAIL_URL": "http://upstream.test/webhook/email-writer",
            "GATEWAY_UPSTREAM_PROMPT_URL": "http://upstream.test/webhook/prompt-writer",
            "GATEWAY_UPSTREAM_RETRY_DELAY_SECONDS": "0",
        }

    @staticmethod
    def get_config_overrides(**overrides) -> Dict[str, Any]:
        """Keyword overrides for ``get_gateway_config``."""
        values = {
            "env": "test",
            "api_key": TEST_API_KEY,
            "signing_key": TEST_SIGNING_KEY,
            "upstream_email_url": "http://upstream.test/webhook/email-writer",
            "upstream_prompt_url": "http://upstream.test/webhook/prompt-writer",
            "upstream_retry_delay_seconds": 0,
        }
        values.update(overrides)
        return values


# Global instances for easy access
payload_factory = PayloadFactory()
test_environment = GatewayTestEnvironment()
