"""
End-to-end integration tests for the complete signed request flow.

A ``SecureWebhookClient`` talks to a real ``GatewayService`` app over
``httpx.ASGITransport``; the gateway forwards to a scripted upstream.
"""

import json

import httpx
import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_gateway.app.client import SecureWebhookClient
from service_gateway.app.incidents import IncidentType
from service_gateway.app.main import GatewayService
from shared.config import get_gateway_config
from shared.errors import UpstreamApplicationError
from shared.test_helpers import (
    TEST_API_KEY,
    TEST_SIGNING_KEY,
    EnvelopeSigner,
    FakeClock,
    payload_factory,
    test_environment,
)

GATEWAY_URL = "http://gateway.test"


class TestEndToEndFlow:
    """End-to-end integration tests for complete system flow."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def upstream_calls(self):
        return []

    @pytest.fixture
    def gateway_service(self, clock, upstream_calls):
        """Gateway whose upstream answers per resource."""
        def upstream(request: httpx.Request) -> httpx.Response:
            upstream_calls.append(json.loads(request.content))
            if request.url.path.endswith("email-writer"):
                return httpx.Response(200, json=payload_factory.upstream_email_reply())
            return httpx.Response(200, json=payload_factory.upstream_prompt_reply())

        config = get_gateway_config(**test_environment.get_config_overrides(rate_limit_max_requests=5))
        return GatewayService(config=config, clock=clock, upstream_transport=httpx.MockTransport(upstream))

    @pytest.fixture
    def make_client(self, gateway_service, clock):
        def _make(**kwargs):
            options = {
                "api_key": TEST_API_KEY,
                "signing_key": TEST_SIGNING_KEY,
                "retry_delay": 0,
                "rate_limit_max_requests": 100,
                "clock": clock,
                "transport": httpx.ASGITransport(app=gateway_service.app),
            }
            options.update(kwargs)
            return SecureWebhookClient(GATEWAY_URL, **options)
        return _make

    @pytest.mark.asyncio
    async def test_email_flow(self, make_client, upstream_calls):
        """Client signs, gateway verifies and relays, client verifies the reply."""
        async with make_client() as client:
            result = await client.send("email", payload_factory.email_payload())

        assert result.status_code == 200
        assert result.signature_valid is True
        assert result.data["email"].startswith("Hi Jane")

        assert len(upstream_calls) == 1
        forwarded = upstream_calls[0]
        assert forwarded["recipientName"] == "Jane Doe"
        assert forwarded["requestId"] == result.request_id
        assert forwarded["source"] == "secure-webhook"

    @pytest.mark.asyncio
    async def test_prompt_flow(self, make_client, upstream_calls):
        async with make_client() as client:
            result = await client.send("prompt", payload_factory.prompt_payload())

        assert result.data["optimizedPrompt"].startswith("You are an analyst")
        assert upstream_calls[0]["sender"] == "user"

    @pytest.mark.asyncio
    async def test_gateway_rate_limit_surfaces_to_client(self, make_client, gateway_service):
        async with make_client() as client:
            for _ in range(5):
                await client.send("email", payload_factory.email_payload())
            with pytest.raises(UpstreamApplicationError) as exc_info:
                await client.send("email", payload_factory.email_payload())

        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "Rate limit exceeded"
        assert gateway_service.incidents.count_by_type() == {"RATE_LIMIT_EXCEEDED": 1}

    @pytest.mark.asyncio
    async def test_wrong_signing_key_refused(self, make_client, gateway_service, upstream_calls):
        async with make_client(signing_key="not-the-gateway-key") as client:
            with pytest.raises(UpstreamApplicationError) as exc_info:
                await client.send("email", payload_factory.email_payload())

        assert exc_info.value.status_code == 401
        assert upstream_calls == []
        assert gateway_service.incidents.recent(1)[0].type is IncidentType.INVALID_SIGNATURE

    @pytest.mark.asyncio
    async def test_captured_request_cannot_be_replayed(self, gateway_service, clock, upstream_calls):
        envelopes = EnvelopeSigner(clock=clock)
        body, headers = envelopes.build(payload_factory.email_payload())
        transport = httpx.ASGITransport(app=gateway_service.app)

        async with httpx.AsyncClient(transport=transport, base_url=GATEWAY_URL) as client:
            first = await client.post("/secure/email", json=body, headers=headers)
            clock.advance(60_000)
            replay = await client.post("/secure/email", json=body, headers=headers)
            clock.advance(240_001)
            expired = await client.post("/secure/email", json=body, headers=headers)

            # Past the tolerance window the nonce has left the ledger; a fresh
            # signature over the same nonce is a new request.
            resigned_body, resigned_headers = envelopes.build(
                payload_factory.email_payload(), nonce=body["nonce"]
            )
            resigned = await client.post("/secure/email", json=resigned_body, headers=resigned_headers)

        assert first.status_code == 200
        assert replay.status_code == 401
        assert replay.json()["code"] == "REPLAY_ERROR"
        assert expired.status_code == 401
        assert expired.json()["code"] == "SIGNATURE_ERROR"
        assert resigned.status_code == 200
        assert len(upstream_calls) == 2

    @pytest.mark.asyncio
    async def test_status_after_traffic(self, make_client, gateway_service):
        async with make_client() as client:
            await client.send("email", payload_factory.email_payload())

        transport = httpx.ASGITransport(app=gateway_service.app)
        async with httpx.AsyncClient(transport=transport, base_url=GATEWAY_URL) as client:
            response = await client.get("/status", headers={"X-API-Key": TEST_API_KEY})

        stats = response.json()["statistics"]
        assert stats["storedNonces"] == 1
        assert stats["totalIncidents"] == 0
