"""
Unit tests for field validation and the resource catalog.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_gateway.app.domain.resources import (
    EMAIL_SCHEMA,
    PROMPT_SCHEMA,
    RESOURCES,
    get_resource,
    sanitize_fields,
)
from service_gateway.app.validation import FieldRule, validate, validate_payload
from service_gateway.app.validation.validator import INTEGER, NUMBER
from shared.test_helpers import payload_factory


class TestValidateField:
    """Test cases for validate()."""

    def test_required_missing(self):
        result = validate("tone", "   ", FieldRule("tone", required=True))
        assert result.ok is False
        assert result.reason == "tone is required"

    def test_optional_missing_ok(self):
        assert validate("notes", None).ok

    def test_length_ceiling(self):
        rule = FieldRule("name", max_length=5)
        assert validate("name", "abcde", rule).ok
        assert validate("name", "abcdef", rule).reason == "name too long (max 5 characters)"

    def test_choices(self):
        rule = FieldRule("length", choices=("short", "long"))
        assert validate("length", "medium", rule).reason == "length must be one of: short, long"

    def test_dangerous_content(self):
        result = validate("keyPoints", "hello <script>x</script>")
        assert result.reason == "keyPoints contains potentially dangerous content"

    def test_text_must_be_string(self):
        assert validate("tone", 5, FieldRule("tone")).reason == "tone must be a string"

    def test_number_range(self):
        rule = FieldRule("temperature", kind=NUMBER, minimum=0, maximum=2)
        assert validate("temperature", 0, rule).ok
        assert validate("temperature", 2, rule).ok
        assert validate("temperature", 2.5, rule).reason == "temperature must be a number between 0 and 2"
        assert validate("temperature", "hot", rule).reason == "temperature must be a number"
        assert validate("temperature", True, rule).reason == "temperature must be a number"
        assert validate("temperature", float("nan"), rule).reason == "temperature must be a number"

    def test_integer(self):
        rule = FieldRule("maxTokens", kind=INTEGER, minimum=1, maximum=4000)
        assert validate("maxTokens", 4000, rule).ok
        assert validate("maxTokens", 10.0, rule).ok
        assert validate("maxTokens", 1.5, rule).reason == "maxTokens must be an integer"
        assert validate("maxTokens", 0, rule).reason == "maxTokens must be a number between 1 and 4000"

    def test_one_sided_range(self):
        rule = FieldRule("count", kind=NUMBER, minimum=1)
        assert validate("count", 0, rule).reason == "count must be at least 1"


class TestEmailSchema:
    """Test cases for the email resource."""

    def test_reference_payload_valid(self):
        assert validate_payload(EMAIL_SCHEMA, payload_factory.email_payload()) == []

    def test_all_failures_reported_together(self):
        errors = validate_payload(EMAIL_SCHEMA, {
            "recipientName": "x" * 101,
            "tone": "warm",
            "keyPoints": "admin' --",
            "length": "epic",
        })
        assert errors == [
            "recipientName too long (max 100 characters)",
            "purpose is required",
            "keyPoints contains potentially dangerous content",
            "length must be one of: short, medium, long",
        ]

    def test_additional_context_ceiling(self):
        errors = validate_payload(EMAIL_SCHEMA, payload_factory.email_payload(additionalContext="y" * 2001))
        assert errors == ["additionalContext too long (max 2000 characters)"]

    def test_nested_values_rejected(self):
        errors = validate_payload(EMAIL_SCHEMA, payload_factory.email_payload(tone={"a": 1}))
        assert errors == ["tone must be a string or number"]

    def test_unknown_scalar_fields_tolerated(self):
        assert validate_payload(EMAIL_SCHEMA, payload_factory.email_payload(extra="x")) == []

    @pytest.mark.parametrize("value", payload_factory.injection_corpus())
    def test_corpus_rejected_in_every_text_field(self, value):
        for field in ("recipientName", "purpose", "tone", "keyPoints"):
            errors = validate_payload(EMAIL_SCHEMA, payload_factory.email_payload(**{field: value}))
            assert f"{field} contains potentially dangerous content" in errors


class TestPromptSchema:
    """Test cases for the prompt resource."""

    def test_reference_payload_valid(self):
        assert validate_payload(PROMPT_SCHEMA, payload_factory.prompt_payload()) == []

    def test_prompt_or_task_required(self):
        errors = validate_payload(PROMPT_SCHEMA, {"model": "gpt-4"})
        assert errors == ["Either prompt or taskDescription is required"]

    def test_prompt_alone_suffices(self):
        assert validate_payload(PROMPT_SCHEMA, {"prompt": "Write a haiku"}) == []

    def test_numeric_bounds(self):
        errors = validate_payload(PROMPT_SCHEMA, payload_factory.prompt_payload(temperature=3, maxTokens=5000))
        assert errors == [
            "temperature must be a number between 0 and 2",
            "maxTokens must be a number between 1 and 4000",
        ]

    def test_prompt_length_ceiling(self):
        assert validate_payload(PROMPT_SCHEMA, {"prompt": "p" * 10000}) == []
        assert validate_payload(PROMPT_SCHEMA, {"prompt": "p" * 10001}) == [
            "prompt too long (max 10000 characters)"
        ]


class TestResourceCatalog:
    """Test cases for the resource catalog."""

    def test_known_resources(self):
        assert sorted(RESOURCES) == ["email", "prompt"]
        assert get_resource("unknown") is None

    def test_sanitize_fields_drops_unknown_and_blank(self):
        fields = sanitize_fields(EMAIL_SCHEMA, payload_factory.email_payload(extra="x", additionalContext=" "))
        assert "extra" not in fields
        assert "additionalContext" not in fields
        assert fields["recipientName"] == "Jane Doe"

    def test_email_upstream_payload(self):
        resource = get_resource("email")
        fields = sanitize_fields(resource.schema, payload_factory.email_payload())
        upstream = resource.build_upstream_payload(fields, "req-1", 123)
        assert upstream["source"] == "secure-webhook"
        assert upstream["requestId"] == "req-1"
        assert upstream["timestamp"] == 123
        assert upstream["keyPoints"] == "discuss Q3 roadmap"

    def test_prompt_upstream_payload_defaults(self):
        resource = get_resource("prompt")
        upstream = resource.build_upstream_payload({"prompt": "Write a haiku"}, "req-2", 456)
        assert upstream["message"] == "Write a haiku"
        assert upstream["sessionId"] == "req-2"
        assert upstream["sender"] == "user"
        assert upstream["source"] == "secure-prompt-webhook"
        assert upstream["structuredData"] == {"model": "gpt-4", "temperature": 0.7, "maxTokens": 1000}

    def test_email_reply_unwraps_single_item_list(self):
        resource = get_resource("email")
        assert resource.shape_reply([{"email": "hi"}]) == {"email": "hi"}
        assert resource.shape_reply({"email": "hi"}) == {"email": "hi"}

    def test_prompt_reply_shape(self):
        reply = get_resource("prompt").shape_reply(payload_factory.upstream_prompt_reply())
        assert reply["optimizedPrompt"].startswith("You are an analyst")
        assert reply["suggestions"] == ["Name the quarter"]
        assert reply["improvements"] == ["Added a role"]

    def test_prompt_reply_fallback_text(self):
        assert get_resource("prompt").shape_reply({})["optimizedPrompt"] == "Prompt processed successfully"

    def test_upstream_url_lookup(self, gateway_config):
        assert get_resource("email").upstream_url(gateway_config) == "http://upstream.test/webhook/email-writer"
