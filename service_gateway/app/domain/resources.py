"""
Catalog of secure resources routed by ``POST /secure/{resource}``.

A resource couples its field rules with the upstream URL setting it is
forwarded to and the shape of the upstream request and relayed reply.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from ..validation.sanitizer import sanitize
from ..validation.validator import (
    CONTEXT_MAX_LENGTH,
    IDENTIFIER_MAX_LENGTH,
    INTEGER,
    NUMBER,
    PROMPT_MAX_LENGTH,
    TEXT_MAX_LENGTH,
    FieldRule,
    ResourceSchema,
)

EMAIL_LENGTHS = ("short", "medium", "long")

EMAIL_SCHEMA = ResourceSchema(rules=(
    FieldRule("recipientName", required=True, max_length=IDENTIFIER_MAX_LENGTH),
    FieldRule("purpose", required=True, max_length=IDENTIFIER_MAX_LENGTH),
    FieldRule("tone", required=True, max_length=IDENTIFIER_MAX_LENGTH),
    FieldRule("keyPoints", required=True, max_length=TEXT_MAX_LENGTH),
    FieldRule("additionalContext", max_length=CONTEXT_MAX_LENGTH),
    FieldRule("length", required=True, choices=EMAIL_LENGTHS),
))

PROMPT_SCHEMA = ResourceSchema(
    rules=(
        FieldRule("prompt", max_length=PROMPT_MAX_LENGTH),
        FieldRule("taskDescription", max_length=TEXT_MAX_LENGTH),
        FieldRule("context", max_length=TEXT_MAX_LENGTH),
        FieldRule("contextBackground", max_length=TEXT_MAX_LENGTH),
        FieldRule("model", max_length=IDENTIFIER_MAX_LENGTH),
        FieldRule("useCaseCategory", max_length=IDENTIFIER_MAX_LENGTH),
        FieldRule("desiredOutputFormat", max_length=IDENTIFIER_MAX_LENGTH),
        FieldRule("targetModel", max_length=IDENTIFIER_MAX_LENGTH),
        FieldRule("industryDomain", max_length=IDENTIFIER_MAX_LENGTH),
        FieldRule("temperature", kind=NUMBER, minimum=0, maximum=2),
        FieldRule("maxTokens", kind=INTEGER, minimum=1, maximum=4000),
    ),
    require_any=(("prompt", "taskDescription"),),
)

DEFAULT_MODEL = "gpt-4"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000


def sanitize_fields(schema: ResourceSchema, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Sanitize the declared text fields; numbers pass through, unknown keys drop."""
    cleaned: Dict[str, Any] = {}
    for rule in schema.rules:
        value = payload.get(rule.name)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        cleaned[rule.name] = sanitize(value) if isinstance(value, str) else value
    return cleaned


def _email_upstream(fields: Dict[str, Any], request_id: str, timestamp: int) -> Dict[str, Any]:
    return {**fields, "requestId": request_id, "timestamp": timestamp, "source": "secure-webhook"}


def _email_reply(data: Any) -> Any:
    # Upstream workflows answer either with an object or a one-item list.
    if isinstance(data, list) and len(data) == 1 and isinstance(data[0], dict):
        return data[0]
    return data


def _prompt_upstream(fields: Dict[str, Any], request_id: str, timestamp: int) -> Dict[str, Any]:
    structured_keys = (
        "taskDescription", "useCaseCategory", "desiredOutputFormat", "targetModel",
        "contextBackground", "industryDomain", "context",
    )
    structured = {key: fields[key] for key in structured_keys if key in fields}
    structured["model"] = fields.get("model", DEFAULT_MODEL)
    structured["temperature"] = fields.get("temperature", DEFAULT_TEMPERATURE)
    structured["maxTokens"] = fields.get("maxTokens", DEFAULT_MAX_TOKENS)
    return {
        "message": fields.get("taskDescription") or fields.get("prompt") or "No prompt provided",
        "sessionId": request_id,
        "sender": "user",
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "structuredData": structured,
        "requestId": request_id,
        "timestamp": timestamp,
        "source": "secure-prompt-webhook",
    }


def _prompt_reply(data: Any) -> Dict[str, Any]:
    body = _email_reply(data)
    if not isinstance(body, dict):
        body = {"output": body}
    message = body.get("message")
    return {
        "optimizedPrompt": message or body.get("response") or body.get("output") or "Prompt processed successfully",
        "suggestions": body.get("suggestions") or [],
        "improvements": body.get("improvements") or [],
        "output": body.get("output") or message,
        "message": message,
    }


@dataclass(frozen=True)
class SecureResource:
    """A routable resource and how it is forwarded."""

    name: str
    schema: ResourceSchema
    url_setting: str
    build_upstream_payload: Callable[[Dict[str, Any], str, int], Dict[str, Any]]
    shape_reply: Callable[[Any], Any]

    def upstream_url(self, config: Any) -> Optional[str]:
        return getattr(config, self.url_setting, None) or None


RESOURCES: Dict[str, SecureResource] = {
    "email": SecureResource(
        name="email",
        schema=EMAIL_SCHEMA,
        url_setting="upstream_email_url",
        build_upstream_payload=_email_upstream,
        shape_reply=_email_reply,
    ),
    "prompt": SecureResource(
        name="prompt",
        schema=PROMPT_SCHEMA,
        url_setting="upstream_prompt_url",
        build_upstream_payload=_prompt_upstream,
        shape_reply=_prompt_reply,
    ),
}


def get_resource(name: str) -> Optional[SecureResource]:
    return RESOURCES.get(name)
