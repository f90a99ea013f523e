"""
Field validation for secure resource payloads.

Validation collects every failure for a payload instead of stopping at the
first one, so a caller can fix all fields in one round trip.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .sanitizer import find_threats

TEXT = "text"
NUMBER = "number"
INTEGER = "integer"

IDENTIFIER_MAX_LENGTH = 100
TEXT_MAX_LENGTH = 5000
CONTEXT_MAX_LENGTH = 2000
PROMPT_MAX_LENGTH = 10000


@dataclass(frozen=True)
class FieldRule:
    """Constraints on a single payload field."""

    name: str
    kind: str = TEXT
    required: bool = False
    max_length: Optional[int] = None
    choices: Optional[Tuple[str, ...]] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    label: Optional[str] = None

    @property
    def display(self) -> str:
        return self.label or self.name


@dataclass(frozen=True)
class FieldResult:
    ok: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class ResourceSchema:
    """Field rules for one secure resource."""

    rules: Tuple[FieldRule, ...]
    # Each group needs at least one present member.
    require_any: Tuple[Tuple[str, ...], ...] = ()
    rule_index: Dict[str, FieldRule] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "rule_index", {rule.name: rule for rule in self.rules})


_OK = FieldResult(ok=True)


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def validate(field_name: str, value: Any, rule: Optional[FieldRule] = None) -> FieldResult:
    """Check one field against its rule.

    Without a rule the value is treated as optional free text.
    """
    rule = rule or FieldRule(name=field_name)
    label = rule.display

    if not _is_present(value):
        if rule.required:
            return FieldResult(False, f"{label} is required")
        return _OK

    if rule.kind == TEXT:
        if not isinstance(value, str):
            return FieldResult(False, f"{label} must be a string")
        if rule.max_length is not None and len(value) > rule.max_length:
            return FieldResult(False, f"{label} too long (max {rule.max_length} characters)")
        if rule.choices is not None and value not in rule.choices:
            return FieldResult(False, f"{label} must be one of: {', '.join(rule.choices)}")
        threats = find_threats(value)
        if threats:
            return FieldResult(False, f"{label} contains potentially dangerous content")
        return _OK

    if not _is_number(value) or not math.isfinite(value):
        return FieldResult(False, f"{label} must be a number")
    if rule.kind == INTEGER and int(value) != value:
        return FieldResult(False, f"{label} must be an integer")
    if rule.minimum is not None and value < rule.minimum:
        return FieldResult(False, _range_message(rule))
    if rule.maximum is not None and value > rule.maximum:
        return FieldResult(False, _range_message(rule))
    return _OK


def _range_message(rule: FieldRule) -> str:
    if rule.minimum is not None and rule.maximum is not None:
        return f"{rule.display} must be a number between {rule.minimum:g} and {rule.maximum:g}"
    if rule.minimum is not None:
        return f"{rule.display} must be at least {rule.minimum:g}"
    return f"{rule.display} must be at most {rule.maximum:g}"


def validate_payload(schema: ResourceSchema, payload: Mapping[str, Any]) -> List[str]:
    """Validate every field of ``payload``; returns all failure messages."""
    errors: List[str] = []

    for key, value in payload.items():
        if value is not None and not isinstance(value, str) and not _is_number(value):
            errors.append(f"{key} must be a string or number")

    for group in schema.require_any:
        if not any(_is_present(payload.get(name)) for name in group):
            errors.append(f"Either {' or '.join(group)} is required")

    for rule in schema.rules:
        value = payload.get(rule.name)
        if value is not None and not isinstance(value, str) and not _is_number(value):
            continue  # already reported above
        result = validate(rule.name, value, rule)
        if not result.ok:
            errors.append(result.reason)

    return errors
