"""
Validation package for the Gateway.

Field-level validation (presence, length ceilings, enumerations, numeric
ranges, deny-list scan) and injection sanitization of untrusted strings.
"""

from .sanitizer import sanitize, find_threats, strip_dangerous, encode_entities
from .validator import (
    FieldResult,
    FieldRule,
    ResourceSchema,
    validate,
    validate_payload,
)

__all__ = [
    "FieldResult",
    "FieldRule",
    "ResourceSchema",
    "encode_entities",
    "find_threats",
    "sanitize",
    "strip_dangerous",
    "validate",
    "validate_payload",
]
