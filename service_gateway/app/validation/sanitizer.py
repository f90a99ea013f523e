"""
Injection sanitization for untrusted string fields.

``sanitize`` removes every substring matching the markup/script and SQL
deny-lists, repeating until nothing matches (so stripping one match can not
splice together another), then HTML-entity-encodes the reserved characters
and trims. Entities produced by the encoder are left alone on a second pass,
which keeps ``sanitize`` idempotent.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Pattern, Tuple

# Markup / script injection
SCRIPT_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"eval\s*\(", re.IGNORECASE),
    re.compile(r"expression\s*\(", re.IGNORECASE),
    re.compile(r"@import", re.IGNORECASE),
    re.compile(r"binding\s*:", re.IGNORECASE),
)

SQL_KEYWORD_PATTERN: Pattern[str] = re.compile(
    r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION|SCRIPT)\b", re.IGNORECASE
)

# Comment delimiters and tautological OR/AND clauses
SQL_STRUCTURE_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"--|\*/|/\*"),
    re.compile(r"\bOR\b.*=.*\bOR\b", re.IGNORECASE),
    re.compile(r"\bAND\b.*=.*\bAND\b", re.IGNORECASE),
    re.compile(r"\bWHERE\b.*=.*\bOR\b", re.IGNORECASE),
    re.compile(r"\bWHERE\b.*=.*\bAND\b", re.IGNORECASE),
)

STRIP_PATTERNS: Tuple[Pattern[str], ...] = SCRIPT_PATTERNS + (SQL_KEYWORD_PATTERN,) + SQL_STRUCTURE_PATTERNS

_ENTITIES: Dict[str, str] = {
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}
_BARE_AMPERSAND = re.compile(r"&(?!(?:amp|lt|gt|quot|#x27|#x2F);)")
_RESERVED = re.compile(r"[<>\"'/]")


def strip_dangerous(value: str) -> str:
    """Remove every deny-listed match until the text is stable."""
    previous = None
    while previous != value:
        previous = value
        for pattern in STRIP_PATTERNS:
            value = pattern.sub("", value)
    return value


def encode_entities(value: str) -> str:
    """HTML-entity-encode ``& < > " ' /`` without double-encoding."""
    value = _BARE_AMPERSAND.sub("&amp;", value)
    return _RESERVED.sub(lambda match: _ENTITIES[match.group(0)], value)


def sanitize(value: Any) -> str:
    """Return a neutralized copy of ``value``; non-strings become ``""``."""
    if not isinstance(value, str):
        return ""
    return encode_entities(strip_dangerous(value)).strip()


def find_threats(value: str, include_sql_keywords: bool = False) -> List[str]:
    """Name the deny-list families that ``value`` matches.

    Bare SQL keywords are ordinary English ("update", "select") and are only
    reported when ``include_sql_keywords`` is set; sanitization still strips
    them.
    """
    threats: List[str] = []
    if any(pattern.search(value) for pattern in SCRIPT_PATTERNS):
        threats.append("script_injection")
    if any(pattern.search(value) for pattern in SQL_STRUCTURE_PATTERNS):
        threats.append("sql_injection")
    elif include_sql_keywords and SQL_KEYWORD_PATTERN.search(value):
        threats.append("sql_keyword")
    return threats
