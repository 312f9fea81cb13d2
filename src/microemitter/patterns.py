"""
Wildcard pattern compilation.

Rules:

- `*` or `**` on their own match every event name.
- `**` matches any run of characters, separators included.
- `*` matches a run of characters that contains no `.` separator.
- `?` matches exactly one non-separator character.

Compiled patterns are cached for the lifetime of the process.
"""

from __future__ import annotations

import re
from re import Pattern
from typing import Any, Dict

SEPARATOR = "."

_MATCH_ALL = re.compile(r".*", re.DOTALL)
_TOKENS = re.compile(r"\*\*|\*|\?")

# append-only; patterns are immutable strings so entries never go stale
_PATTERN_CACHE: Dict[str, Pattern[str]] = {}


def is_pattern(event: Any) -> bool:
    """Return True if `event` is a string containing wildcard characters."""
    return isinstance(event, str) and ("*" in event or "?" in event)


def _translate(pattern: str) -> str:
    sep = re.escape(SEPARATOR)
    parts = []
    pos = 0
    for token in _TOKENS.finditer(pattern):
        parts.append(re.escape(pattern[pos : token.start()]))
        if token.group() == "**":
            parts.append(".*")
        elif token.group() == "*":
            parts.append(f"[^{sep}]*")
        else:
            parts.append(f"[^{sep}]")
        pos = token.end()
    parts.append(re.escape(pattern[pos:]))
    return "".join(parts)


def compile_pattern(pattern: str) -> Pattern[str]:
    """
    Compile a wildcard pattern, reusing the cached result when available.

    Args:
        pattern (str): The raw wildcard pattern, e.g. "user.*".

    Returns:
        Pattern[str]: A regex to be used with `fullmatch`.
    """
    compiled = _PATTERN_CACHE.get(pattern)
    if compiled is None:
        if pattern in ("*", "**"):
            compiled = _MATCH_ALL
        else:
            compiled = re.compile(_translate(pattern), re.DOTALL)
        compiled = _PATTERN_CACHE.setdefault(pattern, compiled)
    return compiled


def matches(pattern: str, event: Any) -> bool:
    """Return True if the event name `event` matches the wildcard `pattern`."""
    if not isinstance(event, str):
        return False
    return compile_pattern(pattern).fullmatch(event) is not None
