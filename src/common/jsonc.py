"""JSON-with-comments helpers for deno.json / deno.jsonc config files."""

from __future__ import annotations

import json
import re
from typing import Any

_TRAILING_COMMA = re.compile(r',(\s*[}\]])')


def strip_jsonc_comments(content: str) -> str:
    """Strip comments from JSONC (JSON with comments) content.

    Removes:
    - Single-line comments (// ...)
    - Multi-line comments (/* ... */)
    - Trailing commas before closing brackets/braces

    String literals are copied verbatim, so URLs such as
    ``"https://deno.land/x/"`` survive.

    Args:
        content: JSONC string content

    Returns:
        JSON string with comments removed
    """
    out = []
    i = 0
    length = len(content)
    while i < length:
        ch = content[i]
        if ch == '"':
            j = i + 1
            while j < length and content[j] != '"':
                j += 2 if content[j] == '\\' else 1
            out.append(content[i:j + 1])
            i = j + 1
        elif content.startswith('//', i):
            newline = content.find('\n', i)
            i = length if newline == -1 else newline
        elif content.startswith('/*', i):
            end = content.find('*/', i + 2)
            i = length if end == -1 else end + 2
        else:
            out.append(ch)
            i += 1
    stripped = ''.join(out)
    return _strip_trailing_commas(stripped)


def _strip_trailing_commas(content: str) -> str:
    # Only touch commas outside string literals
    parts = re.split(r'("(?:\\.|[^"\\])*")', content)
    for idx in range(0, len(parts), 2):
        parts[idx] = _TRAILING_COMMA.sub(r'\1', parts[idx])
    return ''.join(parts)


def loads(content: str) -> Any:
    """Parse JSONC text. Raises json.JSONDecodeError on malformed input."""
    return json.loads(strip_jsonc_comments(content))
