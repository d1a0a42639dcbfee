"""User input sanitization."""

import re

import bleach

__all__ = ["sanitize_input", "NEWLINE_PLACEHOLDER", "AMPERSAND_PLACEHOLDER"]

# Private-use code points; survive bleach untouched and never appear in typed text.
NEWLINE_PLACEHOLDER = "\ue000"
AMPERSAND_PLACEHOLDER = "\ue001"

_EXECUTABLE_BLOCK_RE = re.compile(
    r"<\s*(script|style|iframe|object|embed)\b[^>]*>.*?<\s*/\s*\1\s*>",
    re.I | re.S,
)

# With every typed "&" held back, these can only come from bleach escaping text.
_BLEACH_ENTITIES = (("&lt;", "<"), ("&gt;", ">"))

# Stripping never grows the text, so this only bounds pathological nesting.
_MAX_PASSES = 10


def _strip_once(value: str) -> str:
    value = _EXECUTABLE_BLOCK_RE.sub("", value)
    value = value.replace("&", AMPERSAND_PLACEHOLDER)
    value = bleach.clean(value, tags=set(), attributes={}, strip=True, strip_comments=True)
    for entity, char in _BLEACH_ENTITIES:
        value = value.replace(entity, char)
    return value


def sanitize_input(text: str) -> str:
    """Strip executable markup from ``text`` while keeping its line breaks.

    Typed entities such as ``&lt;`` stay literal text. Stripping repeats until
    the text stops changing, so tags split around other tags cannot reassemble.
    """
    if not text:
        return ""
    value = text.replace("\r\n", "\n").replace("\r", "\n")
    value = value.replace(NEWLINE_PLACEHOLDER, "").replace(AMPERSAND_PLACEHOLDER, "")
    value = value.replace("\n", NEWLINE_PLACEHOLDER)

    for _ in range(_MAX_PASSES):
        cleaned = _strip_once(value)
        if cleaned == value:
            break
        value = cleaned

    value = value.replace(AMPERSAND_PLACEHOLDER, "&")
    return value.replace(NEWLINE_PLACEHOLDER, "\n").strip()
