"""Token estimation without a real tokenizer.

Costs are approximations: roughly four characters per token, with small
penalties for markdown control sequences and line breaks. Callers must treat
the result as an estimate, never as the provider's own count.
"""

import math
import re

from .messages import Message

__all__ = ["estimate_tokens", "estimate_message_tokens", "normalize_whitespace",
           "ROLE_OVERHEAD"]

ROLE_OVERHEAD = 6  # per-message role/framing overhead

_WHITESPACE_RE = re.compile(r"\s+")
# Longest alternatives first so ``` and ** count once each.
_MARKDOWN_RE = re.compile(r"```|`|\*\*|\*|#{1,6}|\[|\]|\(|\)")


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text.strip())


def estimate_tokens(text: str) -> int:
    """Estimate the token cost of ``text``.

    ``ceil(len(normalized) / 4)`` plus half a token per markdown control
    sequence and a fifth of a token per newline, each rounded up.
    """
    if not text:
        return 0

    base_tokens = math.ceil(len(normalize_whitespace(text)) / 4)
    markdown_penalty = len(_MARKDOWN_RE.findall(text))
    newline_penalty = text.count("\n")

    return (base_tokens
            + math.ceil(markdown_penalty * 0.5)
            + math.ceil(newline_penalty * 0.2))


def estimate_message_tokens(msg: Message) -> int:
    """Estimate tokens for a conversation message, including role overhead."""
    return estimate_tokens(msg.text) + ROLE_OVERHEAD
