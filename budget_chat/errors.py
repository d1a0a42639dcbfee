"""Structured error types and provider error classification."""

import enum
import re
from typing import Optional


class ChatError(Exception):
    """Base error for all chat operations."""
    pass


class SessionBusyError(ChatError):
    """Raised when a conversation already has a response streaming."""

    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation '{conversation_id}' is already streaming a response")


class ErrorKind(str, enum.Enum):
    AUTH = "auth"
    QUOTA = "quota"
    RATE_LIMIT = "rate_limit"
    CONTEXT_LENGTH = "context_length"
    OTHER = "other"


class ProviderError(ChatError):
    """Error raised by the completion provider, tagged with its kind."""

    kind = ErrorKind.OTHER

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class ProviderAuthError(ProviderError):
    kind = ErrorKind.AUTH


class ProviderQuotaError(ProviderError):
    kind = ErrorKind.QUOTA


class ProviderRateLimitError(ProviderError):
    kind = ErrorKind.RATE_LIMIT


class ContextLengthExceededError(ProviderError):
    kind = ErrorKind.CONTEXT_LENGTH


PROVIDER_ERRORS = {
    ErrorKind.AUTH: ProviderAuthError,
    ErrorKind.QUOTA: ProviderQuotaError,
    ErrorKind.RATE_LIMIT: ProviderRateLimitError,
    ErrorKind.CONTEXT_LENGTH: ContextLengthExceededError,
    ErrorKind.OTHER: ProviderError,
}

# Checked in order: quota before rate limit, since providers report an
# exhausted quota as HTTP 429 too.
_PATTERNS = [
    (ErrorKind.CONTEXT_LENGTH, re.compile(
        r"context[_ ]length|context window|maximum context|too many tokens|"
        r"reduce the length|prompt is too long", re.I)),
    (ErrorKind.AUTH, re.compile(
        r"\b401\b|\b403\b|unauthori[sz]ed|invalid[_ ]api[_ ]key|incorrect api key|"
        r"authentication|permission denied", re.I)),
    (ErrorKind.QUOTA, re.compile(
        r"insufficient[_ ]quota|quota|billing|credit balance|payment required|\b402\b", re.I)),
    (ErrorKind.RATE_LIMIT, re.compile(
        r"\b429\b|rate[_ ]?limit|too many requests|overloaded", re.I)),
]

_LITELLM_KINDS = {
    "ContextWindowExceededError": ErrorKind.CONTEXT_LENGTH,
    "AuthenticationError": ErrorKind.AUTH,
    "PermissionDeniedError": ErrorKind.AUTH,
    "BudgetExceededError": ErrorKind.QUOTA,
}


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any provider failure to an ``ErrorKind``."""
    if isinstance(exc, ProviderError) and exc.kind is not ErrorKind.OTHER:
        return exc.kind

    message = str(exc)
    # Type names cover litellm/openai exceptions without importing them here.
    for cls in type(exc).__mro__:
        kind = _LITELLM_KINDS.get(cls.__name__)
        if kind is not None:
            return kind

    for kind, pattern in _PATTERNS:
        if pattern.search(message):
            return kind

    status = getattr(exc, "status_code", None)
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 402:
        return ErrorKind.QUOTA
    if status == 429:
        return ErrorKind.RATE_LIMIT
    return ErrorKind.OTHER


def wrap_provider_error(exc: BaseException) -> ProviderError:
    """Re-raise-ready ``ProviderError`` subclass matching ``exc``'s kind."""
    if isinstance(exc, ProviderError):
        return exc
    kind = classify_error(exc)
    detail = f"{type(exc).__name__}: {exc}"
    return PROVIDER_ERRORS[kind](detail, status_code=getattr(exc, "status_code", None))


_DESCRIPTIONS = {
    ErrorKind.AUTH: "Authorization failed. Check that your API key is valid.",
    ErrorKind.QUOTA: "The provider rejected the request: quota or billing limit reached.",
    ErrorKind.RATE_LIMIT: "Rate limit reached. Wait a moment before sending again.",
    ErrorKind.CONTEXT_LENGTH: (
        "The conversation is too long for this model. Older messages will be "
        "left out of the next request; send your message again."
    ),
    ErrorKind.OTHER: "Something went wrong, try again.",
}


def describe_error(kind: ErrorKind, detail: Optional[str] = None) -> str:
    """User-facing assistant text for a failed request."""
    text = _DESCRIPTIONS[kind]
    if detail:
        text += f"\n\n`{detail}`"
    return text
