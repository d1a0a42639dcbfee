"""Completion stream provider via litellm."""

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

import litellm

from .errors import ProviderError, wrap_provider_error
from .messages import Message, to_provider_turns
from .tasks import CancelHandle

litellm.suppress_debug_info = True

__all__ = ["CompletionRequest", "CompletionProvider", "LiteLLMProvider",
           "DEFAULT_SYSTEM_PROMPT", "DEFAULT_TEMPERATURE"]

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
DEFAULT_TEMPERATURE = 0.7

TITLE_PROMPT = """\
Generate a short, concise title (max 4 words) for this conversation based on the user's first message.

User's first message: "{message}"

The title should be specific to what the user is asking about, not generic. Focus on the main topic or task.
Examples:
- "Fix React Hook Bug"
- "Python Data Analysis"
- "API Security Review"

Return only the title, nothing else."""


@dataclass
class CompletionRequest:
    system_message: str
    turns: List[Message]
    model: str
    temperature: float = DEFAULT_TEMPERATURE
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_messages(self) -> List[Dict[str, str]]:
        return [{"role": "system", "content": self.system_message}] + to_provider_turns(self.turns)


class CompletionProvider(Protocol):
    """Anything that turns a request into an ordered stream of text fragments."""

    def stream(self, request: CompletionRequest,
               cancel: CancelHandle) -> AsyncIterator[str]: ...


class LiteLLMProvider:
    """Streams chat completions through litellm. Passes api_key/api_base
    directly instead of relying on environment variables."""

    def __init__(self, api_base: Optional[str] = None, api_key: Optional[str] = None,
                 max_tokens: Optional[int] = None, model_map: Optional[Dict[str, str]] = None):
        self.api_base = api_base
        self.api_key = api_key
        self.max_tokens = max_tokens
        # Profile id -> litellm model string, e.g. "local" -> "openai/model".
        self.model_map = dict(model_map or {})

    def _kwargs(self, model: str, messages: List[Dict[str, str]], **extra) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"model": self.model_map.get(model, model), "messages": messages}
        if self.max_tokens:
            kwargs["max_tokens"] = self.max_tokens
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.api_key:
            kwargs["api_key"] = self.api_key
        kwargs.update(extra)
        return kwargs

    async def stream(self, request: CompletionRequest,
                     cancel: CancelHandle) -> AsyncIterator[str]:
        """Yield text fragments in arrival order; stops once ``cancel`` is signalled."""
        kwargs = self._kwargs(request.model, request.to_messages(),
                              temperature=request.temperature, stream=True, **request.extra)
        try:
            response_stream = await litellm.acompletion(**kwargs)
        except ProviderError:
            raise
        except Exception as e:
            raise wrap_provider_error(e) from e

        try:
            async for chunk in response_stream:
                if cancel.cancelled:
                    break
                if not chunk.choices:
                    continue
                content = getattr(chunk.choices[0].delta, "content", None)
                if content:
                    yield content
        except ProviderError:
            raise
        except Exception as e:
            raise wrap_provider_error(e) from e
        finally:
            closer = getattr(response_stream, "aclose", None)
            if closer is not None:
                try:
                    await closer()
                except Exception:
                    logger.debug("Closing response stream failed", exc_info=True)

    async def generate_title(self, messages: Sequence[Message], model: str,
                             fallback: str) -> str:
        """Ask the model for a short conversation title; ``fallback`` on any failure."""
        first_user = next((m for m in messages if m.role == "user"), None)
        if first_user is None:
            return fallback

        kwargs = self._kwargs(model, [
            {"role": "system",
             "content": "You are a helpful assistant that generates concise conversation titles."},
            {"role": "user", "content": TITLE_PROMPT.format(message=first_user.text)},
        ], max_tokens=20, temperature=0.7)
        try:
            response = await litellm.acompletion(**kwargs)
            title = (response.choices[0].message.content or "").strip()
        except Exception as e:
            logger.warning("Title generation failed, using fallback: %s", e)
            return fallback

        if title and len(title) <= 50:
            return title.strip("\"'")
        return fallback
