"""History reduction: fit a conversation under a token target before sending."""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .budget import RESPONSE_RESERVE, SYSTEM_OVERHEAD, ModelLike, should_optimize
from .messages import Message
from .profiles import ModelProfile, resolve_profile
from .tokenizer import estimate_tokens, estimate_message_tokens

__all__ = [
    "ReductionResult", "ContextWindowManager", "truncate_conversation",
    "optimize_conversation", "reduce_for_submission", "summary_placeholder",
    "DEFAULT_KEEP_RECENT", "DEFAULT_TARGET_FRACTION",
]

logger = logging.getLogger(__name__)

DEFAULT_KEEP_RECENT = 6
DEFAULT_TARGET_FRACTION = 0.7
# An older head this short is dropped outright instead of summarized.
MIN_SUMMARIZED_HEAD = 3


@dataclass(frozen=True)
class ReductionResult:
    messages: List[Message] = field(default_factory=list)
    elided: int = 0
    source_length: int = 0

    @property
    def reduced(self) -> bool:
        return self.elided > 0

    def apply(self, history: Sequence[Message]) -> List[Message]:
        """Re-apply this window to ``history``, keeping anything appended since."""
        return list(self.messages) + list(history[self.source_length:])

    @classmethod
    def unchanged(cls, messages: Sequence[Message]) -> "ReductionResult":
        return cls(messages=list(messages), elided=0, source_length=len(messages))


def summary_placeholder(elided: int) -> Message:
    return Message.assistant(
        f"*[Conversation summary: This conversation previously covered {elided} "
        f"messages. Key topics and context have been preserved.]*"
    )


class ContextWindowManager:
    """Reduces history for one model profile, caching per-message estimates."""

    def __init__(self, model: ModelLike = None,
                 keep_recent_count: int = DEFAULT_KEEP_RECENT,
                 target_fraction: float = DEFAULT_TARGET_FRACTION):
        self.profile: ModelProfile = resolve_profile(model)
        self.keep_recent_count = keep_recent_count
        self.target_fraction = target_fraction
        # Messages are immutable, so equal messages share one estimate.
        self._token_cache: Dict[Message, int] = {}

    def estimate_message_tokens(self, msg: Message) -> int:
        cached = self._token_cache.get(msg)
        if cached is not None:
            return cached
        result = estimate_message_tokens(msg)
        self._token_cache[msg] = result
        return result

    def target_tokens(self) -> int:
        return math.floor(self.profile.soft_limit * self.target_fraction)

    def truncate(self, messages: Sequence[Message], system_prompt: str) -> ReductionResult:
        """Keep the longest suffix of ``messages`` that fits the target.

        Never empty for nonempty input: when even the newest message is too
        large it is returned alone.
        """
        total = len(messages)
        if not total:
            return ReductionResult.unchanged(messages)

        budget = self.target_tokens()
        used = estimate_tokens(system_prompt) + SYSTEM_OVERHEAD + RESPONSE_RESERVE

        start_index = total
        for msg in reversed(messages):
            msg_tokens = self.estimate_message_tokens(msg)
            if used + msg_tokens > budget:
                break
            used += msg_tokens
            start_index -= 1

        if start_index == total:
            start_index = total - 1

        kept = list(messages[start_index:])
        if start_index:
            logger.info("Truncated %d old messages to fit %d tokens", start_index, budget)
        return ReductionResult(messages=kept, elided=start_index, source_length=total)

    async def optimize(self, messages: Sequence[Message]) -> ReductionResult:
        """Collapse everything but the recent tail into a templated placeholder.

        The placeholder is scripted text, not a summary of the elided turns.
        """
        total = len(messages)
        keep = self.keep_recent_count
        if total <= keep:
            return ReductionResult.unchanged(messages)

        recent = list(messages[-keep:]) if keep > 0 else []
        older = total - len(recent)
        if older < MIN_SUMMARIZED_HEAD:
            return ReductionResult(messages=recent, elided=older, source_length=total)

        return ReductionResult(messages=[summary_placeholder(older)] + recent,
                               elided=older, source_length=total)

    async def reduce(self, messages: Sequence[Message], system_prompt: str) -> ReductionResult:
        """Reduce ``messages`` for submission; reducer failures degrade to truncation."""
        if not should_optimize(messages, system_prompt, self.profile):
            return ReductionResult.unchanged(messages)

        try:
            result = await self.optimize(messages)
        except Exception:
            logger.warning("History optimization failed, truncating instead", exc_info=True)
            return self.truncate(messages, system_prompt)

        if should_optimize(result.messages, system_prompt, self.profile):
            truncated = self.truncate(result.messages, system_prompt)
            return ReductionResult(
                messages=truncated.messages,
                elided=result.elided + truncated.elided,
                source_length=len(messages),
            )
        return result


def truncate_conversation(messages: Sequence[Message], system_prompt: str,
                          model: ModelLike = None,
                          target_fraction: float = DEFAULT_TARGET_FRACTION) -> ReductionResult:
    return ContextWindowManager(model, target_fraction=target_fraction).truncate(
        messages, system_prompt)


async def optimize_conversation(messages: Sequence[Message],
                                keep_recent_count: int = DEFAULT_KEEP_RECENT) -> ReductionResult:
    return await ContextWindowManager(keep_recent_count=keep_recent_count).optimize(messages)


async def reduce_for_submission(messages: Sequence[Message], system_prompt: str,
                                model: ModelLike = None,
                                keep_recent_count: int = DEFAULT_KEEP_RECENT,
                                target_fraction: float = DEFAULT_TARGET_FRACTION,
                                manager: Optional[ContextWindowManager] = None) -> ReductionResult:
    manager = manager or ContextWindowManager(model, keep_recent_count, target_fraction)
    return await manager.reduce(messages, system_prompt)
