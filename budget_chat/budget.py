"""Budget accounting: estimated conversation cost against a model's soft limit."""

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, Union

from .messages import Message
from .profiles import ModelProfile, resolve_profile
from .tasks import Debouncer
from .tokenizer import estimate_tokens, ROLE_OVERHEAD

__all__ = [
    "UsageLevel", "UsageSnapshot", "RESPONSE_RESERVE", "SYSTEM_OVERHEAD",
    "WARNING_THRESHOLDS", "OPTIMIZE_PERCENTAGE",
    "calculate_message_tokens", "calculate_conversation_tokens",
    "get_token_usage", "compute_usage", "should_optimize", "UsageTracker",
]

logger = logging.getLogger(__name__)

SYSTEM_OVERHEAD = 10      # framing around the system message
RESPONSE_RESERVE = 1000   # headroom reserved for the completion itself

# Lower bound of each level; highest satisfied wins.
WARNING_THRESHOLDS = {
    "info": 0.6,
    "warning": 0.8,
    "danger": 0.9,
}
OPTIMIZE_PERCENTAGE = 0.85

ModelLike = Union[str, ModelProfile, None]


class UsageLevel(str, enum.Enum):
    SAFE = "safe"
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"

    @classmethod
    def for_percentage(cls, percentage: float) -> "UsageLevel":
        if percentage >= WARNING_THRESHOLDS["danger"]:
            return cls.DANGER
        if percentage >= WARNING_THRESHOLDS["warning"]:
            return cls.WARNING
        if percentage >= WARNING_THRESHOLDS["info"]:
            return cls.INFO
        return cls.SAFE


@dataclass(frozen=True)
class UsageSnapshot:
    estimated: int
    limit: int
    percentage: float
    level: UsageLevel
    remaining: int


def calculate_message_tokens(messages: Iterable[Message]) -> int:
    total = 0
    for msg in messages:
        total += estimate_tokens(msg.text) + ROLE_OVERHEAD
    return total + SYSTEM_OVERHEAD


def calculate_conversation_tokens(messages: Iterable[Message], system_prompt: str,
                                  draft: Optional[str] = None) -> int:
    """Estimated cost of sending ``messages`` (and ``draft``) with ``system_prompt``.

    Always includes ``RESPONSE_RESERVE`` so the completion has room.
    """
    total = estimate_tokens(system_prompt) + ROLE_OVERHEAD
    total += calculate_message_tokens(messages)
    if draft:
        total += estimate_tokens(draft) + ROLE_OVERHEAD
    return total + RESPONSE_RESERVE


def get_token_usage(estimated: int, model: ModelLike = None) -> UsageSnapshot:
    profile = resolve_profile(model)
    limit = profile.soft_limit
    percentage = estimated / limit if limit > 0 else float("inf")
    return UsageSnapshot(
        estimated=estimated,
        limit=limit,
        percentage=percentage,
        level=UsageLevel.for_percentage(percentage),
        remaining=max(0, limit - estimated),
    )


def compute_usage(messages: Sequence[Message], system_prompt: str,
                  draft: Optional[str] = None, model: ModelLike = None) -> UsageSnapshot:
    return get_token_usage(calculate_conversation_tokens(messages, system_prompt, draft), model)


def should_optimize(messages: Sequence[Message], system_prompt: str,
                    model: ModelLike = None) -> bool:
    usage = compute_usage(messages, system_prompt, model=model)
    return usage.level is UsageLevel.DANGER or usage.percentage > OPTIMIZE_PERCENTAGE


class UsageTracker:
    """Debounced usage recomputation for one conversation view.

    Rapid edits to the draft call ``schedule()`` repeatedly; the snapshot is
    computed once, from the last inputs, after ``delay`` seconds of quiet.
    """

    def __init__(self, delay: float = 0.3,
                 on_update: Optional[Callable[[UsageSnapshot], None]] = None):
        self.on_update = on_update
        self.latest: Optional[UsageSnapshot] = None
        self._debouncer = Debouncer(delay, self._recompute)

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    def schedule(self, messages: Sequence[Message], system_prompt: str,
                 draft: Optional[str] = None, model: ModelLike = None) -> None:
        # Snapshot the list; the caller keeps appending to its own copy.
        self._debouncer.trigger(list(messages), system_prompt, draft, model)

    def flush(self) -> Optional[UsageSnapshot]:
        self._debouncer.flush()
        return self.latest

    def cancel(self) -> bool:
        return self._debouncer.cancel()

    def _recompute(self, messages, system_prompt, draft, model) -> None:
        self.latest = compute_usage(messages, system_prompt, draft, model)
        logger.debug("Usage recomputed: %d/%d (%s)", self.latest.estimated,
                     self.latest.limit, self.latest.level.value)
        if self.on_update is not None:
            self.on_update(self.latest)
