"""Per-conversation state, owned by a registry keyed by conversation id."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, TYPE_CHECKING

from .budget import UsageSnapshot, UsageTracker
from .context_window import ReductionResult
from .messages import Message
from .virtual_list import VirtualList, DEFAULT_ITEM_HEIGHT, DEFAULT_OVERSCAN, VIRTUALIZE_THRESHOLD

if TYPE_CHECKING:
    from .stream_session import StreamSession

__all__ = ["ViewSettings", "ConversationState", "ConversationRegistry"]

logger = logging.getLogger(__name__)


@dataclass
class ViewSettings:
    debounce_seconds: float = 0.3
    container_height: float = 600
    estimated_item_height: float = DEFAULT_ITEM_HEIGHT
    overscan: int = DEFAULT_OVERSCAN
    virtualize_threshold: int = VIRTUALIZE_THRESHOLD


@dataclass
class ConversationState:
    """Everything mutable about one conversation: history, draft, view, live session."""

    conversation_id: str
    messages: List[Message] = field(default_factory=list)
    draft: str = ""
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    view: VirtualList = field(default_factory=VirtualList)
    usage: UsageTracker = field(default_factory=UsageTracker)
    session: Optional["StreamSession"] = None
    reduction_window: Optional[ReductionResult] = None

    @property
    def streaming(self) -> bool:
        return self.session is not None and not self.session.finished

    @property
    def live_text(self) -> str:
        return self.session.live_buffer if self.session is not None else ""

    def item_count(self) -> int:
        """Committed messages plus the live buffer as a virtual trailing item."""
        return len(self.messages) + (1 if self.live_text else 0)

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def history_for_request(self) -> List[Message]:
        if self.reduction_window is not None:
            return self.reduction_window.apply(self.messages)
        return list(self.messages)

    def set_draft(self, text: str, system_prompt: str, model=None) -> None:
        self.draft = text
        self.usage.schedule(self.messages, system_prompt, text, model)

    def detach(self) -> None:
        """Release view-owned resources when this conversation leaves the screen."""
        self.usage.cancel()
        self.view.heights.clear()

    def teardown(self) -> None:
        self.detach()
        if self.session is not None:
            self.session.cancel_handle.cancel()


class ConversationRegistry:
    """Creates, switches and destroys ``ConversationState`` objects."""

    def __init__(self, settings: Optional[ViewSettings] = None,
                 on_usage: Optional[Callable[[str, UsageSnapshot], None]] = None):
        self.settings = settings or ViewSettings()
        self.on_usage = on_usage
        self._states: Dict[str, ConversationState] = {}
        self.active_id: Optional[str] = None

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def ids(self) -> List[str]:
        return list(self._states)

    def get(self, conversation_id: str) -> Optional[ConversationState]:
        return self._states.get(conversation_id)

    @property
    def active(self) -> Optional[ConversationState]:
        return self._states.get(self.active_id) if self.active_id is not None else None

    def _build(self, conversation_id: str, messages: Optional[Iterable[Message]]) -> ConversationState:
        s = self.settings
        on_update = None
        if self.on_usage is not None:
            on_update = lambda usage: self.on_usage(conversation_id, usage)
        return ConversationState(
            conversation_id=conversation_id,
            messages=list(messages or []),
            view=VirtualList(conversation_id, s.container_height, s.estimated_item_height,
                             s.overscan, s.virtualize_threshold),
            usage=UsageTracker(s.debounce_seconds, on_update),
        )

    def get_or_create(self, conversation_id: str,
                      messages: Optional[Iterable[Message]] = None) -> ConversationState:
        state = self._states.get(conversation_id)
        if state is None:
            state = self._build(conversation_id, messages)
            self._states[conversation_id] = state
            logger.debug("Conversation state created: %s", conversation_id)
        return state

    def switch(self, conversation_id: str,
               messages: Optional[Iterable[Message]] = None) -> ConversationState:
        """Make ``conversation_id`` the visible conversation.

        The previous conversation's pending timers are cleared and its height
        cache dropped; a response it is still streaming keeps running.
        """
        previous = self.active
        if previous is not None and previous.conversation_id != conversation_id:
            previous.detach()
        state = self.get_or_create(conversation_id, messages)
        state.view.switch(conversation_id)
        self.active_id = conversation_id
        return state

    def destroy(self, conversation_id: str) -> bool:
        state = self._states.pop(conversation_id, None)
        if state is None:
            return False
        state.teardown()
        if self.active_id == conversation_id:
            self.active_id = None
        logger.debug("Conversation state destroyed: %s", conversation_id)
        return True

    def close(self) -> None:
        for conversation_id in list(self._states):
            self.destroy(conversation_id)
