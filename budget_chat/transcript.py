"""Windowed transcript rendering for one conversation."""

import logging
from typing import List, Optional

from rich.console import Console, Group, RenderableType
from rich.markdown import Markdown
from rich.text import Text

from .messages import Message, USER
from .registry import ConversationState
from .theme import ASSISTANT_LABEL, DIM, USER_LABEL

__all__ = ["TranscriptView"]

logger = logging.getLogger(__name__)


class TranscriptView:
    """Renders the visible slice of a conversation and learns item heights.

    Heights are terminal rows, measured with ``Console.render_lines`` at the
    console's current width and recorded into the conversation's
    ``HeightCache``. A streaming reply is rendered as one trailing item.
    """

    def __init__(self, console: Console, width: Optional[int] = None):
        self.console = console
        self.width = width

    def render_message(self, message: Message) -> RenderableType:
        if message.role == USER:
            label = Text("› you", style=USER_LABEL)
            body: RenderableType = Text(message.text)
        else:
            label = Text("● assistant", style=ASSISTANT_LABEL)
            body = Markdown(message.text)
        return Group(label, body, Text(""))

    def render_live(self, text: str) -> RenderableType:
        label = Text("● assistant", style=ASSISTANT_LABEL)
        return Group(label, Text(text), Text("▍", style=DIM))

    def measure(self, renderable: RenderableType) -> int:
        options = self.console.options
        if self.width:
            options = options.update_width(self.width)
        return len(self.console.render_lines(renderable, options, pad=False))

    def item(self, state: ConversationState, index: int) -> RenderableType:
        if index < len(state.messages):
            return self.render_message(state.messages[index])
        return self.render_live(state.live_text)

    def render(self, state: ConversationState, follow: bool = False) -> RenderableType:
        """Render the current window; ``follow`` pins the view to the newest item."""
        count = state.item_count()
        if follow:
            state.view.scroll_to_bottom(count)
        window = state.view.window(count)

        parts: List[RenderableType] = []
        if window.start_index > 0:
            parts.append(Text(f"  ⋯ {window.start_index} earlier messages", style=DIM))
        for index in window.indices:
            renderable = self.item(state, index)
            state.view.measure(index, self.measure(renderable))
            parts.append(renderable)
        hidden_after = count - 1 - window.end_index
        if hidden_after > 0:
            parts.append(Text(f"  ⋯ {hidden_after} later messages", style=DIM))

        logger.debug("Rendered items %d..%d of %d (virtualized=%s)",
                     window.start_index, window.end_index, count, window.virtualized)
        return Group(*parts)
