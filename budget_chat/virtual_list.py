"""Windowed rendering for long, variable-height message lists.

Heights are learned: each item is measured after it is laid out and the
measurement is cached by index. Items never measured use a constant
estimate. The cache belongs to exactly one list identity (a conversation);
binding it to another identity throws every entry away.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Hashable, Optional

__all__ = ["HeightCache", "RenderWindow", "VirtualList", "compute_window",
           "VIRTUALIZE_THRESHOLD", "DEFAULT_OVERSCAN", "DEFAULT_ITEM_HEIGHT"]

logger = logging.getLogger(__name__)

VIRTUALIZE_THRESHOLD = 50
DEFAULT_OVERSCAN = 5
DEFAULT_ITEM_HEIGHT = 100


class HeightCache:
    """index -> last measured height, bound to one list identity."""

    def __init__(self, identity: Optional[Hashable] = None):
        self.identity = identity
        self._heights: Dict[int, float] = {}

    def __len__(self) -> int:
        return len(self._heights)

    def __contains__(self, index: int) -> bool:
        return index in self._heights

    def bind(self, identity: Hashable) -> bool:
        """Attach to ``identity``; returns ``True`` if the cache was reset."""
        if identity == self.identity:
            return False
        logger.debug("Height cache reset: %r -> %r (%d entries dropped)",
                     self.identity, identity, len(self._heights))
        self.identity = identity
        self._heights.clear()
        return True

    def record(self, index: int, height: float) -> None:
        if index < 0 or height < 0:
            raise ValueError(f"Invalid measurement: index={index}, height={height}")
        self._heights[index] = height

    def get(self, index: int, default: float) -> float:
        height = self._heights.get(index)
        # Zero-height measurements come from items not laid out yet.
        return height if height else default

    def clear(self) -> None:
        self._heights.clear()


@dataclass(frozen=True)
class RenderWindow:
    start_index: int
    end_index: int  # inclusive; -1 for an empty list
    offset_pixels: float
    total_pixels: float
    virtualized: bool = True

    @property
    def indices(self) -> range:
        return range(self.start_index, self.end_index + 1)

    def __len__(self) -> int:
        return max(0, self.end_index - self.start_index + 1)


def compute_window(count: int, scroll_top: float, container_height: float,
                   heights: HeightCache, estimated_height: float = DEFAULT_ITEM_HEIGHT,
                   overscan: int = DEFAULT_OVERSCAN,
                   threshold: int = VIRTUALIZE_THRESHOLD) -> RenderWindow:
    """Pick the contiguous range of items to render for a scroll position."""
    if count <= 0:
        return RenderWindow(0, -1, 0, 0, virtualized=False)

    if count <= threshold:
        total = sum(heights.get(i, estimated_height) for i in range(count))
        return RenderWindow(0, count - 1, 0, total, virtualized=False)

    start_index = 0
    accumulated = 0.0
    for i in range(count):
        height = heights.get(i, estimated_height)
        if accumulated + height > scroll_top:
            start_index = max(0, i - overscan)
            break
        accumulated += height
    else:
        # Scrolled past the end; keep the tail on screen.
        start_index = max(0, count - 1 - overscan)

    end_index = count - 1
    accumulated = 0.0
    limit = container_height + overscan * estimated_height
    for i in range(start_index, count):
        accumulated += heights.get(i, estimated_height)
        if accumulated > limit:
            end_index = min(count - 1, i + overscan)
            break

    offset = 0.0
    total = 0.0
    for i in range(count):
        height = heights.get(i, estimated_height)
        if i < start_index:
            offset += height
        total += height

    return RenderWindow(start_index, end_index, offset, total)


class VirtualList:
    """Scroll state and learned heights for the view of one conversation.

    The trailing live buffer of a streaming response counts as one more
    item; callers pass it in ``count``.
    """

    def __init__(self, identity: Optional[Hashable] = None,
                 container_height: float = 600,
                 estimated_height: float = DEFAULT_ITEM_HEIGHT,
                 overscan: int = DEFAULT_OVERSCAN,
                 threshold: int = VIRTUALIZE_THRESHOLD):
        self.heights = HeightCache(identity)
        self.container_height = container_height
        self.estimated_height = estimated_height
        self.overscan = overscan
        self.threshold = threshold
        self.scroll_top = 0.0

    @property
    def identity(self) -> Optional[Hashable]:
        return self.heights.identity

    def switch(self, identity: Hashable) -> bool:
        reset = self.heights.bind(identity)
        if reset:
            self.scroll_top = 0.0
        return reset

    def on_scroll(self, scroll_top: float) -> None:
        self.scroll_top = max(0.0, scroll_top)

    def resize(self, container_height: float) -> None:
        self.container_height = max(0.0, container_height)

    def measure(self, index: int, height: float) -> None:
        self.heights.record(index, height)

    def window(self, count: int) -> RenderWindow:
        return compute_window(count, self.scroll_top, self.container_height, self.heights,
                              self.estimated_height, self.overscan, self.threshold)

    def scroll_to_bottom(self, count: int) -> float:
        total = sum(self.heights.get(i, self.estimated_height) for i in range(count))
        self.scroll_top = max(0.0, total - self.container_height)
        return self.scroll_top
