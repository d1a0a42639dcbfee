"""Cancellable asynchronous primitives: cancel handles, debouncers, guarded streams.

Every asynchronous operation gets exactly one owner. The owner holds the
handle and is responsible for calling ``cancel()`` on teardown; all cancel
operations here are idempotent so teardown paths never need to check state.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, AsyncIterable, AsyncIterator, Callable, Optional, TypeVar

__all__ = ["CancelHandle", "Debouncer", "iterate_until_cancelled"]


T = TypeVar("T")


class CancelHandle:
    """Cooperative cancellation signal shared between a request and its owner."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Signal cancellation. Returns ``False`` if it was already signalled."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()


class Debouncer:
    """Coalesce bursts of ``trigger()`` calls into one callback after a quiet period.

    Only the arguments of the last trigger are delivered. ``cancel()`` drops
    the pending call; it is safe to call any number of times.
    """

    def __init__(self, delay: float, callback: Callable[..., Any]):
        self.delay = max(0.0, float(delay))
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending_args: tuple = ()
        self._pending_kwargs: dict = {}

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, *args, **kwargs) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._pending_args = args
        self._pending_kwargs = kwargs
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._clear()
        return True

    def flush(self) -> bool:
        """Run the pending call now instead of waiting for the timer."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._fire()
        return True

    def _fire(self) -> None:
        args, kwargs = self._pending_args, self._pending_kwargs
        self._clear()
        self.callback(*args, **kwargs)

    def _clear(self) -> None:
        self._handle = None
        self._pending_args = ()
        self._pending_kwargs = {}


async def iterate_until_cancelled(source: AsyncIterable[T],
                                  handle: CancelHandle) -> AsyncIterator[T]:
    """Yield items from ``source`` until it ends or ``handle`` is cancelled.

    Waiting for the next item races against the cancel signal, so a stream
    that stalls cannot outlive its cancellation. Items that arrive before the
    signal are still yielded. The source is closed on exit.
    """
    iterator = source.__aiter__()
    cancel_wait = asyncio.ensure_future(handle.wait())
    next_item: Optional[asyncio.Future] = None
    try:
        while not handle.cancelled:
            next_item = asyncio.ensure_future(iterator.__anext__())
            done, _ = await asyncio.wait(
                {next_item, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
            if next_item not in done:
                break
            try:
                item = next_item.result()
            except StopAsyncIteration:
                break
            next_item = None
            yield item
    finally:
        cancel_wait.cancel()
        # The source cannot be closed while a read is still in flight.
        if next_item is not None and not next_item.done():
            next_item.cancel()
            with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                await next_item
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
