"""Push-to-pull event queue for ``async for`` consumption.

Producers call :meth:`AsyncEventQueue.push` synchronously (from event
handlers); consumers iterate with ``async for``. The queue terminates in one
of two ways:

- :meth:`end`: waiting consumers stop iterating; items already queued are
  still delivered first.
- :meth:`abort`: waiting consumers and every later ``__anext__`` raise the
  abort error; queued items are discarded.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from typing import Generic, TypeVar

T = TypeVar("T")

_END = object()


class AsyncEventQueue(Generic[T]):
    """FIFO queue with distinct ended/aborted terminal states."""

    def __init__(self) -> None:
        self._items: deque[T] = deque()
        self._waiters: deque[asyncio.Future[T]] = deque()
        self._done = False
        self._error: BaseException | None = None

    @property
    def is_done(self) -> bool:
        """Whether the queue has ended (normally or with an error)."""
        return self._done

    def __len__(self) -> int:
        return len(self._items)

    def push(self, item: T) -> None:
        """Deliver ``item`` to the oldest waiter, or queue it. Ignored once done."""
        if self._done:
            return
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(item)
                return
        self._items.append(item)

    def end(self) -> None:
        """End the queue normally."""
        if self._done:
            return
        self._done = True
        self._flush_waiters()

    def abort(self, error: BaseException) -> None:
        """End the queue with ``error``, discarding queued items."""
        if self._done:
            return
        self._done = True
        self._error = error
        self._items.clear()
        self._flush_waiters()

    async def get(self) -> T:
        """Return the next item.

        Raises:
            StopAsyncIteration: If the queue ended and is drained.
            BaseException: The abort error, if the queue was aborted.
        """
        if self._error is not None:
            raise self._error
        if self._items:
            return self._items.popleft()
        if self._done:
            raise StopAsyncIteration
        waiter: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            item = await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
        if item is _END:
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        return await self.get()

    def _flush_waiters(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            if self._error is not None:
                waiter.set_exception(self._error)
            else:
                waiter.set_result(_END)  # type: ignore[arg-type]


__all__ = ["AsyncEventQueue"]
