"""Cooperative cancellation signals.

An :class:`AbortController` owns an :class:`AbortSignal`; components receive
the signal and check it at their suspension points or subscribe to it.
Timeouts are expressed as signals too (:func:`timeout_signal`) and combined
with caller signals through :func:`any_signal`: the first input to fire aborts
the combined signal and the remaining subscriptions are released.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .exceptions import AbortError

logger = logging.getLogger(__name__)


class AbortSignal:
    """Read-only view of an abort state with listeners."""

    def __init__(self) -> None:
        self._aborted = False
        self._reason: BaseException | None = None
        self._listeners: dict[Callable[[], Any], None] = {}
        self._cleanups: list[Callable[[], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> BaseException | None:
        return self._reason

    def add_listener(self, listener: Callable[[], Any]) -> None:
        """Call ``listener`` once when the signal aborts.

        Listeners added after the signal aborted are never called.
        """
        if not self._aborted:
            self._listeners[listener] = None

    def remove_listener(self, listener: Callable[[], Any]) -> None:
        self._listeners.pop(listener, None)

    def throw_if_aborted(self) -> None:
        """Raise the abort reason if the signal has aborted."""
        if self._aborted:
            raise self._reason or AbortError()

    async def wait(self) -> None:
        """Suspend until the signal aborts."""
        if self._aborted:
            return
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def wake() -> None:
            if not future.done():
                future.set_result(None)

        self.add_listener(wake)
        try:
            await future
        finally:
            self.remove_listener(wake)

    def dispose(self) -> None:
        """Release timers and upstream subscriptions held by this signal."""
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            cleanup()

    def _abort(self, reason: BaseException | None = None) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason or AbortError()
        listeners, self._listeners = list(self._listeners), {}
        for listener in listeners:
            try:
                listener()
            except Exception as e:
                logger.warning("Abort listener raised exception: %s", e, exc_info=True)
        self.dispose()


class AbortController:
    """Owner of an :class:`AbortSignal`."""

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: BaseException | None = None) -> None:
        """Abort the signal. Repeated calls are ignored."""
        self.signal._abort(reason)


def timeout_signal(seconds: float, message: str | None = None) -> AbortSignal:
    """Return a signal that aborts after ``seconds`` on the running loop."""
    signal = AbortSignal()
    reason = AbortError(message or f"Timed out after {seconds:g}s")
    handle = asyncio.get_running_loop().call_later(seconds, signal._abort, reason)
    signal._cleanups.append(handle.cancel)
    return signal


def any_signal(*signals: AbortSignal | None) -> AbortSignal:
    """Combine signals: the result aborts with the reason of the first input to abort.

    ``None`` entries are skipped. Call :meth:`AbortSignal.dispose` on the result
    when the guarded operation completes to release the input subscriptions;
    inputs such as timeout signals are disposed by their owner.
    """
    combined = AbortSignal()
    inputs = [s for s in signals if s is not None]

    for source in inputs:
        if source.aborted:
            combined._abort(source.reason)
            return combined

    for source in inputs:

        def forward(source: AbortSignal = source) -> None:
            combined._abort(source.reason)

        source.add_listener(forward)
        combined._cleanups.append(lambda source=source, forward=forward: source.remove_listener(forward))

    return combined


__all__ = ["AbortSignal", "AbortController", "timeout_signal", "any_signal"]
