"""Typed, synchronous event emitter.

Listeners are stored per event name in registration order. Emitting an event
calls every listener even if an earlier one raises: a listener exception is
forwarded to the ``error`` listeners when any are registered, otherwise it is
re-raised on the running event loop so it surfaces through the loop's
exception handler instead of being swallowed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

ERROR_EVENT = "error"

Listener = Callable[..., Any]


def _reraise(error: BaseException) -> None:
    raise error


def schedule_raise(error: BaseException) -> None:
    """Re-raise ``error`` asynchronously on the running event loop.

    Outside a running loop the error is logged instead.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.error("Unhandled listener exception: %s", error, exc_info=error)
        return
    loop.call_soon(_reraise, error)


class TypedEmitter:
    """Minimal event emitter keyed by event name.

    Subclasses (or owners) document their event table; the emitter itself
    accepts any string name.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, dict[Listener, None]] = {}

    def on(self, event: str, handler: Listener) -> TypedEmitter:
        """Register a handler. Registering the same handler twice is a no-op."""
        self._listeners.setdefault(event, {})[handler] = None
        return self

    def once(self, event: str, handler: Listener) -> TypedEmitter:
        """Register a handler that is removed before its first invocation."""

        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return handler(*args)

        wrapper.__wrapped__ = handler  # type: ignore[attr-defined]
        return self.on(event, wrapper)

    def off(self, event: str, handler: Listener) -> TypedEmitter:
        """Remove a handler (also matches handlers registered with :meth:`once`)."""
        handlers = self._listeners.get(event)
        if not handlers:
            return self
        for registered in list(handlers):
            if registered is handler or getattr(registered, "__wrapped__", None) is handler:
                del handlers[registered]
        if not handlers:
            del self._listeners[event]
        return self

    def emit(self, event: str, *args: Any) -> None:
        """Call every handler registered for ``event``.

        Handler exceptions never prevent the remaining handlers from running.
        """
        handlers = self._listeners.get(event)
        if not handlers:
            return
        for handler in list(handlers):
            try:
                handler(*args)
            except Exception as e:
                if event == ERROR_EVENT:
                    schedule_raise(e)
                else:
                    self._report_listener_error(event, e)

    def listener_count(self, event: str) -> int:
        """Number of handlers registered for ``event``."""
        return len(self._listeners.get(event, ()))

    def remove_all_listeners(self, event: str | None = None) -> None:
        """Remove all handlers for ``event``, or for every event if omitted."""
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def _report_listener_error(self, event: str, error: Exception) -> None:
        logger.warning("Listener for %r raised exception: %s", event, error)
        handlers = self._listeners.get(ERROR_EVENT)
        if not handlers:
            schedule_raise(error)
            return
        for handler in list(handlers):
            try:
                handler(error)
            except Exception as handler_error:
                schedule_raise(handler_error)


__all__ = ["TypedEmitter", "schedule_raise", "ERROR_EVENT"]
