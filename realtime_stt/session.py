"""
Real-time speech-to-text session over a WebSocket.

A :class:`RealtimeSttSession` drives exactly one streaming connection:

- Connection lifecycle (idle -> connecting -> connected -> finishing -> finished)
- Non-blocking audio sends through an ordered outbound queue
- Result parsing into tokens, endpoint/finalized signals and errors
- Pause/resume with automatic keepalive frames
- Cancellation through an abort signal

Example usage:
    session = RealtimeSttSession(api_key, DEFAULT_WS_URL, SttSessionConfig(model="stt-rt-preview"))
    session.on("result", lambda result: print(result.text))

    await session.connect()
    for chunk in audio_chunks:
        session.send_audio(chunk)
    await session.finish()

Events (name -> payload):
    connected -> none
    disconnected -> reason (str | None)
    state_change -> StateChange
    result -> RealtimeResult (control tokens removed)
    token -> RealtimeToken
    endpoint -> none
    finalized -> none
    finished -> none
    error -> RealtimeSttError
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .abort import AbortSignal, any_signal, timeout_signal
from .async_queue import AsyncEventQueue
from .config import SessionOptions, SttSessionConfig
from .emitter import TypedEmitter
from .exceptions import (
    AbortError,
    ConnectionError,
    ErrorKind,
    NetworkError,
    RealtimeError,
    RealtimeSttError,
    StateError,
    error_from_status,
    map_error_response,
)
from .models import (
    ENDPOINT_TOKEN,
    FINALIZED_TOKEN,
    EventKind,
    RealtimeEvent,
    RealtimeResult,
    SessionState,
    StateChange,
)

logger = logging.getLogger(__name__)

AudioData = bytes | bytearray | memoryview

Connector = Callable[[str], Awaitable[Any]]

_ACTIVE_STATES = (SessionState.CONNECTED, SessionState.FINISHING)


# =============================================================================
# Transport helpers
# =============================================================================


async def websocket_connector(url: str) -> Any:
    """Open a WebSocket with the ``websockets`` package.

    Timeouts are applied by the session, so the library's own open timeout
    is disabled.
    """
    # Import websockets here to allow the module to be imported
    # even if websockets is not installed
    try:
        import websockets
    except ImportError as e:
        raise ConnectionError(
            "websockets package is required for RealtimeSttSession. "
            "Install it with: pip install websockets"
        ) from e

    return await websockets.connect(url, open_timeout=None, max_size=None)


def _close_frame_reason(exc: BaseException) -> tuple[bool, str | None]:
    """Return ``(True, reason)`` when ``exc`` reports a WebSocket close frame."""
    from websockets.exceptions import ConnectionClosed

    if not isinstance(exc, ConnectionClosed):
        return False, None
    frame = exc.rcvd or exc.sent
    return True, (frame.reason if frame is not None else None) or None


def _status_from_exception(exc: BaseException) -> int | None:
    # websockets >= 14 exposes the HTTP response, older releases the code.
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def map_connect_error(exc: BaseException) -> RealtimeSttError:
    """Map a transport failure raised while connecting to the error taxonomy."""
    if isinstance(exc, RealtimeSttError):
        return exc
    status = _status_from_exception(exc)
    if status is not None:
        error = error_from_status(status, f"WebSocket handshake rejected with status {status}", raw=exc)
        if error.kind is ErrorKind.REALTIME:
            return ConnectionError(f"WebSocket handshake rejected with status {status}", raw=exc)
        return error
    if isinstance(exc, TypeError):
        return NetworkError(f"Network error: {exc}", raw=exc)
    return ConnectionError(f"WebSocket connection failed: {exc}", raw=exc)


def _is_control_token(text: str) -> bool:
    return text in (ENDPOINT_TOKEN, FINALIZED_TOKEN)


def _to_frame(data: AudioData) -> bytes:
    if isinstance(data, bytes):
        return data
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    raise TypeError(f"Audio data must be bytes-like, got {type(data).__name__}")


# =============================================================================
# Statistics
# =============================================================================


@dataclass
class SessionStats:
    """Statistics tracked by a session.

    Attributes:
        chunks_sent: Number of audio chunks sent.
        bytes_sent: Total audio bytes sent.
        results_received: Number of result frames received.
        tokens_received: Number of non-control tokens received.
        keepalives_sent: Number of keepalive frames sent.
    """

    chunks_sent: int = 0
    bytes_sent: int = 0
    results_received: int = 0
    tokens_received: int = 0
    keepalives_sent: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary."""
        return {
            "chunks_sent": self.chunks_sent,
            "bytes_sent": self.bytes_sent,
            "results_received": self.results_received,
            "tokens_received": self.tokens_received,
            "keepalives_sent": self.keepalives_sent,
        }


# =============================================================================
# Session
# =============================================================================


class RealtimeSttSession:
    """One streaming transcription connection.

    Supports both event handlers and async iteration:

        async for event in session:
            if event.kind is EventKind.RESULT:
                print(event.data.text)
    """

    def __init__(
        self,
        api_key: str,
        ws_url: str,
        config: SttSessionConfig,
        options: SessionOptions | None = None,
        connector: Connector | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            api_key: Resolved API key.
            ws_url: WebSocket endpoint.
            config: Configuration sent in the first frame.
            options: Client-side behavior. Defaults to SessionOptions().
            connector: Coroutine function opening the transport for a URL.
                Defaults to :func:`websocket_connector`.
        """
        self._api_key = api_key
        self._ws_url = ws_url
        self.config = config
        self.options = options or SessionOptions()
        self._connector = connector or websocket_connector
        self._signal: AbortSignal | None = self.options.signal

        self._emitter = TypedEmitter()
        self._event_queue: AsyncEventQueue[RealtimeEvent] = AsyncEventQueue()

        self._state = SessionState.IDLE
        self._paused = False
        self._ws: Any = None

        # Background tasks
        self._outbound: asyncio.Queue[str | bytes] | None = None
        self._reader_task: asyncio.Task | None = None
        self._writer_task: asyncio.Task | None = None
        self._keepalive_task: asyncio.Task | None = None
        self._close_task: asyncio.Task | None = None

        self._finish_future: asyncio.Future[None] | None = None

        self.stats = SessionStats()

        if self._signal is not None:
            self._signal.add_listener(self._handle_abort)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def paused(self) -> bool:
        """Whether audio transmission is paused."""
        return self._paused

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on(self, event: str, handler: Callable[..., Any]) -> RealtimeSttSession:
        """Register an event handler."""
        self._emitter.on(event, handler)
        return self

    def once(self, event: str, handler: Callable[..., Any]) -> RealtimeSttSession:
        """Register a one-time event handler."""
        self._emitter.once(event, handler)
        return self

    def off(self, event: str, handler: Callable[..., Any]) -> RealtimeSttSession:
        """Remove an event handler."""
        self._emitter.off(event, handler)
        return self

    def __aiter__(self) -> AsyncIterator[RealtimeEvent]:
        return self._event_queue

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the stream and send the configuration frame.

        Raises:
            StateError: If the session is not idle.
            AbortError: If the abort signal fired.
            RealtimeSttError: Mapped transport/handshake failure.
        """
        if self._state != SessionState.IDLE:
            raise StateError(f'Cannot connect: session is in "{self._state.value}" state')

        self._check_aborted()
        self._set_state(SessionState.CONNECTING)

        timeout = (
            timeout_signal(self.options.connect_timeout_sec, "WebSocket connection timed out")
            if self.options.connect_timeout_sec
            else None
        )
        guard = any_signal(self._signal, timeout)

        try:
            logger.info("Connecting to %s", self._ws_url)
            ws = await self._race(self._connector(self._ws_url), guard)
            self._ws = ws
            if not self._state.is_terminal:
                await self._race(ws.send(json.dumps(self.config.to_message(self._api_key))), guard)
        except asyncio.CancelledError:
            if not self._state.is_terminal:
                self._cleanup(SessionState.CANCELED)
            raise
        except Exception as e:
            if isinstance(e, AbortError) and timeout is not None and timeout.aborted:
                error = ConnectionError("WebSocket connection timed out", raw=e)
            else:
                error = map_connect_error(e)
            if not self._state.is_terminal:
                logger.error("Connection failed: %s", error)
                self._cleanup(SessionState.ERROR, error)
            if error is e:
                raise
            raise error from e
        finally:
            guard.dispose()
            if timeout is not None:
                timeout.dispose()

        if self._state.is_terminal:
            # Closed or aborted while the handshake was in flight.
            self._schedule_transport_close()
            self._check_aborted()
            raise StateError(f'Session was {self._state.value} while connecting')

        self._outbound = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._writer_loop())
        self._reader_task = asyncio.create_task(self._reader_loop())

        self._set_state(SessionState.CONNECTED)
        logger.info("Connected to %s", self._ws_url)
        self._emitter.emit("connected")
        self._update_keepalive()

    def send_audio(self, data: AudioData) -> None:
        """Queue an audio chunk for sending. Never blocks.

        Audio is dropped silently while paused.

        Raises:
            AbortError: If the abort signal fired.
            StateError: If not connected (unless ``options.strict_send`` is off).
            ConnectionError: If the transport is no longer open.
        """
        self._check_aborted()

        if self._state != SessionState.CONNECTED:
            if not self.options.strict_send:
                logger.debug("Dropping audio chunk in state %s", self._state.value)
                return
            raise StateError(f'Cannot send audio: session is in "{self._state.value}" state')

        if self._paused:
            return

        frame = _to_frame(data)
        self._send_frame(frame, should_raise=True)
        self.stats.chunks_sent += 1
        self.stats.bytes_sent += len(frame)

    async def send_stream(
        self,
        stream: AsyncIterable[AudioData] | Iterable[AudioData],
        pace_sec: float | None = None,
        finish: bool = False,
    ) -> None:
        """Send every chunk from a sync or async iterable.

        Args:
            stream: Audio chunks.
            pace_sec: Optional delay between chunks (simulated real time).
            finish: Call :meth:`finish` once the stream is exhausted.
        """
        if isinstance(stream, AsyncIterable):
            async for chunk in stream:
                self.send_audio(chunk)
                if pace_sec:
                    await asyncio.sleep(pace_sec)
        else:
            for chunk in stream:
                self.send_audio(chunk)
                # Yield to the writer even without pacing.
                await asyncio.sleep(pace_sec or 0)
        if finish:
            await self.finish()

    def pause(self) -> None:
        """Stop sending audio and keep the stream alive with keepalive frames."""
        if self._paused:
            return
        self._paused = True
        self._update_keepalive()

    def resume(self) -> None:
        """Resume audio transmission."""
        if not self._paused:
            return
        self._paused = False
        self._update_keepalive()

    def finalize(self, trailing_silence_ms: int | None = None) -> None:
        """Ask the service to finalize all pending tokens."""
        if self._state not in _ACTIVE_STATES:
            return
        message: dict[str, Any] = {"type": "finalize"}
        if trailing_silence_ms is not None:
            message["trailing_silence_ms"] = trailing_silence_ms
        self._send_frame(json.dumps(message), should_raise=False)

    def keep_alive(self) -> None:
        """Send one keepalive frame."""
        if self._state not in _ACTIVE_STATES:
            return
        self._send_frame(json.dumps({"type": "keepalive"}), should_raise=False)
        self.stats.keepalives_sent += 1

    async def finish(self) -> None:
        """Gracefully end the stream.

        Sends the end-of-audio marker and waits until the service returns its
        final result and ends the stream.

        Raises:
            StateError: If not connected.
            RealtimeSttError: If the stream errors or closes before finishing.
        """
        self._check_aborted()

        if self._state != SessionState.CONNECTED:
            raise StateError(f'Cannot finish: session is in "{self._state.value}" state')

        if self._paused:
            self.resume()

        self._set_state(SessionState.FINISHING)
        self._update_keepalive()

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._finish_future = future

        # An empty text frame marks the end of audio.
        self._send_frame("", should_raise=False)
        logger.info("Sent end of audio, waiting for final results")

        await future

    def close(self) -> None:
        """Cancel the session immediately without waiting for results."""
        if self._state.is_terminal:
            return
        logger.info("Session closed by client")
        self._set_state(SessionState.CANCELED)
        self._emitter.emit("disconnected", "client_closed")
        self._settle_finish(StateError("Session canceled"))
        self._cleanup(SessionState.CANCELED)

    async def wait_closed(self) -> None:
        """Wait until background tasks and the transport have shut down."""
        tasks = [
            t
            for t in (self._reader_task, self._writer_task, self._keepalive_task, self._close_task)
            if t is not None and t is not asyncio.current_task()
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> RealtimeSttSession:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        self.close()
        await self.wait_closed()

    # =========================================================================
    # Internal Methods
    # =========================================================================

    async def _race(self, awaitable: Awaitable[Any], signal: AbortSignal) -> Any:
        """Await ``awaitable`` unless ``signal`` fires first."""
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()
        task.cancel()
        raise signal.reason or AbortError()

    def _send_frame(self, data: str | bytes, should_raise: bool) -> None:
        if self._ws is None or self._outbound is None or self._writer_task is None or self._writer_task.done():
            error = ConnectionError("WebSocket is not open")
            self._fail(error)
            if should_raise:
                raise error
            return
        self._outbound.put_nowait(data)

    async def _writer_loop(self) -> None:
        """Background task sending queued frames in order."""
        assert self._outbound is not None
        try:
            while True:
                frame = await self._outbound.get()
                await self._ws.send(frame)
                if isinstance(frame, bytes):
                    logger.debug("Sent audio frame: bytes=%d", len(frame))
                else:
                    logger.debug("Sent control frame: %r", frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Send failed: %s", e)
            self._fail(ConnectionError(f"WebSocket send failed: {e}", raw=e))

    async def _reader_loop(self) -> None:
        """Background task receiving frames from the websocket."""
        ws = self._ws
        try:
            async for message in ws:
                self._handle_message(message)
                if self._state.is_terminal:
                    return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            closed, reason = _close_frame_reason(e)
            if closed:
                self._handle_close(reason)
                return
            if not self._state.is_terminal:
                logger.error("Receive loop error: %s", e)
                self._fail(ConnectionError(f"WebSocket error: {e}", raw=e))
            return

        self._handle_close(getattr(ws, "close_reason", None) or None)

    def _handle_message(self, message: str | bytes) -> None:
        if not isinstance(message, str):
            logger.debug("Ignoring binary frame: bytes=%d", len(message))
            return

        try:
            raw = json.loads(message)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse message: %s", e)
            self._fail(RealtimeError(f"Invalid JSON message: {e}", raw=message))
            return

        if not isinstance(raw, dict):
            self._fail(RealtimeError("Unexpected message: expected a JSON object", raw=raw))
            return

        if "error_code" in raw or "error_message" in raw:
            error = map_error_response(raw)
            logger.error("Service error: %s", error)
            self._fail(error)
            return

        result = RealtimeResult.from_dict(raw)
        has_endpoint = any(t.text == ENDPOINT_TOKEN for t in result.tokens)
        has_finalized = any(t.text == FINALIZED_TOKEN for t in result.tokens)
        result.tokens = [t for t in result.tokens if not _is_control_token(t.text)]

        self.stats.results_received += 1
        self.stats.tokens_received += len(result.tokens)

        for token in result.tokens:
            if self._state.is_terminal:
                return
            self._emitter.emit("token", token)

        if self._state.is_terminal:
            return
        self._emitter.emit("result", result)
        self._event_queue.push(RealtimeEvent(EventKind.RESULT, result))

        if has_endpoint and not self._state.is_terminal:
            self._emitter.emit("endpoint")
            self._event_queue.push(RealtimeEvent(EventKind.ENDPOINT))

        if has_finalized and not self._state.is_terminal:
            self._emitter.emit("finalized")
            self._event_queue.push(RealtimeEvent(EventKind.FINALIZED))

        if result.finished and not self._state.is_terminal:
            logger.info("Session finished")
            self._set_state(SessionState.FINISHED)
            self._emitter.emit("finished")
            self._event_queue.push(RealtimeEvent(EventKind.FINISHED))
            self._settle_finish()
            self._cleanup(SessionState.FINISHED)

    def _handle_close(self, reason: str | None) -> None:
        if self._state.is_terminal:
            return

        if self._state == SessionState.FINISHING:
            error = ConnectionError("WebSocket closed before finished response", raw=reason)
            logger.error("%s", error)
            self._set_state(SessionState.ERROR)
            self._emitter.emit("disconnected", reason)
            self._emitter.emit("error", error)
            self._settle_finish(error)
            self._cleanup(SessionState.ERROR, error)
            return

        logger.info("Connection closed by server: %s", reason)
        self._set_state(SessionState.CLOSED)
        self._emitter.emit("disconnected", reason)
        self._cleanup(SessionState.CLOSED)

    def _handle_abort(self) -> None:
        if self._state.is_terminal:
            return
        error = AbortError()
        logger.info("Session aborted")
        self._set_state(SessionState.CANCELED)
        self._emitter.emit("error", error)
        self._settle_finish(error)
        self._cleanup(SessionState.CANCELED, error)

    def _fail(self, error: RealtimeSttError) -> None:
        # The terminal state is entered before listeners run so that a
        # listener calling close() cannot replace it.
        if self._state.is_terminal:
            return
        self._set_state(SessionState.ERROR)
        self._emitter.emit("error", error)
        self._settle_finish(error)
        self._cleanup(SessionState.ERROR, error)

    def _set_state(self, new_state: SessionState) -> None:
        if self._state == new_state:
            return
        old_state = self._state
        self._state = new_state
        logger.debug("Session state %s -> %s", old_state.value, new_state.value)
        self._emitter.emit("state_change", StateChange(old_state=old_state, new_state=new_state))

    def _cleanup(self, final_state: SessionState, error: Exception | None = None) -> None:
        self._set_state(final_state)
        self._stop_keepalive()

        if self._signal is not None:
            self._signal.remove_listener(self._handle_abort)

        current = asyncio.current_task()
        for task in (self._writer_task, self._reader_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        self._schedule_transport_close()

        if error is not None:
            self._event_queue.abort(error)
        else:
            self._event_queue.end()

        self._emitter.remove_all_listeners()

    def _schedule_transport_close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        self._close_task = asyncio.ensure_future(self._close_transport(ws))

    @staticmethod
    async def _close_transport(ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.warning("Error closing websocket: %s", e)

    def _check_aborted(self) -> None:
        if self._signal is not None and self._signal.aborted:
            raise AbortError()

    def _settle_finish(self, error: Exception | None = None) -> None:
        future, self._finish_future = self._finish_future, None
        if future is None or future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(None)

    # -------------------------------------------------------------------------
    # Keepalive
    # -------------------------------------------------------------------------

    def _update_keepalive(self) -> None:
        should_run = self._state in _ACTIVE_STATES and (self._paused or self.options.keepalive)
        if should_run:
            self._start_keepalive()
        else:
            self._stop_keepalive()

    def _start_keepalive(self) -> None:
        if self._keepalive_task is not None and not self._keepalive_task.done():
            return
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())

    def _stop_keepalive(self) -> None:
        task, self._keepalive_task = self._keepalive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _keepalive_loop(self) -> None:
        """Background task that sends periodic keepalive frames."""
        while True:
            await asyncio.sleep(self.options.keepalive_interval_sec)
            self.keep_alive()


__all__ = [
    "RealtimeSttSession",
    "SessionStats",
    "Connector",
    "AudioData",
    "websocket_connector",
    "map_connect_error",
]
