"""
High-level recording orchestrator.

A :class:`Recording` sequences an audio source against a streaming session:

1. Starts the audio source immediately; chunks are buffered
2. Resolves the API key (literal or fetch callable)
3. Connects a :class:`RealtimeSttSession`
4. Drains buffered audio in order, then pipes live audio to the session

Example usage:
    recording = Recording(api_key, DEFAULT_WS_URL, SttSessionConfig(), source)
    recording.on("result", lambda result: print(result.text))
    recording.on("error", lambda error: print(error))

    # Later:
    await recording.stop()

Events (name -> payload):
    result -> RealtimeResult
    token -> RealtimeToken
    error -> Exception
    endpoint -> none
    finalized -> none
    finished -> none
    connected -> none
    state_change -> StateChange
    source_muted -> none
    source_unmuted -> none
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from typing import Any

from .abort import AbortSignal
from .audio import AudioSource, AudioSourceHandlers, to_audio_bytes
from .auth import ApiKeyConfig, resolve_api_key
from .config import DEFAULT_BUFFER_QUEUE_SIZE, SessionOptions, SttSessionConfig
from .emitter import TypedEmitter
from .exceptions import (
    AbortError,
    AudioBufferOverflowError,
    ConfigurationError,
    ConnectionError,
    RealtimeSttError,
)
from .models import RecordingState, SessionState, StateChange
from .session import Connector, RealtimeSttSession

logger = logging.getLogger(__name__)

_FORWARDED_SESSION_EVENTS = ("result", "token", "endpoint", "finalized")


class Recording:
    """Audio capture plus real-time transcription for one attempt.

    Must be created inside a running event loop. The lifecycle starts on the
    next loop iteration, so listeners attached right after construction see
    every event.
    """

    def __init__(
        self,
        api_key: ApiKeyConfig,
        ws_url: str,
        config: SttSessionConfig,
        source: AudioSource,
        buffer_queue_size: int = DEFAULT_BUFFER_QUEUE_SIZE,
        session_options: SessionOptions | None = None,
        signal: AbortSignal | None = None,
        connector: Connector | None = None,
    ) -> None:
        """Initialize and schedule the recording.

        Args:
            api_key: API key or a callable fetching one.
            ws_url: WebSocket endpoint.
            config: Session configuration sent to the service.
            source: Audio source.
            buffer_queue_size: Maximum chunks buffered before the session connects.
            session_options: Options for the underlying session.
            signal: Abort signal canceling the recording.
            connector: Transport factory passed to the session.

        Raises:
            ConfigurationError: If buffer_queue_size is not a positive integer.
            RuntimeError: If no event loop is running.
        """
        if isinstance(buffer_queue_size, bool) or not isinstance(buffer_queue_size, int) or buffer_queue_size <= 0:
            raise ConfigurationError(f"buffer_queue_size must be a positive integer, got {buffer_queue_size!r}")

        loop = asyncio.get_running_loop()

        self._api_key = api_key
        self._ws_url = ws_url
        self.config = config
        self._source = source
        self._buffer_queue_size = buffer_queue_size
        self._session_options = session_options or SessionOptions()
        self._signal = signal
        self._connector = connector

        self._emitter = TypedEmitter()
        self._session: RealtimeSttSession | None = None
        self._buffer: deque[bytes] = deque()
        self._state = RecordingState.IDLE
        self._buffering = True
        self._source_muted = False

        # Bumped on every terminal transition; suspended steps compare it
        # after resuming.
        self._epoch = 0

        self._stop_future: asyncio.Future[None] | None = None
        self._closed = asyncio.Event()
        self._task: asyncio.Task | None = None

        loop.call_soon(self._start)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> RecordingState:
        """Current recording state."""
        return self._state

    @property
    def session(self) -> RealtimeSttSession | None:
        """Underlying session, once created."""
        return self._session

    @property
    def source_muted(self) -> bool:
        """Whether the source reported an external mute."""
        return self._source_muted

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on(self, event: str, handler: Callable[..., Any]) -> Recording:
        """Register an event handler."""
        self._emitter.on(event, handler)
        return self

    def once(self, event: str, handler: Callable[..., Any]) -> Recording:
        """Register a one-time event handler."""
        self._emitter.once(event, handler)
        return self

    def off(self, event: str, handler: Callable[..., Any]) -> Recording:
        """Remove an event handler."""
        self._emitter.off(event, handler)
        return self

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop recording.

        Stops the audio source and waits until the service has processed all
        sent audio and returned its final results. Calling ``stop()`` again
        while stopping waits for the same completion.

        Raises:
            Exception: The error that ended the recording while stopping.
        """
        if self._state.is_terminal:
            return

        if self._stop_future is None:
            self._stop_future = asyncio.get_running_loop().create_future()
        future = self._stop_future

        if self._state == RecordingState.STOPPING:
            await asyncio.shield(future)
            return

        self._set_state(RecordingState.STOPPING)
        self._source.stop()

        session = self._session
        if session is not None and session.state == SessionState.CONNECTED:
            await self._finish_session(session)

        await asyncio.shield(future)

    def cancel(self) -> None:
        """Immediately cancel recording without waiting for final results."""
        if self._state.is_terminal:
            return

        logger.info("Recording canceled")
        self._set_state(RecordingState.CANCELED)
        self._source.stop()
        if self._session is not None:
            self._session.close()
        self._settle_stop()
        self._cleanup(RecordingState.CANCELED)

    def finalize(self, trailing_silence_ms: int | None = None) -> None:
        """Ask the service to finalize current non-final tokens."""
        if self._session is not None:
            self._session.finalize(trailing_silence_ms)

    def pause(self) -> None:
        """Pause capture; the session keeps the stream alive with keepalives."""
        if self._state != RecordingState.RECORDING:
            return
        pause = getattr(self._source, "pause", None)
        if pause is not None:
            pause()
        if self._session is not None:
            self._session.pause()
        self._set_state(RecordingState.PAUSED)

    def resume(self) -> None:
        """Resume capture after :meth:`pause`."""
        if self._state != RecordingState.PAUSED:
            return
        resume = getattr(self._source, "resume", None)
        if resume is not None:
            resume()
        # A source that is still muted externally sends no audio, so the
        # session stays in keepalive mode until the unmute.
        if not self._source_muted and self._session is not None:
            self._session.resume()
        self._set_state(RecordingState.RECORDING)

    async def wait_closed(self) -> None:
        """Wait until the recording reaches a terminal state and its session shut down."""
        await self._closed.wait()
        if self._session is not None:
            await self._session.wait_closed()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _start(self) -> None:
        if self._state.is_terminal:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        try:
            await self._run_sequence()
        except Exception as e:
            logger.exception("Recording failed unexpectedly")
            self._handle_error(e)

    async def _run_sequence(self) -> None:
        if self._signal is not None:
            if self._signal.aborted:
                self._handle_abort()
                return
            self._signal.add_listener(self._handle_abort)

        if self._state == RecordingState.STOPPING:
            # stop() arrived before anything started.
            self._settle_stop()
            self._cleanup(RecordingState.STOPPED)
            return

        self._set_state(RecordingState.STARTING)
        epoch = self._epoch

        handlers = AudioSourceHandlers(
            on_data=self._handle_audio_data,
            on_error=self._handle_error,
            on_muted=self._handle_source_muted,
            on_unmuted=self._handle_source_unmuted,
        )
        try:
            await self._source.start(handlers)
        except Exception as e:
            self._handle_error(e)
            return

        if self._is_stale(epoch):
            self._source.stop()
            return

        try:
            api_key = await resolve_api_key(self._api_key)
        except Exception as e:
            logger.error("Failed to resolve API key: %s", e)
            self._handle_error(e)
            return

        if self._is_stale(epoch):
            self._source.stop()
            return

        if self._state == RecordingState.STARTING:
            self._set_state(RecordingState.CONNECTING)

        options = self._session_options
        if self._signal is not None:
            options = options.merged(signal=self._signal)

        session = RealtimeSttSession(api_key, self._ws_url, self.config, options, connector=self._connector)
        self._session = session
        self._wire_session_events(session)

        try:
            await session.connect()
        except Exception as e:
            self._handle_error(e)
            return

        if self._is_stale(epoch):
            session.close()
            return

        stopping_early = self._state == RecordingState.STOPPING
        if not stopping_early:
            self._set_state(RecordingState.RECORDING)
            logger.info("Recording started")
            self._emitter.emit("connected")

        self._buffering = False
        buffered, self._buffer = self._buffer, deque()
        if buffered:
            logger.debug("Draining %d buffered audio chunks", len(buffered))
        for chunk in buffered:
            if self._state not in (RecordingState.RECORDING, RecordingState.STOPPING):
                break
            if not self._send_to_session(chunk):
                break

        # stop() was requested before the connection was ready: finish now so
        # the service processes the buffered audio.
        if stopping_early and self._state == RecordingState.STOPPING:
            await self._finish_session(session)

    async def _finish_session(self, session: RealtimeSttSession) -> None:
        try:
            await session.finish()
        except Exception as e:
            # Session errors were already delivered through its error event.
            self._handle_error(e)

    def _wire_session_events(self, session: RealtimeSttSession) -> None:
        for name in _FORWARDED_SESSION_EVENTS:
            session.on(name, self._forwarder(name))
        session.on("finished", self._handle_session_finished)
        session.on("error", self._handle_error)
        session.on("disconnected", self._handle_session_disconnected)

    def _forwarder(self, event: str) -> Callable[..., None]:
        def forward(*args: Any) -> None:
            self._emitter.emit(event, *args)

        return forward

    # =========================================================================
    # Handlers
    # =========================================================================

    def _handle_audio_data(self, chunk: Any) -> None:
        if self._state.is_terminal:
            return

        if self._buffering:
            if len(self._buffer) >= self._buffer_queue_size:
                self._handle_error(
                    AudioBufferOverflowError(
                        "Audio buffer queue size exceeded before connection was established"
                    )
                )
                return
            self._buffer.append(to_audio_bytes(chunk))
            return

        if self._state in (RecordingState.RECORDING, RecordingState.STOPPING):
            self._send_to_session(to_audio_bytes(chunk))

    def _send_to_session(self, chunk: bytes) -> bool:
        session = self._session
        if session is None or session.state != SessionState.CONNECTED:
            return False
        try:
            session.send_audio(chunk)
        except RealtimeSttError as e:
            # Transport failures reach us through the session's error event.
            logger.debug("Audio chunk not sent: %s", e)
            return False
        return True

    def _handle_source_muted(self) -> None:
        if self._state not in (RecordingState.RECORDING, RecordingState.PAUSED):
            return
        self._source_muted = True
        # While paused the session already sends keepalives.
        if self._state == RecordingState.RECORDING and self._session is not None:
            self._session.pause()
        self._emitter.emit("source_muted")

    def _handle_source_unmuted(self) -> None:
        if self._state not in (RecordingState.RECORDING, RecordingState.PAUSED):
            return
        self._source_muted = False
        # A user pause takes precedence over the unmute.
        if self._state == RecordingState.RECORDING and self._session is not None:
            self._session.resume()
        self._emitter.emit("source_unmuted")

    def _handle_session_finished(self) -> None:
        if self._state.is_terminal:
            return
        logger.info("Recording finished")
        self._source.stop()
        self._set_state(RecordingState.STOPPED)
        self._emitter.emit("finished")
        self._settle_stop()
        self._cleanup(RecordingState.STOPPED)

    def _handle_session_disconnected(self, reason: str | None) -> None:
        session = self._session
        if session is None or session.state != SessionState.CLOSED:
            return
        self._handle_error(ConnectionError(f"Connection closed by server: {reason}", raw=reason))

    def _handle_abort(self) -> None:
        if self._state.is_terminal:
            return
        logger.info("Recording aborted")
        error = AbortError("Recording aborted")
        self._set_state(RecordingState.CANCELED)
        self._source.stop()
        if self._session is not None:
            self._session.close()
        self._emitter.emit("error", error)
        self._settle_stop(error)
        self._cleanup(RecordingState.CANCELED)

    def _handle_error(self, error: Exception) -> None:
        if self._state.is_terminal:
            return
        logger.error("Recording failed: %s", error)
        self._set_state(RecordingState.ERROR)
        self._source.stop()
        if self._session is not None:
            self._session.close()
        self._emitter.emit("error", error)
        self._settle_stop(error)
        self._cleanup(RecordingState.ERROR)

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _is_stale(self, epoch: int) -> bool:
        return self._state.is_terminal or epoch != self._epoch

    def _set_state(self, new_state: RecordingState) -> None:
        if self._state == new_state:
            return
        old_state = self._state
        self._state = new_state
        logger.debug("Recording state %s -> %s", old_state.value, new_state.value)
        self._emitter.emit("state_change", StateChange(old_state=old_state, new_state=new_state))

    def _cleanup(self, final_state: RecordingState) -> None:
        self._set_state(final_state)
        self._epoch += 1
        self._buffer.clear()
        self._buffering = False
        self._source_muted = False
        if self._signal is not None:
            self._signal.remove_listener(self._handle_abort)
        self._closed.set()

    def _settle_stop(self, error: Exception | None = None) -> None:
        future, self._stop_future = self._stop_future, None
        if future is None or future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(None)


__all__ = ["Recording"]
