"""
Tests for the Recording orchestrator.

Tests cover:
- Buffering audio until the session connects, then draining in order
- Graceful stop (before and after connecting) and cancel
- Credential, source and connection failures
- Abort signals, pause/resume and external mute handling
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import numpy as np
import pytest
from conftest import FakeAudioSource, FakeConnector, FakeWebSocket, settle

from realtime_stt.abort import AbortController
from realtime_stt.config import SttSessionConfig
from realtime_stt.exceptions import (
    AbortError,
    AudioBufferOverflowError,
    AudioPermissionError,
    AuthError,
    ConfigurationError,
    ConnectionError,
    CredentialError,
)
from realtime_stt.models import RecordingState, SessionState
from realtime_stt.recording import Recording

WS_URL = "wss://stt.example.com/stream"


def make_recording(connector: FakeConnector, source: FakeAudioSource, **kwargs: Any) -> Recording:
    kwargs.setdefault("api_key", "test-key")
    return Recording(
        ws_url=WS_URL,
        config=SttSessionConfig(),
        source=source,
        connector=connector,
        **kwargs,
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(poll(), timeout)


async def wait_for_state(recording: Recording, *states: RecordingState) -> None:
    await wait_until(lambda: recording.state in states)


def collect(recording: Recording, *events: str) -> list[tuple[str, Any]]:
    seen: list[tuple[str, Any]] = []
    for name in events:
        recording.on(name, lambda *args, name=name: seen.append((name, args[0] if args else None)))
    return seen


# ============================================================================
# Startup and buffering
# ============================================================================


class TestStartup:
    """Tests for the start sequence and pre-connection buffering."""

    @pytest.mark.asyncio
    async def test_buffered_audio_drained_before_live_audio(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        connector.gate = asyncio.Event()
        recording = make_recording(connector, audio_source)
        events = collect(recording, "connected")
        await wait_for_state(recording, RecordingState.CONNECTING)

        audio_source.emit(b"1")
        audio_source.emit(bytearray(b"2"))
        connector.gate.set()
        await wait_for_state(recording, RecordingState.RECORDING)
        audio_source.emit(b"3")
        await settle()

        assert fake_ws.config_message["api_key"] == "test-key"
        assert fake_ws.audio_frames == [b"1", b"2", b"3"]
        assert events == [("connected", None)]
        recording.cancel()

    @pytest.mark.asyncio
    async def test_state_sequence(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        recording = make_recording(connector, audio_source)
        changes: list[str] = []
        recording.on("state_change", lambda change: changes.append(change.new_state.value))

        await wait_for_state(recording, RecordingState.RECORDING)

        assert changes == ["starting", "connecting", "recording"]
        recording.cancel()

    @pytest.mark.asyncio
    async def test_numpy_chunks_buffered_as_pcm(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        connector.gate = asyncio.Event()
        recording = make_recording(connector, audio_source)
        await wait_for_state(recording, RecordingState.CONNECTING)

        audio_source.emit(np.array([0.0, 1.0], dtype=np.float32))  # type: ignore[arg-type]
        connector.gate.set()
        await wait_until(lambda: len(fake_ws.audio_frames) == 1)

        assert fake_ws.audio_frames == [np.array([0, 32767], dtype="<i2").tobytes()]
        recording.cancel()

    @pytest.mark.asyncio
    async def test_buffer_overflow(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        connector.gate = asyncio.Event()
        recording = make_recording(connector, audio_source, buffer_queue_size=2)
        events = collect(recording, "error")
        await wait_for_state(recording, RecordingState.CONNECTING)

        audio_source.emit(b"1")
        audio_source.emit(b"2")
        audio_source.emit(b"3")

        assert recording.state == RecordingState.ERROR
        assert isinstance(events[0][1], AudioBufferOverflowError)
        assert audio_source.stop_calls >= 1
        assert recording.session is not None
        assert recording.session.state == SessionState.CANCELED

        connector.gate.set()
        await recording.wait_closed()
        await wait_until(lambda: connector.ws.closed)

    @pytest.mark.asyncio
    async def test_invalid_buffer_queue_size(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        with pytest.raises(ConfigurationError):
            make_recording(connector, audio_source, buffer_queue_size=0)


# ============================================================================
# Failures
# ============================================================================


class TestFailures:
    """Tests for errors during and after startup."""

    @pytest.mark.asyncio
    async def test_api_key_fetch_failure(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        async def fetch_key() -> str:
            raise RuntimeError("token service down")

        recording = make_recording(connector, audio_source, api_key=fetch_key)
        events = collect(recording, "error")

        await recording.wait_closed()

        assert recording.state == RecordingState.ERROR
        assert isinstance(events[0][1], RuntimeError)
        assert audio_source.stop_calls >= 1
        assert connector.urls == []

    @pytest.mark.asyncio
    async def test_empty_api_key(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        recording = make_recording(connector, audio_source, api_key=lambda: "")
        events = collect(recording, "error")

        await recording.wait_closed()

        assert isinstance(events[0][1], CredentialError)

    @pytest.mark.asyncio
    async def test_source_start_failure(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        audio_source.start_error = AudioPermissionError()
        recording = make_recording(connector, audio_source)
        events = collect(recording, "error")

        await recording.wait_closed()

        assert recording.state == RecordingState.ERROR
        assert isinstance(events[0][1], AudioPermissionError)
        assert connector.urls == []

    @pytest.mark.asyncio
    async def test_connect_failure(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        connector.error = OSError("connection refused")
        recording = make_recording(connector, audio_source)
        events = collect(recording, "error")

        await recording.wait_closed()

        assert recording.state == RecordingState.ERROR
        assert [name for name, _ in events] == ["error"]
        assert isinstance(events[0][1], ConnectionError)

    @pytest.mark.asyncio
    async def test_session_error_frame(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        recording = make_recording(connector, audio_source)
        events = collect(recording, "error")
        await wait_for_state(recording, RecordingState.RECORDING)

        fake_ws.push({"error_code": 401, "error_message": "Invalid API key"})
        await recording.wait_closed()

        assert recording.state == RecordingState.ERROR
        assert isinstance(events[0][1], AuthError)
        # Stopping a terminal recording is a no-op.
        await recording.stop()

    @pytest.mark.asyncio
    async def test_remote_close_while_recording(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        recording = make_recording(connector, audio_source)
        events = collect(recording, "error")
        await wait_for_state(recording, RecordingState.RECORDING)

        fake_ws.remote_close("server shutdown")
        await recording.wait_closed()

        assert recording.state == RecordingState.ERROR
        error = events[0][1]
        assert isinstance(error, ConnectionError)
        assert "server shutdown" in error.message


# ============================================================================
# Stop / cancel
# ============================================================================


class TestStop:
    """Tests for stop() and cancel()."""

    @pytest.mark.asyncio
    async def test_stop_waits_for_final_results(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        recording = make_recording(connector, audio_source)
        events = collect(recording, "result", "finished")
        await wait_for_state(recording, RecordingState.RECORDING)
        audio_source.emit(b"audio")

        stop_task = asyncio.create_task(recording.stop())
        await wait_until(lambda: fake_ws.end_of_audio_sent)

        assert recording.state == RecordingState.STOPPING
        assert audio_source.stop_calls == 1
        assert not stop_task.done()

        fake_ws.push_result([{"text": "done", "is_final": True}], finished=True)
        await stop_task

        assert recording.state == RecordingState.STOPPED
        assert [name for name, _ in events] == ["result", "finished"]
        assert fake_ws.audio_frames == [b"audio"]

    @pytest.mark.asyncio
    async def test_concurrent_stops_share_completion(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        recording = make_recording(connector, audio_source)
        await wait_for_state(recording, RecordingState.RECORDING)

        first = asyncio.create_task(recording.stop())
        second = asyncio.create_task(recording.stop())
        await wait_until(lambda: fake_ws.end_of_audio_sent)
        fake_ws.push_result([], finished=True)

        await asyncio.gather(first, second)
        assert fake_ws.sent.count("") == 1

    @pytest.mark.asyncio
    async def test_stop_before_connected_flushes_buffer(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        connector.gate = asyncio.Event()
        recording = make_recording(connector, audio_source)
        events = collect(recording, "connected", "finished")
        await wait_for_state(recording, RecordingState.CONNECTING)
        audio_source.emit(b"early")

        stop_task = asyncio.create_task(recording.stop())
        await settle()
        assert recording.state == RecordingState.STOPPING

        connector.gate.set()
        await wait_until(lambda: fake_ws.end_of_audio_sent)
        assert fake_ws.audio_frames == [b"early"]

        fake_ws.push_result([], finished=True)
        await stop_task

        assert recording.state == RecordingState.STOPPED
        assert [name for name, _ in events] == ["finished"]

    @pytest.mark.asyncio
    async def test_stop_before_start(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        recording = make_recording(connector, audio_source)

        await recording.stop()

        assert recording.state == RecordingState.STOPPED
        assert audio_source.start_calls == 0
        assert connector.urls == []

    @pytest.mark.asyncio
    async def test_stop_raises_session_error(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        recording = make_recording(connector, audio_source)
        await wait_for_state(recording, RecordingState.RECORDING)

        stop_task = asyncio.create_task(recording.stop())
        await wait_until(lambda: fake_ws.end_of_audio_sent)
        fake_ws.push({"error_code": 401, "error_message": "Key expired"})

        with pytest.raises(AuthError):
            await stop_task
        assert recording.state == RecordingState.ERROR

    @pytest.mark.asyncio
    async def test_cancel_resolves_pending_stop(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        recording = make_recording(connector, audio_source)
        events = collect(recording, "error", "finished")
        await wait_for_state(recording, RecordingState.RECORDING)

        stop_task = asyncio.create_task(recording.stop())
        await wait_until(lambda: fake_ws.end_of_audio_sent)
        recording.cancel()
        recording.cancel()

        await stop_task
        await recording.wait_closed()

        assert recording.state == RecordingState.CANCELED
        assert recording.session is not None
        assert recording.session.state == SessionState.CANCELED
        assert events == []
        assert fake_ws.closed

    @pytest.mark.asyncio
    async def test_cancel_while_connecting(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        connector.gate = asyncio.Event()
        recording = make_recording(connector, audio_source)
        await wait_for_state(recording, RecordingState.CONNECTING)

        recording.cancel()
        connector.gate.set()
        await recording.wait_closed()
        await wait_until(lambda: connector.ws.closed)

        assert recording.state == RecordingState.CANCELED

    @pytest.mark.asyncio
    async def test_cancel_during_key_fetch(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        key_ready = asyncio.Event()
        calls: list[int] = []

        async def fetch_key() -> str:
            calls.append(1)
            await key_ready.wait()
            return "late-key"

        recording = make_recording(connector, audio_source, api_key=fetch_key)
        await wait_until(lambda: calls == [1])

        recording.cancel()
        key_ready.set()
        await settle()

        assert recording.state == RecordingState.CANCELED
        assert recording.session is None
        assert connector.urls == []

    @pytest.mark.asyncio
    async def test_cancel_during_source_start(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        audio_source.start_gate = asyncio.Event()
        recording = make_recording(connector, audio_source)
        await wait_until(lambda: audio_source.start_calls == 1)

        recording.cancel()
        audio_source.start_gate.set()
        await settle()

        assert recording.state == RecordingState.CANCELED
        assert connector.urls == []
        # Stopped by cancel() and again once the late start completed.
        assert audio_source.stop_calls == 2


# ============================================================================
# Abort
# ============================================================================


class TestAbort:
    """Tests for abort signals."""

    @pytest.mark.asyncio
    async def test_abort_while_recording(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        controller = AbortController()
        recording = make_recording(connector, audio_source, signal=controller.signal)
        events = collect(recording, "error")
        await wait_for_state(recording, RecordingState.RECORDING)

        controller.abort()
        await recording.wait_closed()

        assert recording.state == RecordingState.CANCELED
        error = events[0][1]
        assert isinstance(error, AbortError)
        assert error.message == "Recording aborted"
        assert fake_ws.closed

    @pytest.mark.asyncio
    async def test_abort_rejects_pending_stop(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        controller = AbortController()
        recording = make_recording(connector, audio_source, signal=controller.signal)
        await wait_for_state(recording, RecordingState.RECORDING)

        stop_task = asyncio.create_task(recording.stop())
        await wait_until(lambda: fake_ws.end_of_audio_sent)
        controller.abort()

        with pytest.raises(AbortError):
            await stop_task

    @pytest.mark.asyncio
    async def test_already_aborted(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        controller = AbortController()
        controller.abort()
        recording = make_recording(connector, audio_source, signal=controller.signal)

        await recording.wait_closed()

        assert recording.state == RecordingState.CANCELED
        assert audio_source.start_calls == 0


# ============================================================================
# Pause / mute
# ============================================================================


class TestPauseAndMute:
    """Tests for pause/resume and external mute."""

    @pytest.mark.asyncio
    async def test_pause_and_resume(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        recording = make_recording(connector, audio_source)
        await wait_for_state(recording, RecordingState.RECORDING)
        session = recording.session
        assert session is not None

        recording.pause()
        audio_source.emit(b"dropped")
        await settle()

        assert recording.state == RecordingState.PAUSED
        assert audio_source.paused
        assert session.paused
        assert fake_ws.audio_frames == []

        recording.resume()
        audio_source.emit(b"kept")
        await settle()

        assert recording.state == RecordingState.RECORDING
        assert not audio_source.paused
        assert not session.paused
        assert fake_ws.audio_frames == [b"kept"]
        recording.cancel()

    @pytest.mark.asyncio
    async def test_external_mute(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        recording = make_recording(connector, audio_source)
        events = collect(recording, "source_muted", "source_unmuted")
        await wait_for_state(recording, RecordingState.RECORDING)
        session = recording.session
        assert session is not None

        audio_source.mute()
        assert recording.source_muted
        assert session.paused

        audio_source.unmute()
        assert not recording.source_muted
        assert not session.paused
        assert [name for name, _ in events] == ["source_muted", "source_unmuted"]
        recording.cancel()

    @pytest.mark.asyncio
    async def test_resume_keeps_session_paused_while_muted(
        self, connector: FakeConnector, audio_source: FakeAudioSource
    ) -> None:
        recording = make_recording(connector, audio_source)
        await wait_for_state(recording, RecordingState.RECORDING)
        session = recording.session
        assert session is not None

        recording.pause()
        audio_source.mute()
        recording.resume()

        assert recording.state == RecordingState.RECORDING
        assert session.paused

        audio_source.unmute()
        assert not session.paused
        recording.cancel()

    @pytest.mark.asyncio
    async def test_unmute_while_paused_keeps_session_paused(
        self, connector: FakeConnector, audio_source: FakeAudioSource
    ) -> None:
        recording = make_recording(connector, audio_source)
        await wait_for_state(recording, RecordingState.RECORDING)
        session = recording.session
        assert session is not None

        audio_source.mute()
        recording.pause()
        audio_source.unmute()

        assert recording.state == RecordingState.PAUSED
        assert not recording.source_muted
        assert session.paused

        recording.resume()
        assert not session.paused
        recording.cancel()

    @pytest.mark.asyncio
    async def test_mute_ignored_while_connecting(self, connector: FakeConnector, audio_source: FakeAudioSource) -> None:
        connector.gate = asyncio.Event()
        recording = make_recording(connector, audio_source)
        events = collect(recording, "source_muted", "source_unmuted")
        await wait_for_state(recording, RecordingState.CONNECTING)

        audio_source.mute()
        assert not recording.source_muted

        connector.gate.set()
        await wait_for_state(recording, RecordingState.RECORDING)
        session = recording.session
        assert session is not None

        assert not session.paused
        assert events == []
        recording.cancel()

    @pytest.mark.asyncio
    async def test_mute_ignored_after_terminal_state(
        self, connector: FakeConnector, audio_source: FakeAudioSource
    ) -> None:
        recording = make_recording(connector, audio_source)
        events = collect(recording, "source_muted", "source_unmuted")
        await wait_for_state(recording, RecordingState.RECORDING)

        recording.cancel()
        audio_source.mute()
        audio_source.unmute()

        assert recording.state == RecordingState.CANCELED
        assert not recording.source_muted
        assert events == []

    @pytest.mark.asyncio
    async def test_pause_outside_recording_is_noop(
        self, connector: FakeConnector, audio_source: FakeAudioSource
    ) -> None:
        recording = make_recording(connector, audio_source)
        recording.pause()
        recording.resume()
        assert recording.state == RecordingState.IDLE
        recording.cancel()


class TestForwarding:
    """Session events are re-emitted by the recording."""

    @pytest.mark.asyncio
    async def test_token_result_endpoint_finalized(
        self,
        connector: FakeConnector,
        fake_ws: FakeWebSocket,
        audio_source: FakeAudioSource,
    ) -> None:
        recording = make_recording(connector, audio_source)
        events = collect(recording, "token", "result", "endpoint", "finalized")
        await wait_for_state(recording, RecordingState.RECORDING)

        recording.finalize()
        fake_ws.push_result([{"text": "Hi"}, {"text": "<end>"}, {"text": "<fin>"}])
        await settle()

        assert [name for name, _ in events] == ["token", "result", "endpoint", "finalized"]
        assert {"type": "finalize"} in fake_ws.control_messages
        recording.cancel()
