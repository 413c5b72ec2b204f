"""
Pytest configuration and fixtures for tests.

This module provides:
- An in-memory WebSocket and connector standing in for the network
- A controllable audio source
- Common test fixtures
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure the project package is importable when running pytest as an installed script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from realtime_stt.audio import AudioSourceHandlers  # noqa: E402

_CLOSED = object()


# ============================================================================
# Fake transport
# ============================================================================


class FakeWebSocket:
    """In-memory WebSocket recording sent frames and replaying scripted ones."""

    def __init__(self) -> None:
        self.sent: list[str | bytes] = []
        self.incoming: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False
        self.close_reason: str | None = None
        self.send_error: Exception | None = None

    async def send(self, message: str | bytes) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(message)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(_CLOSED)

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> str | bytes:
        item = await self.incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    # Scripting helpers

    def push(self, message: dict[str, Any] | str | bytes) -> None:
        """Queue an inbound frame (dicts are JSON encoded)."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self.incoming.put_nowait(message)

    def push_result(
        self,
        tokens: list[dict[str, Any]] | None = None,
        final_audio_proc_ms: int = 0,
        total_audio_proc_ms: int = 0,
        finished: bool = False,
    ) -> None:
        message: dict[str, Any] = {
            "tokens": tokens or [],
            "final_audio_proc_ms": final_audio_proc_ms,
            "total_audio_proc_ms": total_audio_proc_ms,
        }
        if finished:
            message["finished"] = True
        self.push(message)

    def remote_close(self, reason: str | None = None) -> None:
        """Simulate the server closing the stream."""
        self.close_reason = reason
        self.incoming.put_nowait(_CLOSED)

    def fail(self, error: Exception) -> None:
        """Make the receive loop raise ``error``."""
        self.incoming.put_nowait(error)

    @property
    def config_message(self) -> dict[str, Any]:
        return json.loads(self.sent[0])

    @property
    def audio_frames(self) -> list[bytes]:
        return [m for m in self.sent if isinstance(m, bytes)]

    @property
    def control_messages(self) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self.sent[1:] if isinstance(m, str) and m]

    @property
    def end_of_audio_sent(self) -> bool:
        return "" in self.sent


class FakeConnector:
    """Connector returning a FakeWebSocket, optionally gated or failing."""

    def __init__(self, ws: FakeWebSocket) -> None:
        self.ws = ws
        self.urls: list[str] = []
        self.error: BaseException | None = None
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.ws


# ============================================================================
# Fake audio source
# ============================================================================


class FakeAudioSource:
    """Audio source driven by the test."""

    def __init__(self) -> None:
        self.handlers: AudioSourceHandlers | None = None
        self.start_error: Exception | None = None
        self.start_gate: asyncio.Event | None = None
        self.start_calls = 0
        self.stop_calls = 0
        self.paused = False

    async def start(self, handlers: AudioSourceHandlers) -> None:
        self.start_calls += 1
        if self.start_gate is not None:
            await self.start_gate.wait()
        if self.start_error is not None:
            raise self.start_error
        self.handlers = handlers

    def stop(self) -> None:
        self.stop_calls += 1

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def emit(self, chunk: bytes) -> None:
        assert self.handlers is not None
        self.handlers.on_data(chunk)

    def mute(self) -> None:
        assert self.handlers is not None and self.handlers.on_muted is not None
        self.handlers.on_muted()

    def unmute(self) -> None:
        assert self.handlers is not None and self.handlers.on_unmuted is not None
        self.handlers.on_unmuted()


async def settle(rounds: int = 10) -> None:
    """Let scheduled callbacks and background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def fake_ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def connector(fake_ws: FakeWebSocket) -> FakeConnector:
    return FakeConnector(fake_ws)


@pytest.fixture
def audio_source() -> FakeAudioSource:
    return FakeAudioSource()


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep REALTIME_STT_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("REALTIME_STT_"):
            monkeypatch.delenv(key, raising=False)
