"""Audio sources feeding a recording.

An audio source pushes raw chunks to the handlers passed into ``start()``, so
the handlers are attached before any data flows. This package ships no
platform microphone; instead it provides sources for pre-recorded or
generated audio:

- IterableAudioSource: pumps chunks from any sync or async iterable
- FileAudioSource: reads a raw audio file in fixed-size chunks

Custom sources (a sounddevice callback, a network feed) only need to
implement the :class:`AudioSource` protocol.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import numpy as np

from .exceptions import AudioDeviceError, AudioError, AudioUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 3840  # 120 ms of 16 kHz mono s16le


def to_audio_bytes(data: Any) -> bytes:
    """Convert an audio chunk to immutable bytes.

    Bytes-like input passes through. Float numpy arrays (range -1.0..1.0) are
    clipped and converted to little-endian 16-bit PCM; integer arrays are cast
    to int16.

    Raises:
        TypeError: For unsupported chunk types.
    """
    if isinstance(data, bytes):
        return data
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, np.ndarray):
        if np.issubdtype(data.dtype, np.floating):
            clipped = np.clip(data, -1.0, 1.0)
            return (clipped * 32767.0).astype("<i2").tobytes()
        if np.issubdtype(data.dtype, np.integer):
            return data.astype("<i2").tobytes()
    raise TypeError(f"Unsupported audio chunk type: {type(data).__name__}")


@dataclass(slots=True)
class AudioSourceHandlers:
    """Callbacks a source invokes after ``start()``.

    Attributes:
        on_data: Receives each audio chunk.
        on_error: Receives runtime capture errors.
        on_muted: Called when the source is muted externally (hardware/OS mute).
        on_unmuted: Called when an external mute ends.
    """

    on_data: Callable[[bytes], None]
    on_error: Callable[[Exception], None]
    on_muted: Callable[[], None] | None = None
    on_unmuted: Callable[[], None] | None = None


@runtime_checkable
class AudioSource(Protocol):
    """Push-based audio source.

    ``start`` raises AudioPermissionError, AudioDeviceError or
    AudioUnavailableError when capture cannot begin. ``stop`` must be safe to
    call multiple times. Sources may also provide ``pause()``/``resume()``.
    """

    async def start(self, handlers: AudioSourceHandlers) -> None: ...

    def stop(self) -> None: ...


async def _iterate(chunks: AsyncIterator[Any] | Iterator[Any]) -> AsyncIterator[Any]:
    if isinstance(chunks, AsyncIterator):
        async for chunk in chunks:
            yield chunk
    else:
        for chunk in chunks:
            yield chunk


class IterableAudioSource:
    """Audio source delivering chunks from an iterable in a background task.

    Args:
        chunks: Sync or async iterable of bytes-like or numpy chunks.
        pace_sec: Delay between chunks; None delivers as fast as the loop allows.

    The iterable is consumed once: restarting after ``stop()`` continues with
    the remaining chunks. Each ``start()``/``stop()`` bumps an epoch, so a
    pump task from an earlier start never delivers into a later one.
    """

    def __init__(
        self,
        chunks: Iterable[Any] | AsyncIterable[Any],
        pace_sec: float | None = None,
    ) -> None:
        self._chunks = chunks
        self._iterator: AsyncIterator[Any] | Iterator[Any] | None = None
        self.pace_sec = pace_sec

        self._epoch = 0
        self._handlers: AudioSourceHandlers | None = None
        self._task: asyncio.Task | None = None
        self._running = asyncio.Event()
        self._running.set()
        self._done = asyncio.Event()
        self._muted = False

        self.chunks_delivered = 0

    @property
    def started(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def paused(self) -> bool:
        return not self._running.is_set()

    @property
    def muted(self) -> bool:
        return self._muted

    async def start(self, handlers: AudioSourceHandlers) -> None:
        """Begin delivering chunks to ``handlers``.

        Raises:
            AudioUnavailableError: If the source is already started.
        """
        if self.started:
            raise AudioUnavailableError("Audio source is already started")

        if self._iterator is None:
            if isinstance(self._chunks, AsyncIterable):
                self._iterator = aiter(self._chunks)
            else:
                self._iterator = iter(self._chunks)

        self._epoch += 1
        self._handlers = handlers
        self._running.set()
        self._done.clear()
        self._task = asyncio.create_task(self._pump(self._epoch))
        logger.debug("Audio source started (epoch %d)", self._epoch)

    def stop(self) -> None:
        """Stop delivering chunks. Safe to call multiple times."""
        self._epoch += 1
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._handlers = None
        self._done.set()

    def pause(self) -> None:
        self._running.clear()

    def resume(self) -> None:
        self._running.set()

    def set_muted(self, muted: bool) -> None:
        """Simulate an external mute, notifying ``on_muted``/``on_unmuted``."""
        if muted == self._muted:
            return
        self._muted = muted
        handlers = self._handlers
        if handlers is None:
            return
        callback = handlers.on_muted if muted else handlers.on_unmuted
        if callback is not None:
            callback()

    async def wait_exhausted(self) -> None:
        """Wait until every chunk was delivered or the source was stopped."""
        await self._done.wait()

    async def _pump(self, epoch: int) -> None:
        assert self._iterator is not None
        handlers = self._handlers
        try:
            async for chunk in _iterate(self._iterator):
                await self._running.wait()
                if epoch != self._epoch or handlers is None:
                    return
                handlers.on_data(to_audio_bytes(chunk))
                self.chunks_delivered += 1
                # Yield between chunks so consumers can interleave.
                await asyncio.sleep(self.pace_sec or 0)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if epoch == self._epoch and handlers is not None:
                logger.error("Audio source failed: %s", e)
                error = e if isinstance(e, AudioError) else AudioUnavailableError(f"Audio source failed: {e}", e)
                handlers.on_error(error)
            return
        finally:
            if epoch == self._epoch:
                self._done.set()
        logger.debug("Audio source exhausted after %d chunks", self.chunks_delivered)


class FileAudioSource(IterableAudioSource):
    """Reads a raw audio file (any container the service accepts) in chunks.

    Args:
        path: Audio file path.
        chunk_size: Bytes per chunk.
        pace_sec: Delay between chunks to simulate real-time capture.
    """

    def __init__(
        self,
        path: str | Path,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        pace_sec: float | None = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.path = Path(path)
        self.chunk_size = chunk_size
        super().__init__(self._read_chunks(), pace_sec=pace_sec)

    async def start(self, handlers: AudioSourceHandlers) -> None:
        """Start reading.

        Raises:
            AudioDeviceError: If the file does not exist.
        """
        if not self.path.is_file():
            raise AudioDeviceError(f"Audio file not found: {self.path}")
        await super().start(handlers)

    def _read_chunks(self) -> Iterator[bytes]:
        with self.path.open("rb") as f:
            while chunk := f.read(self.chunk_size):
                yield chunk


__all__ = [
    "AudioSource",
    "AudioSourceHandlers",
    "IterableAudioSource",
    "FileAudioSource",
    "DEFAULT_CHUNK_SIZE",
    "to_audio_bytes",
]
