"""Endpoint-driven utterance assembly on top of the segment buffer."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TypeVar

from .models import RealtimeResult, RealtimeSegment, RealtimeUtterance
from .segment_buffer import RealtimeSegmentBuffer

T = TypeVar("T")


def _common_value(values: Iterable[T | None]) -> T | None:
    common: T | None = None
    for value in values:
        if value is None:
            return None
        if common is None:
            common = value
        elif value != common:
            return None
    return common


def build_utterance(
    segments: Sequence[RealtimeSegment],
    final_audio_proc_ms: float | int | None = None,
    total_audio_proc_ms: float | int | None = None,
) -> RealtimeUtterance:
    """Concatenate segments into one utterance."""
    return RealtimeUtterance(
        text="".join(s.text for s in segments),
        segments=tuple(segments),
        tokens=tuple(t for s in segments for t in s.tokens),
        start_ms=segments[0].start_ms if segments else None,
        end_ms=segments[-1].end_ms if segments else None,
        speaker=_common_value(s.speaker for s in segments),
        language=_common_value(s.language for s in segments),
        final_audio_proc_ms=final_audio_proc_ms,
        total_audio_proc_ms=total_audio_proc_ms,
    )


class RealtimeUtteranceBuffer:
    """Collects stable segments until an endpoint, then emits one utterance.

    Accepts the same options as :class:`RealtimeSegmentBuffer`.
    """

    def __init__(
        self,
        group_by: Iterable[str] | None = None,
        final_only: bool = True,
        max_tokens: int | None = None,
        max_ms: float | None = None,
    ) -> None:
        self._segment_buffer = RealtimeSegmentBuffer(
            group_by=group_by, final_only=final_only, max_tokens=max_tokens, max_ms=max_ms
        )
        self._pending: list[RealtimeSegment] = []
        self._last_final_audio_proc_ms: float | int | None = None
        self._last_total_audio_proc_ms: float | int | None = None

    @property
    def pending_segments(self) -> list[RealtimeSegment]:
        """Stable segments collected since the last endpoint."""
        return list(self._pending)

    def add_result(self, result: RealtimeResult) -> list[RealtimeSegment]:
        """Add a result; returns the segments that became stable."""
        self._last_final_audio_proc_ms = result.final_audio_proc_ms
        self._last_total_audio_proc_ms = result.total_audio_proc_ms

        stable = self._segment_buffer.add(result)
        self._pending.extend(stable)
        return stable

    def mark_endpoint(self) -> RealtimeUtterance | None:
        """Flush everything collected so far as one utterance.

        Returns:
            The utterance, or None if nothing was buffered.
        """
        segments = self._pending + self._segment_buffer.flush_all()
        self._pending = []
        if not segments:
            return None
        return build_utterance(segments, self._last_final_audio_proc_ms, self._last_total_audio_proc_ms)

    def reset(self) -> None:
        """Clear pending segments and buffered tokens."""
        self._pending = []
        self._segment_buffer.reset()


__all__ = ["RealtimeUtteranceBuffer", "build_utterance"]
