"""Rolling buffer that turns real-time results into stable segments.

Each :meth:`RealtimeSegmentBuffer.add` re-segments the whole buffered token
list. Every segment except the last is a candidate for release; candidates
are released in order while their last token ends at or before the result's
``final_audio_proc_ms`` watermark, and the scan stops at the first one that
does not. The last segment is always held back because more tokens of the
same group may still arrive; :meth:`flush_all` releases it.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable

from .exceptions import ConfigurationError
from .models import RealtimeResult, RealtimeSegment, RealtimeToken
from .segments import segment_realtime_tokens, validate_group_by

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 2000


def _validate_positive(name: str, value: float | int | None) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} must be a finite positive number, got {value!r}")


class RealtimeSegmentBuffer:
    """Accumulates tokens and releases segments once their boundary is final.

    Args:
        group_by: Fields whose change starts a new segment (default: speaker, language).
        final_only: Drop non-final tokens on arrival (default: True).
        max_tokens: Keep at most this many tokens (oldest dropped first).
        max_ms: Keep only tokens ending within this window of the latest token.

    Raises:
        ConfigurationError: If ``max_tokens``/``max_ms`` are not finite positive numbers.
    """

    def __init__(
        self,
        group_by: Iterable[str] | None = None,
        final_only: bool = True,
        max_tokens: int | None = None,
        max_ms: float | None = None,
    ) -> None:
        _validate_positive("max_tokens", max_tokens)
        _validate_positive("max_ms", max_ms)
        self.group_by = validate_group_by(group_by)
        self.final_only = final_only
        self.max_tokens = int(max_tokens) if max_tokens is not None else DEFAULT_MAX_TOKENS
        self.max_ms = max_ms
        self._tokens: list[RealtimeToken] = []

    @property
    def size(self) -> int:
        """Number of tokens currently buffered."""
        return len(self._tokens)

    def add(self, result: RealtimeResult) -> list[RealtimeSegment]:
        """Add a result and return the segments that became stable."""
        if self.final_only:
            incoming = [t for t in result.tokens if t.is_final]
        else:
            incoming = list(result.tokens)
        self._tokens.extend(incoming)

        stable = self._flush_stable(result.final_audio_proc_ms)
        self._trim()
        return stable

    def flush_all(self) -> list[RealtimeSegment]:
        """Segment and release every buffered token, stable or not."""
        if not self._tokens:
            return []
        segments = segment_realtime_tokens(self._tokens, group_by=self.group_by)
        self._tokens = []
        return segments

    def reset(self) -> None:
        """Drop all buffered tokens."""
        self._tokens = []

    def _flush_stable(self, final_audio_proc_ms: float | int) -> list[RealtimeSegment]:
        if not isinstance(final_audio_proc_ms, (int, float)) or not math.isfinite(final_audio_proc_ms):
            return []
        if final_audio_proc_ms <= 0:
            return []

        segments = segment_realtime_tokens(self._tokens, group_by=self.group_by)
        stable: list[RealtimeSegment] = []
        drop_count = 0

        for segment in segments[:-1]:
            end_ms = segment.tokens[-1].end_ms
            if end_ms is None or end_ms > final_audio_proc_ms:
                break
            stable.append(segment)
            drop_count += len(segment.tokens)

        if drop_count:
            del self._tokens[:drop_count]
        return stable

    def _trim(self) -> None:
        if len(self._tokens) > self.max_tokens:
            dropped = len(self._tokens) - self.max_tokens
            del self._tokens[:dropped]
            logger.debug("Segment buffer trimmed %d tokens over max_tokens", dropped)

        if self.max_ms is None:
            return

        latest_end_ms = next((t.end_ms for t in reversed(self._tokens) if t.end_ms is not None), None)
        if latest_end_ms is None:
            return

        cutoff = latest_end_ms - self.max_ms
        if cutoff <= 0:
            return

        drop_index = 0
        for token in self._tokens:
            if token.end_ms is None or token.end_ms >= cutoff:
                break
            drop_index += 1
        if drop_index:
            del self._tokens[:drop_index]
            logger.debug("Segment buffer trimmed %d tokens outside max_ms window", drop_index)


__all__ = ["RealtimeSegmentBuffer", "DEFAULT_MAX_TOKENS"]
