"""Grouping of real-time tokens into speaker/language segments."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Literal

from .exceptions import ConfigurationError
from .models import RealtimeSegment, RealtimeToken

SegmentGroupKey = Literal["speaker", "language"]

DEFAULT_GROUP_BY: tuple[SegmentGroupKey, ...] = ("speaker", "language")
_VALID_GROUP_KEYS: frozenset[str] = frozenset(DEFAULT_GROUP_BY)


def validate_group_by(group_by: Iterable[str] | None) -> tuple[SegmentGroupKey, ...]:
    """Normalize a ``group_by`` option.

    Raises:
        ConfigurationError: If a key is not "speaker" or "language".
    """
    if group_by is None:
        return DEFAULT_GROUP_BY
    if isinstance(group_by, str):
        group_by = (group_by,)
    keys = tuple(group_by)
    invalid = [k for k in keys if k not in _VALID_GROUP_KEYS]
    if invalid:
        raise ConfigurationError(
            f"Invalid group_by keys: {invalid}. Must be a subset of {sorted(_VALID_GROUP_KEYS)}"
        )
    return keys  # type: ignore[return-value]


def build_segment(tokens: Sequence[RealtimeToken]) -> RealtimeSegment:
    """Build a segment from a non-empty run of tokens."""
    if not tokens:
        raise ValueError("Cannot build segment from an empty token list")
    first, last = tokens[0], tokens[-1]
    return RealtimeSegment(
        text="".join(t.text for t in tokens),
        tokens=tuple(tokens),
        start_ms=first.start_ms,
        end_ms=last.end_ms,
        speaker=last.speaker or None,
        language=last.language or None,
    )


def segment_realtime_tokens(
    tokens: Iterable[RealtimeToken],
    group_by: Iterable[str] | None = None,
    final_only: bool = False,
) -> list[RealtimeSegment]:
    """Split tokens into segments.

    A new segment starts whenever any of the ``group_by`` fields differs from
    the previous token. Token text is concatenated as-is.

    Args:
        tokens: Tokens in arrival order.
        group_by: Fields to group by (default: speaker and language).
        final_only: Only consider finalized tokens.

    Returns:
        Segments in order; every input token appears in exactly one segment.
    """
    keys = validate_group_by(group_by)
    by_speaker = "speaker" in keys
    by_language = "language" in keys

    segments: list[RealtimeSegment] = []
    current: list[RealtimeToken] = []
    speaker: str | None = None
    language: str | None = None

    for token in tokens:
        if final_only and not token.is_final:
            continue
        if current and (
            (by_speaker and token.speaker != speaker) or (by_language and token.language != language)
        ):
            segments.append(build_segment(current))
            current = []
        current.append(token)
        speaker = token.speaker
        language = token.language

    if current:
        segments.append(build_segment(current))
    return segments


__all__ = [
    "SegmentGroupKey",
    "DEFAULT_GROUP_BY",
    "validate_group_by",
    "build_segment",
    "segment_realtime_tokens",
]
