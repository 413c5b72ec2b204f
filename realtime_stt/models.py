"""Data model for real-time transcription results.

Tokens arrive from the service inside results; segments and utterances are
derived client-side by the segment and utterance buffers and are never
mutated after creation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

# Control tokens emitted by the service inside result frames.
ENDPOINT_TOKEN = "<end>"
FINALIZED_TOKEN = "<fin>"

TranslationStatus = Literal["none", "original", "translation"]
_TRANSLATION_STATUSES: frozenset[str] = frozenset({"none", "original", "translation"})


def _number(value: Any) -> float | int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _string(value: Any) -> str | None:
    return value if isinstance(value, str) else None


# =============================================================================
# States
# =============================================================================


class SessionState(str, Enum):
    """Lifecycle states of a streaming session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FINISHING = "finishing"
    FINISHED = "finished"
    CANCELED = "canceled"
    CLOSED = "closed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in _SESSION_TERMINAL


_SESSION_TERMINAL = frozenset(
    {SessionState.FINISHED, SessionState.CANCELED, SessionState.CLOSED, SessionState.ERROR}
)


class RecordingState(str, Enum):
    """Lifecycle states of a recording (audio source + session)."""

    IDLE = "idle"
    STARTING = "starting"
    CONNECTING = "connecting"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in _RECORDING_TERMINAL


_RECORDING_TERMINAL = frozenset(
    {RecordingState.STOPPED, RecordingState.CANCELED, RecordingState.ERROR}
)


@dataclass(frozen=True, slots=True)
class StateChange:
    """Payload of ``state_change`` events."""

    old_state: Any
    new_state: Any


# =============================================================================
# Tokens and results
# =============================================================================


@dataclass(frozen=True, slots=True)
class RealtimeToken:
    """Smallest timed unit of recognized text.

    Attributes:
        text: Token text, including any leading whitespace.
        start_ms: Start time relative to audio start (ms).
        end_ms: End time relative to audio start (ms). Tokens without it
            cannot take part in stability decisions.
        confidence: Confidence score in [0, 1].
        is_final: Whether the service will not revise this token again.
        speaker: Speaker label when diarization is enabled.
        language: Language code when language identification is enabled.
        translation_status: "none", "original" or "translation".
        source_language: Source language for translated tokens.
    """

    text: str
    start_ms: float | int | None = None
    end_ms: float | int | None = None
    confidence: float = 0.0
    is_final: bool = False
    speaker: str | None = None
    language: str | None = None
    translation_status: TranslationStatus | None = None
    source_language: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RealtimeToken:
        """Parse a token from a result frame, tolerating missing/mistyped fields."""
        status = data.get("translation_status")
        confidence = _number(data.get("confidence"))
        return cls(
            text=_string(data.get("text")) or "",
            start_ms=_number(data.get("start_ms")),
            end_ms=_number(data.get("end_ms")),
            confidence=float(confidence) if confidence is not None else 0.0,
            is_final=bool(data.get("is_final")),
            speaker=_string(data.get("speaker")),
            language=_string(data.get("language")),
            translation_status=status if status in _TRANSLATION_STATUSES else None,
            source_language=_string(data.get("source_language")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting unset optional fields."""
        result: dict[str, Any] = {
            "text": self.text,
            "confidence": self.confidence,
            "is_final": self.is_final,
        }
        for key in ("start_ms", "end_ms", "speaker", "language", "translation_status", "source_language"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result


@dataclass(slots=True)
class RealtimeResult:
    """One result frame.

    ``final_audio_proc_ms`` is a watermark: tokens ending at or before it are
    never revised again.
    """

    tokens: list[RealtimeToken] = field(default_factory=list)
    final_audio_proc_ms: float | int = 0
    total_audio_proc_ms: float | int = 0
    finished: bool = False
    raw: dict[str, Any] | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RealtimeResult:
        raw_tokens = data.get("tokens")
        tokens = [
            RealtimeToken.from_dict(t) for t in (raw_tokens if isinstance(raw_tokens, list) else []) if isinstance(t, dict)
        ]
        return cls(
            tokens=tokens,
            final_audio_proc_ms=_number(data.get("final_audio_proc_ms")) or 0,
            total_audio_proc_ms=_number(data.get("total_audio_proc_ms")) or 0,
            finished=data.get("finished") is True,
            raw=data,
        )

    @property
    def text(self) -> str:
        """Concatenated text of all tokens."""
        return "".join(t.text for t in self.tokens)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens": [t.to_dict() for t in self.tokens],
            "final_audio_proc_ms": self.final_audio_proc_ms,
            "total_audio_proc_ms": self.total_audio_proc_ms,
            "finished": self.finished,
        }


# =============================================================================
# Derived views
# =============================================================================


@dataclass(frozen=True, slots=True)
class RealtimeSegment:
    """Maximal run of tokens sharing the grouping key."""

    text: str
    tokens: tuple[RealtimeToken, ...]
    start_ms: float | int | None = None
    end_ms: float | int | None = None
    speaker: str | None = None
    language: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"text": self.text, "tokens": [t.to_dict() for t in self.tokens]}
        for key in ("start_ms", "end_ms", "speaker", "language"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result


@dataclass(frozen=True, slots=True)
class RealtimeUtterance:
    """Segments collected between two endpoints.

    ``speaker``/``language`` are set only when identical across all segments.
    """

    text: str
    segments: tuple[RealtimeSegment, ...]
    tokens: tuple[RealtimeToken, ...]
    start_ms: float | int | None = None
    end_ms: float | int | None = None
    speaker: str | None = None
    language: str | None = None
    final_audio_proc_ms: float | int | None = None
    total_audio_proc_ms: float | int | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "text": self.text,
            "segments": [s.to_dict() for s in self.segments],
        }
        for key in (
            "start_ms",
            "end_ms",
            "speaker",
            "language",
            "final_audio_proc_ms",
            "total_audio_proc_ms",
        ):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result


class EventKind(str, Enum):
    """Kinds of events delivered through session iteration."""

    RESULT = "result"
    ENDPOINT = "endpoint"
    FINALIZED = "finalized"
    FINISHED = "finished"


@dataclass(frozen=True, slots=True)
class RealtimeEvent:
    """Event pulled from ``async for event in session``."""

    kind: EventKind
    data: RealtimeResult | None = None


__all__ = [
    "ENDPOINT_TOKEN",
    "FINALIZED_TOKEN",
    "TranslationStatus",
    "SessionState",
    "RecordingState",
    "StateChange",
    "RealtimeToken",
    "RealtimeResult",
    "RealtimeSegment",
    "RealtimeUtterance",
    "EventKind",
    "RealtimeEvent",
]
