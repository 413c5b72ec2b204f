"""
Real-time speech-to-text streaming client.

Public API:
    - RealtimeClient: Creates recordings and sessions from shared settings
    - Recording: Audio source + session orchestration with pre-connect buffering
    - RealtimeSttSession: One streaming connection (state machine, events, async iteration)

Text assembly:
    - RealtimeSegmentBuffer: Releases segments once their boundary is final
    - RealtimeUtteranceBuffer: Collects segments into utterances at endpoints
    - segment_realtime_tokens: Group tokens by speaker/language

Configuration:
    - SttSessionConfig: Settings sent to the service
    - SessionOptions: Client-side session behavior
    - ClientSettings: Endpoint/credential defaults from env vars or JSON
    - TranslationConfig / TranscriptionContext: Nested session settings

Audio:
    - AudioSource / AudioSourceHandlers: Source protocol
    - IterableAudioSource / FileAudioSource: Built-in sources

Models:
    - RealtimeToken, RealtimeResult, RealtimeSegment, RealtimeUtterance
    - SessionState, RecordingState, StateChange, RealtimeEvent, EventKind

Cancellation:
    - AbortController / AbortSignal / any_signal / timeout_signal

Exceptions:
    - RealtimeSttError: Base exception for this library (carries ErrorKind)
"""

from __future__ import annotations

__version__ = "0.1.0"

from .abort import AbortController, AbortSignal, any_signal, timeout_signal
from .async_queue import AsyncEventQueue
from .audio import (
    AudioSource,
    AudioSourceHandlers,
    FileAudioSource,
    IterableAudioSource,
    to_audio_bytes,
)
from .auth import ApiKeyConfig, resolve_api_key
from .client import RealtimeClient
from .config import (
    DEFAULT_WS_URL,
    ClientSettings,
    SessionOptions,
    SttSessionConfig,
    TranscriptionContext,
    TranslationConfig,
)
from .emitter import TypedEmitter
from .exceptions import (
    AbortError,
    AudioBufferOverflowError,
    AudioDeviceError,
    AudioError,
    AudioPermissionError,
    AudioUnavailableError,
    AuthError,
    BadRequestError,
    ConfigurationError,
    ConnectionError,
    CredentialError,
    ErrorKind,
    NetworkError,
    QuotaError,
    RealtimeError,
    RealtimeSttError,
    StateError,
    map_error_response,
    map_status_code,
)
from .models import (
    EventKind,
    RealtimeEvent,
    RealtimeResult,
    RealtimeSegment,
    RealtimeToken,
    RealtimeUtterance,
    RecordingState,
    SessionState,
    StateChange,
)
from .permissions import (
    PermissionResolver,
    PermissionResult,
    PermissionStatus,
    PermissionType,
    StaticPermissionResolver,
)
from .recording import Recording
from .segment_buffer import RealtimeSegmentBuffer
from .segments import segment_realtime_tokens
from .session import RealtimeSttSession
from .utterance_buffer import RealtimeUtteranceBuffer

__all__ = [
    "__version__",
    # Client
    "RealtimeClient",
    "Recording",
    "RealtimeSttSession",
    # Text assembly
    "RealtimeSegmentBuffer",
    "RealtimeUtteranceBuffer",
    "segment_realtime_tokens",
    # Configuration
    "DEFAULT_WS_URL",
    "ClientSettings",
    "SessionOptions",
    "SttSessionConfig",
    "TranscriptionContext",
    "TranslationConfig",
    "ApiKeyConfig",
    "resolve_api_key",
    # Audio
    "AudioSource",
    "AudioSourceHandlers",
    "FileAudioSource",
    "IterableAudioSource",
    "to_audio_bytes",
    # Permissions
    "PermissionResolver",
    "PermissionResult",
    "PermissionStatus",
    "PermissionType",
    "StaticPermissionResolver",
    # Models
    "EventKind",
    "RealtimeEvent",
    "RealtimeResult",
    "RealtimeSegment",
    "RealtimeToken",
    "RealtimeUtterance",
    "RecordingState",
    "SessionState",
    "StateChange",
    # Primitives
    "AbortController",
    "AbortSignal",
    "any_signal",
    "timeout_signal",
    "AsyncEventQueue",
    "TypedEmitter",
    # Exceptions
    "ErrorKind",
    "RealtimeSttError",
    "RealtimeError",
    "AuthError",
    "BadRequestError",
    "QuotaError",
    "NetworkError",
    "ConnectionError",
    "AbortError",
    "StateError",
    "ConfigurationError",
    "CredentialError",
    "AudioError",
    "AudioPermissionError",
    "AudioDeviceError",
    "AudioUnavailableError",
    "AudioBufferOverflowError",
    "map_error_response",
    "map_status_code",
]
