"""Custom exception classes for the realtime-stt library.

Every error raised by the library derives from :class:`RealtimeSttError` and
carries an :class:`ErrorKind` tag, so callers can branch on ``error.kind``
instead of on the concrete class:

    try:
        await session.connect()
    except RealtimeSttError as e:
        if e.kind is ErrorKind.AUTH:
            refresh_credentials()

Status codes reported by the service (handshake rejections or inline error
frames) are mapped onto kinds by :func:`map_status_code` and
:func:`map_error_response`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of error kinds."""

    AUTH = "auth_error"
    BAD_REQUEST = "bad_request"
    QUOTA_EXCEEDED = "quota_exceeded"
    NETWORK = "network_error"
    CONNECTION = "connection_error"
    ABORTED = "aborted"
    STATE = "state_error"
    REALTIME = "realtime_error"
    CONFIGURATION = "configuration_error"
    CREDENTIAL = "credential_error"
    PERMISSION_DENIED = "permission_denied"
    DEVICE_NOT_FOUND = "device_not_found"
    AUDIO_UNAVAILABLE = "audio_unavailable"
    BUFFER_OVERFLOW = "buffer_overflow"


class RealtimeSttError(Exception):
    """Base error for this library.

    Attributes:
        kind: Error kind tag.
        status_code: Status code reported by the service, when applicable.
        raw: Original payload (error frame, handshake response) for debugging.
    """

    default_kind: ErrorKind = ErrorKind.REALTIME

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        status_code: int | None = None,
        raw: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.status_code = status_code
        self.raw = raw

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.kind.value}] {self.message} (status {self.status_code})"
        return f"[{self.kind.value}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "name": type(self).__name__,
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.status_code is not None:
            result["status_code"] = self.status_code
        if self.raw is not None:
            result["raw"] = self.raw
        return result


# =============================================================================
# Streaming protocol errors
# =============================================================================


class RealtimeError(RealtimeSttError):
    """Raised for streaming errors that do not map to a more specific kind."""


class AuthError(RealtimeError):
    """Raised when the credential is rejected (401)."""

    default_kind = ErrorKind.AUTH


class BadRequestError(RealtimeError):
    """Raised when the session configuration is invalid (400)."""

    default_kind = ErrorKind.BAD_REQUEST


class QuotaError(RealtimeError):
    """Raised on rate limiting or quota exhaustion (402, 429)."""

    default_kind = ErrorKind.QUOTA_EXCEEDED


class NetworkError(RealtimeError):
    """Raised for transient network or server failures (408, 500, 503)."""

    default_kind = ErrorKind.NETWORK


class ConnectionError(RealtimeError):
    """Raised when the stream cannot be established or is lost."""

    default_kind = ErrorKind.CONNECTION

    def __init__(self, message: str, raw: Any = None) -> None:
        super().__init__(message, raw=raw)


class AbortError(RealtimeError):
    """Raised when an operation is canceled through an abort signal."""

    default_kind = ErrorKind.ABORTED

    def __init__(self, message: str = "Operation aborted") -> None:
        super().__init__(message)


class StateError(RealtimeError):
    """Raised when an operation is invalid for the current state."""

    default_kind = ErrorKind.STATE

    def __init__(self, message: str) -> None:
        super().__init__(message)


# =============================================================================
# Client-side errors
# =============================================================================


class ConfigurationError(RealtimeSttError):
    """Raised when configuration is invalid."""

    default_kind = ErrorKind.CONFIGURATION


class CredentialError(RealtimeSttError):
    """Raised when the API key cannot be resolved."""

    default_kind = ErrorKind.CREDENTIAL


class AudioError(RealtimeSttError):
    """Base error for audio capture failures."""

    default_kind = ErrorKind.AUDIO_UNAVAILABLE

    def __init__(self, message: str, cause: Any = None) -> None:
        super().__init__(message, raw=cause)


class AudioPermissionError(AudioError):
    """Raised when access to the audio device is denied."""

    default_kind = ErrorKind.PERMISSION_DENIED

    def __init__(self, message: str = "Microphone access denied", cause: Any = None) -> None:
        super().__init__(message, cause)


class AudioDeviceError(AudioError):
    """Raised when no audio input device is found."""

    default_kind = ErrorKind.DEVICE_NOT_FOUND

    def __init__(self, message: str = "No audio input device found", cause: Any = None) -> None:
        super().__init__(message, cause)


class AudioUnavailableError(AudioError):
    """Raised when audio capture is not supported in the current environment."""

    def __init__(
        self,
        message: str = "Audio capture is not supported in this environment",
        cause: Any = None,
    ) -> None:
        super().__init__(message, cause)


class AudioBufferOverflowError(RealtimeSttError):
    """Raised when more audio is buffered than allowed before the session connects."""

    default_kind = ErrorKind.BUFFER_OVERFLOW


# =============================================================================
# Status mapping
# =============================================================================

_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.BAD_REQUEST,
    401: ErrorKind.AUTH,
    402: ErrorKind.QUOTA_EXCEEDED,
    408: ErrorKind.NETWORK,
    429: ErrorKind.QUOTA_EXCEEDED,
    500: ErrorKind.NETWORK,
    503: ErrorKind.NETWORK,
}

_KIND_CLASSES: dict[ErrorKind, type[RealtimeError]] = {
    ErrorKind.AUTH: AuthError,
    ErrorKind.BAD_REQUEST: BadRequestError,
    ErrorKind.QUOTA_EXCEEDED: QuotaError,
    ErrorKind.NETWORK: NetworkError,
}


def map_status_code(status_code: int | None) -> ErrorKind:
    """Map a service status code to an error kind.

    Unknown or missing codes map to ``ErrorKind.REALTIME``.
    """
    if status_code is None:
        return ErrorKind.REALTIME
    return _STATUS_KINDS.get(status_code, ErrorKind.REALTIME)


def error_from_status(
    status_code: int | None, message: str, raw: Any = None
) -> RealtimeError:
    """Build the typed error for a status code."""
    kind = map_status_code(status_code)
    cls = _KIND_CLASSES.get(kind, RealtimeError)
    return cls(message, kind=kind, status_code=status_code, raw=raw)


def map_error_response(response: dict[str, Any]) -> RealtimeError:
    """Map an inbound ``{error_code, error_message}`` frame to a typed error.

    Args:
        response: Decoded JSON error frame.

    Returns:
        RealtimeError subclass matching the error code.
    """
    error_code = response.get("error_code")
    status_code = error_code if isinstance(error_code, int) else None
    message = response.get("error_message")
    if not isinstance(message, str) or not message:
        message = "Unknown error"
    return error_from_status(status_code, message, raw=response)


__all__ = [
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
    "map_status_code",
    "error_from_status",
    "map_error_response",
]
