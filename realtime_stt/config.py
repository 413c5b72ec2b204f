"""Configuration for real-time sessions and clients.

- SttSessionConfig: settings sent to the service in the first frame
- SessionOptions: client-side session behavior (keepalive, timeouts, abort)
- ClientSettings: endpoint, credential and buffering defaults, loadable from
  environment variables or a JSON file

Precedence when combined by the CLI: flags > config file > env vars > defaults.
"""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from .abort import AbortSignal

logger = logging.getLogger(__name__)

DEFAULT_WS_URL = "wss://stt-rt.soniox.com/transcribe-websocket"
DEFAULT_MODEL = "stt-rt-preview"
DEFAULT_BUFFER_QUEUE_SIZE = 1000
DEFAULT_KEEPALIVE_INTERVAL_SEC = 5.0
DEFAULT_CONNECT_TIMEOUT_SEC = 10.0

TranslationType = Literal["one_way", "two_way"]


def _positive(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} must be a finite positive number, got {value!r}")


# =============================================================================
# Session config (sent to the service)
# =============================================================================


@dataclass(slots=True)
class TranslationConfig:
    """Translation settings.

    ``one_way`` translates every spoken language into ``target_language``;
    ``two_way`` translates between ``language_a`` and ``language_b``.
    """

    type: TranslationType = "one_way"
    target_language: str | None = None
    language_a: str | None = None
    language_b: str | None = None

    def __post_init__(self) -> None:
        if self.type == "one_way":
            if not self.target_language:
                raise ConfigurationError("one_way translation requires target_language")
        elif self.type == "two_way":
            if not self.language_a or not self.language_b:
                raise ConfigurationError("two_way translation requires language_a and language_b")
        else:
            raise ConfigurationError(f"Invalid translation type: {self.type!r}")

    def to_dict(self) -> dict[str, Any]:
        if self.type == "one_way":
            return {"type": "one_way", "target_language": self.target_language}
        return {"type": "two_way", "language_a": self.language_a, "language_b": self.language_b}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TranslationConfig:
        return cls(
            type=data.get("type", "one_way"),
            target_language=data.get("target_language"),
            language_a=data.get("language_a"),
            language_b=data.get("language_b"),
        )


@dataclass(slots=True)
class TranscriptionContext:
    """Extra context that improves recognition accuracy.

    Attributes:
        general: Key/value pairs (domain, topic, participant names).
        text: Free-form background text.
        terms: Uncommon words to recognize.
        translation_terms: ``{"source": ..., "target": ...}`` pairs.
    """

    general: list[dict[str, str]] = field(default_factory=list)
    text: str | None = None
    terms: list[str] = field(default_factory=list)
    translation_terms: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.general:
            result["general"] = [dict(entry) for entry in self.general]
        if self.text:
            result["text"] = self.text
        if self.terms:
            result["terms"] = list(self.terms)
        if self.translation_terms:
            result["translation_terms"] = [dict(entry) for entry in self.translation_terms]
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TranscriptionContext:
        return cls(
            general=list(data.get("general") or []),
            text=data.get("text"),
            terms=list(data.get("terms") or []),
            translation_terms=list(data.get("translation_terms") or []),
        )


@dataclass(slots=True)
class SttSessionConfig:
    """Session configuration sent to the service when the stream opens.

    Attributes:
        model: Speech-to-text model.
        audio_format: Audio format, or "auto" for container formats.
        sample_rate: Sample rate in Hz (raw PCM formats).
        num_channels: Channel count (raw PCM formats).
        language_hints: Expected language codes.
        language_hints_strict: Bias recognition strongly toward the hints.
        enable_speaker_diarization: Label tokens with speakers.
        enable_language_identification: Label tokens with languages.
        enable_endpoint_detection: Emit ``<end>`` tokens at utterance ends.
        client_reference_id: Tracking identifier (max 256 chars).
        context: Recognition context.
        translation: Translation settings.
    """

    model: str = DEFAULT_MODEL
    audio_format: str = "auto"
    sample_rate: int | None = None
    num_channels: int | None = None
    language_hints: list[str] | None = None
    language_hints_strict: bool | None = None
    enable_speaker_diarization: bool | None = None
    enable_language_identification: bool | None = None
    enable_endpoint_detection: bool | None = None
    client_reference_id: str | None = None
    context: TranscriptionContext | None = None
    translation: TranslationConfig | None = None

    def __post_init__(self) -> None:
        if not self.model:
            raise ConfigurationError("model must be a non-empty string")
        if self.sample_rate is not None:
            _positive("sample_rate", self.sample_rate)
        if self.num_channels is not None:
            _positive("num_channels", self.num_channels)
        if self.client_reference_id is not None and len(self.client_reference_id) > 256:
            raise ConfigurationError("client_reference_id must be at most 256 characters")
        if self.audio_format.startswith("pcm_") and self.sample_rate is None:
            logger.warning("audio_format %s usually requires sample_rate", self.audio_format)

    def to_message(self, api_key: str) -> dict[str, Any]:
        """Build the configuration frame; unset fields are omitted."""
        message: dict[str, Any] = {"api_key": api_key}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, (TranscriptionContext, TranslationConfig)):
                value = value.to_dict()
            message[f.name] = value
        return message

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SttSessionConfig:
        """Create from a dictionary; unknown keys raise ConfigurationError."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown session config keys: {unknown}")
        values = dict(data)
        if isinstance(values.get("context"), dict):
            values["context"] = TranscriptionContext.from_dict(values["context"])
        if isinstance(values.get("translation"), dict):
            values["translation"] = TranslationConfig.from_dict(values["translation"])
        return cls(**values)


# =============================================================================
# Client-side options
# =============================================================================


@dataclass(slots=True)
class SessionOptions:
    """Client-side session behavior (never sent to the service).

    Attributes:
        keepalive: Send keepalive frames while connected, not only when paused.
        keepalive_interval_sec: Interval between keepalive frames.
        connect_timeout_sec: Maximum time to establish the stream.
        signal: Abort signal canceling the session.
        strict_send: Raise StateError when audio is sent outside the
            connected state; when False such chunks are dropped.
    """

    keepalive: bool = False
    keepalive_interval_sec: float = DEFAULT_KEEPALIVE_INTERVAL_SEC
    connect_timeout_sec: float | None = DEFAULT_CONNECT_TIMEOUT_SEC
    signal: AbortSignal | None = None
    strict_send: bool = True

    def __post_init__(self) -> None:
        _positive("keepalive_interval_sec", self.keepalive_interval_sec)
        if self.connect_timeout_sec is not None:
            _positive("connect_timeout_sec", self.connect_timeout_sec)

    def merged(self, **overrides: Any) -> SessionOptions:
        """Return a copy with non-None overrides applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return SessionOptions(**values)


@dataclass(slots=True)
class ClientSettings:
    """Defaults for :class:`realtime_stt.client.RealtimeClient`.

    Attributes:
        ws_url: WebSocket endpoint.
        api_key: Literal API key (usually a temporary key).
        model: Default model for the CLI.
        buffer_queue_size: Chunks buffered before the session connects.
        keepalive_interval_sec: Default keepalive interval.
        connect_timeout_sec: Default connect timeout.
    """

    ws_url: str = DEFAULT_WS_URL
    api_key: str | None = None
    model: str = DEFAULT_MODEL
    buffer_queue_size: int = DEFAULT_BUFFER_QUEUE_SIZE
    keepalive_interval_sec: float = DEFAULT_KEEPALIVE_INTERVAL_SEC
    connect_timeout_sec: float = DEFAULT_CONNECT_TIMEOUT_SEC

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError if any value is out of range."""
        if not self.ws_url.startswith(("ws://", "wss://")):
            raise ConfigurationError(f"ws_url must start with ws:// or wss://, got {self.ws_url!r}")
        if isinstance(self.buffer_queue_size, bool) or not isinstance(self.buffer_queue_size, int):
            raise ConfigurationError("buffer_queue_size must be an integer")
        _positive("buffer_queue_size", self.buffer_queue_size)
        _positive("keepalive_interval_sec", self.keepalive_interval_sec)
        _positive("connect_timeout_sec", self.connect_timeout_sec)
        if not self.model:
            raise ConfigurationError("model must be a non-empty string")

    def session_options(self) -> SessionOptions:
        return SessionOptions(
            keepalive_interval_sec=self.keepalive_interval_sec,
            connect_timeout_sec=self.connect_timeout_sec,
        )

    @classmethod
    def from_env(cls, prefix: str = "REALTIME_STT_") -> ClientSettings:
        """
        Load settings from environment variables.

        Environment variables:
            - {prefix}WS_URL -> ws_url
            - {prefix}API_KEY -> api_key
            - {prefix}MODEL -> model
            - {prefix}BUFFER_QUEUE_SIZE -> buffer_queue_size
            - {prefix}KEEPALIVE_INTERVAL_SEC -> keepalive_interval_sec
            - {prefix}CONNECT_TIMEOUT_SEC -> connect_timeout_sec

        Raises:
            ConfigurationError: If a variable holds an invalid value.
        """
        return cls(**cls._env_values(prefix))

    @classmethod
    def from_file(cls, path: str | Path) -> ClientSettings:
        """Load settings from a JSON file.

        Raises:
            ConfigurationError: If the file is missing, malformed, or has unknown keys.
        """
        return cls(**cls._file_values(path))

    @classmethod
    def load(
        cls,
        config_file: str | Path | None = None,
        prefix: str = "REALTIME_STT_",
        **overrides: Any,
    ) -> ClientSettings:
        """Merge defaults < env vars < config file < explicit overrides (None skipped)."""
        values = cls._env_values(prefix)
        if config_file is not None:
            values.update(cls._file_values(config_file))
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def _env_values(cls, prefix: str) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if ws_url := os.getenv(f"{prefix}WS_URL"):
            values["ws_url"] = ws_url
        if api_key := os.getenv(f"{prefix}API_KEY"):
            values["api_key"] = api_key
        if model := os.getenv(f"{prefix}MODEL"):
            values["model"] = model

        numeric: list[tuple[str, type]] = [
            ("buffer_queue_size", int),
            ("keepalive_interval_sec", float),
            ("connect_timeout_sec", float),
        ]
        for name, convert in numeric:
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is None or raw == "":
                continue
            try:
                values[name] = convert(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid {prefix}{name.upper()}: {raw!r}") from e
        return values

    @classmethod
    def _file_values(cls, path: str | Path) -> dict[str, Any]:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a JSON object")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys in {config_path}: {unknown}")
        logger.debug("Loaded client settings from %s", config_path)
        return data


__all__ = [
    "DEFAULT_WS_URL",
    "DEFAULT_MODEL",
    "DEFAULT_BUFFER_QUEUE_SIZE",
    "DEFAULT_KEEPALIVE_INTERVAL_SEC",
    "DEFAULT_CONNECT_TIMEOUT_SEC",
    "TranslationConfig",
    "TranscriptionContext",
    "SttSessionConfig",
    "SessionOptions",
    "ClientSettings",
]
