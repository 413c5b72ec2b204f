"""Client entry point.

:class:`RealtimeClient` holds the endpoint, credential and defaults, and
creates recordings (audio source + session) or bare sessions:

    client = RealtimeClient(api_key=fetch_temporary_key)

    # High-level: stream an audio source
    recording = client.record(SttSessionConfig(), FileAudioSource("call.wav"))
    recording.on("result", lambda result: print(result.text))
    await recording.stop()

    # Low-level: drive the session directly
    session = client.stt(SttSessionConfig(), api_key=key)
    await session.connect()
"""

from __future__ import annotations

import logging

from .abort import AbortSignal
from .audio import AudioSource
from .auth import ApiKeyConfig
from .config import DEFAULT_BUFFER_QUEUE_SIZE, DEFAULT_WS_URL, ClientSettings, SessionOptions, SttSessionConfig
from .exceptions import ConfigurationError, CredentialError
from .permissions import PermissionResolver
from .recording import Recording
from .session import Connector, RealtimeSttSession

logger = logging.getLogger(__name__)


def _merge_options(base: SessionOptions | None, override: SessionOptions | None) -> SessionOptions | None:
    if override is None:
        return base
    if base is None:
        return override
    # Explicit per-call options win; the base only fills the abort signal.
    if override.signal is None and base.signal is not None:
        return override.merged(signal=base.signal)
    return override


class RealtimeClient:
    """Factory for recordings and sessions sharing one configuration.

    Args:
        api_key: API key, or a zero-argument callable (sync or async)
            returning one. Called once per recording.
        ws_url: WebSocket endpoint.
        permissions: Optional permission resolver for pre-flight checks.
        buffer_queue_size: Default chunk limit buffered before connecting.
        default_session_options: Session options applied to every session.
        connector: Transport factory (tests inject an in-memory one).
    """

    def __init__(
        self,
        api_key: ApiKeyConfig,
        ws_url: str = DEFAULT_WS_URL,
        permissions: PermissionResolver | None = None,
        buffer_queue_size: int = DEFAULT_BUFFER_QUEUE_SIZE,
        default_session_options: SessionOptions | None = None,
        connector: Connector | None = None,
    ) -> None:
        self._api_key = api_key
        self.ws_url = ws_url
        self._permissions = permissions
        self.buffer_queue_size = buffer_queue_size
        self.default_session_options = default_session_options
        self._connector = connector

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        api_key: ApiKeyConfig | None = None,
        permissions: PermissionResolver | None = None,
        connector: Connector | None = None,
    ) -> RealtimeClient:
        """Create a client from loaded settings.

        Raises:
            CredentialError: If neither ``api_key`` nor ``settings.api_key`` is set.
        """
        key = api_key if api_key is not None else settings.api_key
        if not key:
            raise CredentialError("No API key configured (set REALTIME_STT_API_KEY or pass api_key)")
        return cls(
            api_key=key,
            ws_url=settings.ws_url,
            permissions=permissions,
            buffer_queue_size=settings.buffer_queue_size,
            default_session_options=settings.session_options(),
            connector=connector,
        )

    @property
    def permissions(self) -> PermissionResolver | None:
        """Permission resolver, if configured."""
        return self._permissions

    def record(
        self,
        config: SttSessionConfig,
        source: AudioSource,
        signal: AbortSignal | None = None,
        buffer_queue_size: int | None = None,
        session_options: SessionOptions | None = None,
    ) -> Recording:
        """Start a recording.

        Returns immediately so listeners can be attached before any audio,
        credential or network work begins. Must be called inside a running
        event loop.

        Raises:
            ConfigurationError: If no audio source is given.
        """
        if source is None:
            raise ConfigurationError("An audio source is required to record")

        options = _merge_options(self.default_session_options, session_options)
        logger.debug("Creating recording for %s", self.ws_url)
        return Recording(
            self._api_key,
            self.ws_url,
            config,
            source,
            buffer_queue_size=buffer_queue_size or self.buffer_queue_size,
            session_options=options,
            signal=signal,
            connector=self._connector,
        )

    def stt(
        self,
        config: SttSessionConfig,
        api_key: str,
        session_options: SessionOptions | None = None,
    ) -> RealtimeSttSession:
        """Create a low-level session with an already-resolved key."""
        options = _merge_options(self.default_session_options, session_options)
        return RealtimeSttSession(api_key, self.ws_url, config, options, connector=self._connector)


__all__ = ["RealtimeClient"]
