"""API key configuration and resolution.

A recording accepts either a literal key or a zero-argument callable that
fetches a fresh (typically temporary) key, sync or async:

    async def fetch_key() -> str:
        return await my_backend.create_temporary_key()

    client = RealtimeClient(api_key=fetch_key)

The callable is invoked once per recording attempt.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Union

from .exceptions import CredentialError

ApiKeyConfig = Union[str, Callable[[], Union[str, Awaitable[str]]]]


async def resolve_api_key(config: ApiKeyConfig) -> str:
    """Resolve an :data:`ApiKeyConfig` to a key string.

    Raises:
        CredentialError: If the config is neither a non-empty string nor a
            callable producing one.
        Exception: Whatever the fetch callable raises is propagated unchanged.
    """
    if callable(config):
        key = config()
        if inspect.isawaitable(key):
            key = await key
        if not isinstance(key, str) or not key:
            raise CredentialError("api_key function must return a non-empty string")
        return key

    if not isinstance(config, str) or not config:
        raise CredentialError("api_key must be a non-empty string")
    return config


__all__ = ["ApiKeyConfig", "resolve_api_key"]
