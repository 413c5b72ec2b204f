"""Tests for permission resolvers."""

from __future__ import annotations

import pytest

from realtime_stt.permissions import (
    PermissionResolver,
    PermissionResult,
    PermissionStatus,
    PermissionType,
    StaticPermissionResolver,
)


class TestStaticPermissionResolver:
    """Tests for StaticPermissionResolver."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(StaticPermissionResolver(), PermissionResolver)

    @pytest.mark.asyncio
    async def test_granted_by_default(self) -> None:
        result = await StaticPermissionResolver().check(PermissionType.MICROPHONE)
        assert result == PermissionResult(PermissionStatus.GRANTED, can_request=False)
        assert result.granted

    @pytest.mark.asyncio
    async def test_denied_permanently(self) -> None:
        resolver = StaticPermissionResolver(PermissionStatus.DENIED, can_request=False)

        result = await resolver.request(PermissionType.MICROPHONE)

        assert not result.granted
        assert result.status is PermissionStatus.DENIED
        assert result.can_request is False

    @pytest.mark.asyncio
    async def test_accepts_string_values(self) -> None:
        resolver = StaticPermissionResolver("prompt", can_request=True)  # type: ignore[arg-type]

        result = await resolver.check("microphone")  # type: ignore[arg-type]

        assert result.status is PermissionStatus.PROMPT
        assert result.can_request

    @pytest.mark.asyncio
    async def test_unknown_permission_type(self) -> None:
        with pytest.raises(ValueError):
            await StaticPermissionResolver().check("camera")  # type: ignore[arg-type]
