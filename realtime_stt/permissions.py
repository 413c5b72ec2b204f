"""Audio permission checks.

Platforms that gate microphone access (desktop sandboxes, mobile shells)
implement :class:`PermissionResolver`. Headless environments, where no prompt
exists, use :class:`StaticPermissionResolver`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class PermissionStatus(str, Enum):
    """Permission status across platforms."""

    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"
    UNAVAILABLE = "unavailable"


class PermissionType(str, Enum):
    """Permission types a resolver understands."""

    MICROPHONE = "microphone"


@dataclass(frozen=True, slots=True)
class PermissionResult:
    """Result of a permission check or request.

    Attributes:
        status: Current permission status.
        can_request: Whether the user can be prompted again; False means the
            permission was denied permanently and must be changed in settings.
    """

    status: PermissionStatus
    can_request: bool

    @property
    def granted(self) -> bool:
        return self.status is PermissionStatus.GRANTED


@runtime_checkable
class PermissionResolver(Protocol):
    """Platform-specific permission lookup."""

    async def check(self, permission: PermissionType) -> PermissionResult:
        """Return the current status without prompting the user."""
        ...

    async def request(self, permission: PermissionType) -> PermissionResult:
        """Ask the user for permission; a no-op when already granted."""
        ...


class StaticPermissionResolver:
    """Resolver that always reports the same status."""

    def __init__(
        self,
        status: PermissionStatus = PermissionStatus.GRANTED,
        can_request: bool = False,
    ) -> None:
        self.status = PermissionStatus(status)
        self.can_request = can_request

    async def check(self, permission: PermissionType) -> PermissionResult:
        PermissionType(permission)
        return PermissionResult(self.status, self.can_request)

    async def request(self, permission: PermissionType) -> PermissionResult:
        return await self.check(permission)


__all__ = [
    "PermissionStatus",
    "PermissionType",
    "PermissionResult",
    "PermissionResolver",
    "StaticPermissionResolver",
]
