"""Adapter between the device shell and the core.

The mobile shell owns the OS permission dialogs and the push SDK. It reports
their answers here, and the token manager reads them through the
NotificationPermissions / PushTokenSource protocols.
"""

from typing import Optional, Protocol

from schemas import PermissionResult


class NotificationPermissions(Protocol):
    async def request_os_permission(self) -> PermissionResult:
        ...

    async def request_push_permission(self) -> PermissionResult:
        ...


class PushTokenSource(Protocol):
    async def get_token(self) -> Optional[str]:
        ...


class DevicePlatformBridge:
    """Holds the last permission answers and token reported by the shell."""

    def __init__(self, os_granted: bool = True, push_granted: bool = True):
        self._os_permission = PermissionResult(granted=os_granted)
        self._push_permission = PermissionResult(granted=push_granted)
        self._token: Optional[str] = None

    def report_permissions(self, os_granted: bool, push_granted: bool, reason: str = "") -> None:
        self._os_permission = PermissionResult(granted=os_granted, reason=reason)
        self._push_permission = PermissionResult(granted=push_granted, reason=reason)

    def report_token(self, token: Optional[str]) -> None:
        self._token = token

    async def request_os_permission(self) -> PermissionResult:
        return self._os_permission

    async def request_push_permission(self) -> PermissionResult:
        return self._push_permission

    async def get_token(self) -> Optional[str]:
        return self._token
