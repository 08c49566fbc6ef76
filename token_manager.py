"""Delivery token lifecycle.

Owns the device's push token: permission flow, acquisition, caching,
refresh handling and registration with the push backend.

The cached token is only ever replaced under self._lock, and a registration
result is applied only if the token it was sent for is still current, so a
refresh that lands while a registration is in flight always wins.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

import crud
from api_client import BackendClient
from config import Settings, settings as default_settings
from database import KeyValueStorage, StorageKeys
from exceptions import BackendError, PermissionDenied, TokenUnavailable
from logger_config import setup_logger, mask_token
from platform_bridge import NotificationPermissions, PushTokenSource
from schemas import DeliveryToken, DeviceRegistration, Platform

logger = setup_logger(__name__, 'tokens.log')

# Android 13 (API 33) introduced the runtime POST_NOTIFICATIONS permission
ANDROID_RUNTIME_PERMISSION_LEVEL = 33


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeliveryTokenManager:
    """Single owner of the current delivery token.

    Args:
        storage: Key-value storage used to cache the token
        backend: Backend client for device registration
        permissions: Device notification permission system
        token_source: Push SDK handing out tokens
        settings: Application settings
        clock: Returns the current instant
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        backend: BackendClient,
        permissions: NotificationPermissions,
        token_source: PushTokenSource,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._storage = storage
        self._backend = backend
        self._permissions = permissions
        self._token_source = token_source
        self._settings = settings or default_settings
        self._clock = clock or utc_now
        self._lock = asyncio.Lock()
        self._token: Optional[DeliveryToken] = None
        self._initialized = False
        self._permission_denied: Optional[PermissionDenied] = None

    @property
    def platform(self) -> Platform:
        return Platform.from_name(self._settings.DEVICE_PLATFORM)

    @property
    def permission_denied(self) -> bool:
        return self._permission_denied is not None

    def requires_os_permission(self) -> bool:
        """Newer Android asks for the OS-level grant before the push service one."""
        return (
            self.platform == Platform.ANDROID
            and self._settings.DEVICE_PLATFORM_VERSION >= ANDROID_RUNTIME_PERMISSION_LEVEL
        )

    async def request_permission(self) -> None:
        """Run the permission flow.

        Raises:
            PermissionDenied: Either step refused. No retry for this session.
        """
        if self._permission_denied is not None:
            raise self._permission_denied

        if self.requires_os_permission():
            os_result = await self._permissions.request_os_permission()
            if not os_result.granted:
                self._deny(os_result.reason or "Please enable notifications in Settings to receive reminders.")

        push_result = await self._permissions.request_push_permission()
        if not push_result.granted:
            self._deny(push_result.reason or "Notification permissions are required for reminders to work.")

        logger.info("Notification permissions granted")

    def _deny(self, reason: str) -> None:
        self._permission_denied = PermissionDenied(reason)
        logger.warning(f"Notification permission denied: {reason}")
        raise self._permission_denied

    async def initialize(self) -> DeliveryToken:
        """Request permission, acquire a token and register it if it changed.

        Registration failure is not an error here; the device simply stays in
        local-only mode until the next refresh or scheduling attempt.

        Raises:
            PermissionDenied: Permission refused
            TokenUnavailable: The push SDK returned no token
        """
        logger.info("Initializing delivery token manager...")
        await self.request_permission()

        value = await self._token_source.get_token()
        if not value:
            logger.error("Push service did not provide a token")
            raise TokenUnavailable("Failed to get delivery token")

        cached_value = self._storage.get(StorageKeys.FCM_TOKEN)
        was_registered = self._storage.get_flag(StorageKeys.DEVICE_REGISTERED, False)

        async with self._lock:
            registered = cached_value == value and was_registered
            self._token = DeliveryToken(value=value, cached_at=self._clock(), registered=registered)
            self._persist(self._token)
            self._initialized = True

        logger.info(f"Delivery token obtained: {mask_token(value)}")
        if cached_value != value:
            logger.info("Delivery token changed since last run")
        if not registered:
            await self.register_with_backend()
        return self.current_token()

    def current_token(self) -> Optional[DeliveryToken]:
        token = self._token
        return token.model_copy() if token is not None else None

    def is_ready(self) -> bool:
        return self._initialized and self._token is not None and not self.permission_denied

    async def on_refresh(self, new_value: str) -> bool:
        """Platform callback: the push SDK issued a new token.

        Replaces the cached token, marks it unregistered and re-registers.

        Returns:
            bool: Whether re-registration succeeded
        """
        async with self._lock:
            self._token = DeliveryToken(value=new_value, cached_at=self._clock(), registered=False)
            self._persist(self._token)
        logger.info(f"Delivery token refreshed: {mask_token(new_value)}")
        return await self.register_with_backend()

    async def register_with_backend(self) -> bool:
        """Send the current token to the push backend.

        Failures are logged and reported as False, never raised.
        """
        token = self.current_token()
        if token is None:
            logger.warning("No delivery token available for registration")
            return False

        registration = DeviceRegistration(
            fcm_token=token.value,
            platform=self.platform,
            version=self._settings.DEVICE_PLATFORM_VERSION,
            user_id=crud.current_user_id(self._storage),
            timestamp=self._clock(),
        )

        try:
            accepted = await self._backend.register_device(registration)
        except BackendError as e:
            logger.error(f"Backend registration failed: {e}")
            return False

        if not accepted:
            logger.error("Backend registration failed: device not accepted")
            return False

        async with self._lock:
            if self._token is None or self._token.value != token.value:
                logger.info("Token was refreshed during registration, ignoring stale result")
                return False
            self._token = self._token.model_copy(update={"registered": True})
            self._persist(self._token)

        logger.info("Device registered with backend")
        return True

    async def ready_token(self) -> Optional[DeliveryToken]:
        """Token usable for push right now, or None.

        An unregistered token gets exactly one registration attempt here.
        """
        if not self.is_ready():
            return None
        token = self.current_token()
        if token is not None and not token.registered:
            if not await self.register_with_backend():
                return None
            token = self.current_token()
        if token is None or not token.registered:
            return None
        return token

    def _persist(self, token: DeliveryToken) -> None:
        self._storage.set_many({
            StorageKeys.FCM_TOKEN: token.value,
            StorageKeys.FCM_TOKEN_CACHED_AT: token.cached_at.isoformat(),
            StorageKeys.DEVICE_REGISTERED: "true" if token.registered else "false",
        })
