#!/usr/bin/env python3
"""Composition root and entry point.

Every service is constructed exactly once here and handed to its
collaborators; nothing else in the package builds its own dependencies.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from api_client import BackendClient
from config import Settings, settings as default_settings
from database import KeyValueStorage
from intent_router import IntentRouter
from platform_bridge import DevicePlatformBridge
from scheduler import ReminderScheduler
from token_manager import DeliveryTokenManager

logger = logging.getLogger(__name__)


@dataclass
class ReminderServices:
    settings: Settings
    storage: KeyValueStorage
    backend: BackendClient
    platform: DevicePlatformBridge
    token_manager: DeliveryTokenManager
    scheduler: ReminderScheduler
    router: IntentRouter

    async def aclose(self) -> None:
        await self.scheduler.wait_for_pending()
        await self.backend.aclose()
        self.storage.close()


def build_services(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock=None
) -> ReminderServices:
    """Wire the pipeline together.

    Args:
        settings: Application settings (default: module settings)
        transport: Optional httpx transport for the backend client
        clock: Optional "now" provider shared by token manager and scheduler
    """
    settings = settings or default_settings
    storage = KeyValueStorage(settings.DATABASE_URL)
    backend = BackendClient(
        base_url=storage.get_api_url() or settings.API_BASE_URL,
        timeout=settings.REQUEST_TIMEOUT,
        transport=transport
    )
    platform = DevicePlatformBridge()
    token_manager = DeliveryTokenManager(
        storage, backend, platform, platform, settings=settings, clock=clock
    )
    scheduler = ReminderScheduler(storage, backend, token_manager, settings=settings, clock=clock)
    router = IntentRouter(backend, scheduler, storage, settings=settings)
    return ReminderServices(
        settings=settings,
        storage=storage,
        backend=backend,
        platform=platform,
        token_manager=token_manager,
        scheduler=scheduler,
        router=router,
    )


def main():
    """Run the UI-facing API facade."""
    import uvicorn
    from api_server import create_app

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    settings = default_settings
    logger.info("=" * 60)
    logger.info("Reminder delivery pipeline - local API facade")
    logger.info(f"  - Backend: {settings.API_BASE_URL}")
    logger.info(f"  - Facade:  http://{settings.API_HOST}:{settings.API_PORT}")
    logger.info("=" * 60)

    uvicorn.run(
        create_app(),
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info"
    )


if __name__ == "__main__":
    main()
