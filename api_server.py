"""FastAPI facade over the reminder pipeline.

The UI layer calls these endpoints; the device shell also reports its
notification permissions and push token refreshes here.
"""

from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

import crud
from exceptions import BackendError, InvalidTime, NotFound, StorageError, TokenUnavailable
from logger_config import setup_logger
from main import ReminderServices, build_services
from schemas import (
    CancelResult,
    ConversationReply,
    FeatureToggles,
    MessageRequest,
    PermissionReport,
    ReminderRecord,
    ReminderStats,
    RemoteReminderStatus,
    ScheduleRequest,
    SchedulingResult,
    TokenRefreshRequest,
)

logger = setup_logger(__name__, 'api.log')


def create_app(services: Optional[ReminderServices] = None) -> FastAPI:
    """Build the facade.

    Args:
        services: Pre-built services (tests); built from settings otherwise
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services or build_services()
        yield
        if owned:
            await app.state.services.aclose()

    app = FastAPI(
        title="Reminder Pipeline API",
        description="Reminder scheduling with push delivery and local fallback",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=500, content={"detail": exc.message})

    @app.exception_handler(BackendError)
    async def backend_error_handler(request: Request, exc: BackendError):
        return JSONResponse(status_code=502, content={"detail": exc.message, "status": exc.status})

    _register_routes(app)
    return app


def get_services(request: Request) -> ReminderServices:
    return request.app.state.services


def _register_routes(app: FastAPI) -> None:

    @app.get("/")
    def root():
        """Root endpoint - service information"""
        return {
            "service": "Reminder Pipeline API",
            "version": "1.0.0",
            "status": "healthy",
        }

    @app.get("/health")
    async def health_check(services: ReminderServices = Depends(get_services)):
        """Health check endpoint for monitoring"""
        try:
            await services.backend.check_health()
            backend_status = "up"
        except BackendError:
            backend_status = "down"
        return {
            "status": "healthy",
            "backend": backend_status,
            "push_ready": services.scheduler.is_ready(),
            "storage": services.settings.DATABASE_URL.split("://")[0],
        }

    @app.post("/messages", response_model=ConversationReply)
    async def post_message(body: MessageRequest, services: ReminderServices = Depends(get_services)):
        """Route one user utterance to the reminder path or to chat."""
        return await services.router.handle_message(body.text)

    @app.post("/reminders", response_model=SchedulingResult, status_code=201)
    async def create_reminder(body: ScheduleRequest, services: ReminderServices = Depends(get_services)):
        try:
            return await services.scheduler.schedule(body.text, body.time, body.confidence)
        except InvalidTime as e:
            raise HTTPException(status_code=400, detail=e.message)

    @app.get("/reminders", response_model=List[ReminderRecord])
    async def list_reminders(services: ReminderServices = Depends(get_services)):
        """Active reminders. Expired ones are evicted by this call."""
        return await services.scheduler.list_reminders()

    @app.get("/reminders/stats", response_model=ReminderStats)
    async def reminder_stats(services: ReminderServices = Depends(get_services)):
        return await services.scheduler.get_stats()

    @app.get("/reminders/{reminder_id}/status", response_model=RemoteReminderStatus)
    async def reminder_status(reminder_id: str, services: ReminderServices = Depends(get_services)):
        try:
            return await services.scheduler.get_remote_status(reminder_id)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=e.message)

    @app.delete("/reminders/{reminder_id}", response_model=CancelResult)
    async def cancel_reminder(reminder_id: str, services: ReminderServices = Depends(get_services)):
        try:
            return await services.scheduler.cancel(reminder_id)
        except NotFound:
            raise HTTPException(status_code=404, detail="Reminder not found")

    @app.post("/device/permissions")
    def report_permissions(body: PermissionReport, services: ReminderServices = Depends(get_services)):
        services.platform.report_permissions(body.os_granted, body.push_granted, body.reason)
        return {"os_granted": body.os_granted, "push_granted": body.push_granted}

    @app.post("/device/token")
    async def refresh_token(body: TokenRefreshRequest, services: ReminderServices = Depends(get_services)):
        """Token handed out (or refreshed) by the push SDK."""
        services.platform.report_token(body.token)
        registered = await services.token_manager.on_refresh(body.token)
        return {"registered": registered}

    @app.post("/device/initialize")
    async def initialize_device(services: ReminderServices = Depends(get_services)):
        ready = await services.scheduler.initialize()
        return {
            "push_ready": ready,
            "permission_denied": services.token_manager.permission_denied,
        }

    @app.post("/device/test-notification")
    async def test_notification(services: ReminderServices = Depends(get_services)):
        try:
            remote_id = await services.scheduler.send_test_notification()
        except TokenUnavailable as e:
            raise HTTPException(status_code=409, detail=e.message)
        return {"scheduled": True, "remote_id": remote_id}

    @app.get("/debug")
    async def debug_info(services: ReminderServices = Depends(get_services)):
        return await services.scheduler.get_debug_info()

    @app.get("/history")
    async def get_history(services: ReminderServices = Depends(get_services)):
        return await crud.get_conversation_history(services.storage)

    @app.delete("/history")
    async def clear_history(services: ReminderServices = Depends(get_services)):
        await crud.clear_conversation_history(services.storage)
        remote_cleared = True
        try:
            await services.backend.clear_history(crud.current_user_id(services.storage))
        except BackendError as e:
            logger.warning(f"Backend history not cleared: {e}")
            remote_cleared = False
        return {"cleared": True, "remote_cleared": remote_cleared}

    @app.get("/settings", response_model=FeatureToggles)
    def get_settings(services: ReminderServices = Depends(get_services)):
        return FeatureToggles(
            web_search_enabled=services.storage.get_web_search_enabled(),
            auto_play_audio=services.storage.get_auto_play_audio(),
        )

    @app.put("/settings", response_model=FeatureToggles)
    def update_settings(body: FeatureToggles, services: ReminderServices = Depends(get_services)):
        if body.web_search_enabled is not None:
            services.storage.set_web_search_enabled(body.web_search_enabled)
        if body.auto_play_audio is not None:
            services.storage.set_auto_play_audio(body.auto_play_audio)
        return get_settings(services)


if __name__ == "__main__":
    import uvicorn
    from config import settings

    uvicorn.run(
        create_app(),
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info"
    )
