"""HTTP client for the assistant backend.

Covers intent classification, chat, and the push endpoints used by the
reminder pipeline. Every failure (timeout, unreachable server, non-2xx,
undecodable body) surfaces as BackendError.
"""

import re
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from config import settings
from exceptions import BackendError
from logger_config import setup_logger, mask_token
from schemas import (
    ChatReply,
    DeviceRegistration,
    IntentClassification,
    RemoteReminderStatus,
    ScheduleReminderRequest,
)

logger = setup_logger(__name__, 'api_client.log')

CHAT_PATH = "/api/chat/"
INTENT_CLASSIFY_PATH = "/intent/classify"
HEALTH_PATH = "/health"
REGISTER_DEVICE_PATH = "/firebase/register-device"
SCHEDULE_REMINDER_PATH = "/firebase/schedule-reminder"
CANCEL_REMINDER_PATH = "/firebase/cancel-reminder"

INTELLIGENT_ROUTING_KEYWORDS = (
    # Math calculations
    'calculate', 'math', 'percent', '%', 'multiply', 'divide', 'add', 'subtract',
    'square root', 'power', '+', '-', '*', '/',
    # Device control
    'turn on', 'turn off', 'lights', 'thermostat', 'temperature',
    # Reminders
    'remind me', 'set alarm', 'wake me up',
)
INTELLIGENT_ROUTING_PATTERNS = (
    re.compile(r"\d+\s*[+\-*/]\s*\d+"),
    re.compile(r"\d+%"),
    re.compile(r"what.*\d+.*\d+"),
)


def should_use_intelligent_routing(text: str) -> bool:
    """Whether the backend should route this chat message to its tools."""
    lowered = text.lower()
    if any(keyword in lowered for keyword in INTELLIGENT_ROUTING_KEYWORDS):
        return True
    return any(pattern.search(lowered) for pattern in INTELLIGENT_ROUTING_PATTERNS)


class BackendClient:
    """Async client for the assistant backend.

    Args:
        base_url: Backend base URL (default: settings.API_BASE_URL)
        timeout: Per-request timeout in seconds (default: settings.REQUEST_TIMEOUT)
        transport: Optional httpx transport, e.g. httpx.MockTransport in tests
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url or settings.API_BASE_URL
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        logger.info(f"Backend client initialized with base URL: {self.base_url}")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=payload)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling {method} {path}")
            raise BackendError("Request to server timed out.", status=0, path=path) from e
        except httpx.RequestError as e:
            logger.error(f"Network error calling {method} {path}: {str(e)}")
            raise BackendError(
                "Cannot connect to server. Please check your connection and API URL.",
                status=0,
                path=path
            ) from e

        if response.status_code >= 400:
            message = "Server error"
            try:
                body = response.json()
                if isinstance(body, dict):
                    message = body.get("detail") or body.get("message") or message
            except ValueError:
                pass
            logger.error(
                f"{method} {path} failed. Status: {response.status_code}, "
                f"Response: {response.text[:200]}"
            )
            raise BackendError(str(message), status=response.status_code, path=path)

        try:
            return response.json()
        except ValueError as e:
            logger.error(f"{method} {path} returned a non-JSON body")
            raise BackendError("Malformed server response", status=response.status_code, path=path) from e

    # Conversation ----------------------------------------------------------

    async def classify_intent(self, user_id: str, text: str) -> IntentClassification:
        """POST /intent/classify"""
        data = await self._request("POST", INTENT_CLASSIFY_PATH, {
            "user_id": user_id or settings.DEFAULT_USER_ID,
            "text": text,
        })
        try:
            return IntentClassification.model_validate(data)
        except ValidationError as e:
            raise BackendError("Malformed intent response", status=200, path=INTENT_CLASSIFY_PATH) from e

    async def send_message(self, user_id: str, text: str, use_web_search: bool = True) -> ChatReply:
        """POST /api/chat/"""
        data = await self._request("POST", CHAT_PATH, {
            "user_id": user_id or settings.DEFAULT_USER_ID,
            "text": text,
            "use_web_search": use_web_search,
            "include_context": True,
            "use_intelligent_routing": should_use_intelligent_routing(text),
        })
        try:
            return ChatReply.model_validate(data)
        except ValidationError as e:
            raise BackendError("Malformed chat response", status=200, path=CHAT_PATH) from e

    async def clear_history(self, user_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"{CHAT_PATH}history/{user_id}")

    async def check_health(self) -> Dict[str, Any]:
        return await self._request("GET", HEALTH_PATH)

    # Push delivery -----------------------------------------------------------

    async def register_device(self, registration: DeviceRegistration) -> bool:
        """POST /firebase/register-device

        Returns:
            bool: Whether the backend accepted the token
        """
        logger.info(f"Registering device token {mask_token(registration.fcm_token)}")
        data = await self._request(
            "POST",
            REGISTER_DEVICE_PATH,
            registration.model_dump(mode="json", by_alias=True)
        )
        return bool(isinstance(data, dict) and data.get("success"))

    async def schedule_reminder(self, request: ScheduleReminderRequest) -> str:
        """POST /firebase/schedule-reminder

        Returns:
            str: Remote id of the scheduled push

        Raises:
            BackendError: When the call fails or the backend refuses the reminder
        """
        data = await self._request("POST", SCHEDULE_REMINDER_PATH, request.to_payload())
        if not isinstance(data, dict) or not data.get("success"):
            error = data.get("error") if isinstance(data, dict) else None
            raise BackendError(error or "Backend scheduling failed", status=200, path=SCHEDULE_REMINDER_PATH)
        remote_id = data.get("remoteId")
        if not remote_id:
            raise BackendError("Backend did not return a remote id", status=200, path=SCHEDULE_REMINDER_PATH)
        return str(remote_id)

    async def cancel_reminder(self, remote_id: str, fcm_token: Optional[str], user_id: str) -> bool:
        """POST /firebase/cancel-reminder"""
        data = await self._request("POST", CANCEL_REMINDER_PATH, {
            "remoteId": remote_id,
            "fcmToken": fcm_token,
            "userId": user_id,
        })
        return bool(isinstance(data, dict) and data.get("success"))

    async def get_reminder_status(self, remote_id: str) -> RemoteReminderStatus:
        """GET /firebase/reminder-status/{id}"""
        data = await self._request("GET", f"/firebase/reminder-status/{remote_id}")
        if not isinstance(data, dict):
            raise BackendError("Malformed status response", status=200)
        return RemoteReminderStatus(
            remote_id=remote_id,
            status=data.get("status"),
            details=data,
        )
