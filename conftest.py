"""Shared fixtures: scripted backend, in-memory storage, controllable clock."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from config import Settings
from database import KeyValueStorage
from main import build_services

FIXED_NOW = datetime(2026, 3, 10, 15, 0, 0, tzinfo=timezone.utc)


class Clock:
    """Callable "now" that tests can move forward."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeBackend:
    """Scripted assistant backend served through httpx.MockTransport.

    fail_paths maps a path to an HTTP status code, or to "network" for a
    connection error. gates maps a path to an asyncio.Event the handler waits
    on before answering.
    """

    def __init__(self):
        self.requests: List[Tuple[str, str, Any]] = []
        self.intent: Dict[str, Any] = {"success": True, "intent": "CHAT", "time": None, "confidence": 0.3}
        self.chat_response: Dict[str, Any] = {"response": "Hello there!", "tokens_used": 12, "web_search_used": False}
        self.register_success = True
        self.schedule_success = True
        self.cancel_success = True
        self.fail_paths: Dict[str, Any] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self._remote_counter = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def bodies(self, path: str) -> List[Any]:
        return [body for _, request_path, body in self.requests if request_path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        gate = self.gates.get(path)
        if gate is not None:
            await gate.wait()

        failure = self.fail_paths.get(path)
        if failure == "network":
            raise httpx.ConnectError("backend unreachable", request=request)
        if failure:
            return httpx.Response(failure, json={"detail": "backend exploded"})

        if path == "/intent/classify":
            return httpx.Response(200, json=self.intent)
        if path == "/api/chat/":
            return httpx.Response(200, json=self.chat_response)
        if path == "/firebase/register-device":
            return httpx.Response(200, json={"success": self.register_success})
        if path == "/firebase/schedule-reminder":
            if not self.schedule_success:
                return httpx.Response(200, json={"success": False, "error": "token rejected"})
            self._remote_counter += 1
            return httpx.Response(200, json={"success": True, "remoteId": f"remote-{self._remote_counter}"})
        if path == "/firebase/cancel-reminder":
            return httpx.Response(200, json={"success": self.cancel_success})
        if path.startswith("/firebase/reminder-status/"):
            return httpx.Response(200, json={"status": "scheduled", "deliverAt": "2026-03-10T15:10:00Z"})
        if path.startswith("/api/chat/history/"):
            return httpx.Response(200, json={"cleared": True})
        if path == "/health":
            return httpx.Response(200, json={"status": "healthy"})
        return httpx.Response(404, json={"detail": "Not Found"})


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": "sqlite://",
        "API_BASE_URL": "http://backend.test",
        "PUSH_SCHEDULE_TIMEOUT": 5.0,
        "DEVICE_PLATFORM": "android",
        "DEVICE_PLATFORM_VERSION": 34,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def storage() -> KeyValueStorage:
    storage = KeyValueStorage("sqlite://")
    storage.set_user_id("user-42")
    yield storage
    storage.close()


@pytest.fixture
def services(backend, clock):
    services = build_services(make_settings(), transport=backend.transport(), clock=clock)
    services.storage.set_user_id("user-42")
    services.platform.report_token("token-A")
    return services


def make_services(backend: FakeBackend, clock: Clock, user_id: Optional[str] = "user-42", **overrides):
    services = build_services(make_settings(**overrides), transport=backend.transport(), clock=clock)
    if user_id:
        services.storage.set_user_id(user_id)
    services.platform.report_token("token-A")
    return services
