"""Tests for routing utterances between reminders and chat."""

import asyncio

import pytest

import crud
from exceptions import BackendError
from schemas import DeliveryMethod, IntentClassification, RouteDecision

CLASSIFY = "/intent/classify"
CHAT = "/api/chat/"


def reminder_intent(confidence=0.9, time="10 minutes"):
    return {"success": True, "intent": "REMINDER", "time": time, "confidence": confidence}


@pytest.mark.parametrize("confidence, expected", [
    (0.79, RouteDecision.CHAT),
    (0.8, RouteDecision.REMINDER),
    (0.95, RouteDecision.REMINDER),
])
def test_confidence_threshold_is_inclusive(services, backend, confidence, expected):
    backend.intent = reminder_intent(confidence)
    assert asyncio.run(services.router.route("remind me to call mom in 10 minutes")) == expected
    assert len(backend.bodies(CLASSIFY)) == 1


@pytest.mark.parametrize("intent", [
    {"success": True, "intent": "CHAT", "time": "10 minutes", "confidence": 0.99},
    {"success": True, "intent": "REMINDER", "time": None, "confidence": 0.99},
    {"success": True, "intent": "REMINDER", "time": "", "confidence": 0.99},
    {"success": False, "intent": "REMINDER", "time": "10 minutes", "confidence": 0.99},
])
def test_non_reminder_classifications_route_to_chat(services, backend, intent):
    backend.intent = intent
    assert asyncio.run(services.router.route("hello")) == RouteDecision.CHAT


def test_classifier_outage_routes_to_chat(services, backend):
    backend.fail_paths[CLASSIFY] = "network"
    assert asyncio.run(services.router.route("remind me")) == RouteDecision.CHAT


def test_is_reminder_handles_missing_classification(services):
    assert services.router.is_reminder(None) is False
    assert services.router.is_reminder(
        IntentClassification(success=True, intent="REMINDER", time="5 minutes", confidence=0.8)
    ) is True


def test_reminder_message_is_scheduled(services, backend):
    backend.intent = reminder_intent(0.92)

    async def scenario():
        await services.scheduler.initialize()
        reply = await services.router.handle_message("remind me to call mom in 10 minutes")
        return reply, await services.scheduler.list_reminders()

    reply, reminders = asyncio.run(scenario())
    assert reply.route == RouteDecision.REMINDER
    assert reply.scheduling.method == DeliveryMethod.PUSH
    assert reply.text == reply.scheduling.message
    assert reply.notice is None
    assert len(reminders) == 1
    assert reminders[0].original_text == "remind me to call mom in 10 minutes"
    assert backend.bodies(CHAT) == []


def test_degraded_reminder_is_still_a_reminder_reply(services, backend):
    backend.intent = reminder_intent(0.92)
    reply = asyncio.run(services.router.handle_message("remind me to stretch in 10 minutes"))

    assert reply.route == RouteDecision.REMINDER
    assert reply.scheduling.method == DeliveryMethod.LOCAL_ONLY
    assert reply.scheduling.warning is True
    assert backend.bodies(CHAT) == []


def test_failed_reminder_falls_back_to_chat_once(services, backend):
    backend.intent = reminder_intent(0.92, time="someday")
    reply = asyncio.run(services.router.handle_message("remind me someday"))

    assert reply.route == RouteDecision.CHAT
    assert reply.text == "Hello there!"
    assert reply.notice == "Sorry, I couldn't set your reminder: Invalid time format received"
    assert len(backend.bodies(CLASSIFY)) == 1
    assert len(backend.bodies(CHAT)) == 1
    assert asyncio.run(services.scheduler.list_reminders()) == []


def test_chat_request_carries_user_and_toggles(services, backend):
    services.storage.set_web_search_enabled(False)
    reply = asyncio.run(services.router.handle_message("what is 2 + 2"))

    assert reply.route == RouteDecision.CHAT
    assert reply.chat.tokens_used == 12
    body = backend.bodies(CHAT)[0]
    assert body == {
        "user_id": "user-42",
        "text": "what is 2 + 2",
        "use_web_search": False,
        "include_context": True,
        "use_intelligent_routing": True,
    }


def test_chat_backend_failure_propagates(services, backend):
    backend.fail_paths[CHAT] = 500
    with pytest.raises(BackendError) as exc_info:
        asyncio.run(services.router.handle_message("hello"))
    assert exc_info.value.status == 500
    assert exc_info.value.message == "backend exploded"


def test_history_records_both_turns(services, backend):
    async def scenario():
        await services.router.handle_message("hello")
        return await crud.get_conversation_history(services.storage)

    history = asyncio.run(scenario())
    assert [(m["role"], m["text"]) for m in history] == [
        ("user", "hello"),
        ("assistant", "Hello there!"),
    ]


def test_malformed_classifier_response_routes_to_chat(services, backend):
    backend.intent = {"success": True, "intent": "REMINDER", "confidence": "very high"}
    assert asyncio.run(services.router.route("remind me")) == RouteDecision.CHAT


@pytest.mark.parametrize("confidence", [1.5, -0.2])
def test_out_of_range_confidence_routes_to_chat(services, backend, confidence):
    backend.intent = reminder_intent(confidence)
    reply = asyncio.run(services.router.handle_message("remind me to call mom in 10 minutes"))

    assert reply.route == RouteDecision.CHAT
    assert reply.text == "Hello there!"
    assert backend.bodies("/firebase/schedule-reminder") == []
    assert asyncio.run(services.scheduler.list_reminders()) == []
