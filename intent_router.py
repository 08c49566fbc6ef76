"""Per-utterance routing between the reminder path and conversational chat.

The classifier is consulted once per utterance. Any classifier failure means
chat, and a failed reminder attempt falls back to chat exactly once.
"""

from typing import Optional

import crud
from api_client import BackendClient
from config import Settings, settings as default_settings
from database import KeyValueStorage
from exceptions import BackendError, ReminderServiceError, StorageError
from logger_config import setup_logger
from scheduler import ReminderScheduler
from schemas import ConversationReply, IntentClassification, RouteDecision

logger = setup_logger(__name__, 'router.log')


class IntentRouter:
    """Decides whether an utterance becomes a reminder or a chat message."""

    def __init__(
        self,
        backend: BackendClient,
        scheduler: ReminderScheduler,
        storage: KeyValueStorage,
        settings: Optional[Settings] = None
    ):
        self._backend = backend
        self._scheduler = scheduler
        self._storage = storage
        self._settings = settings or default_settings

    def is_reminder(self, classification: Optional[IntentClassification]) -> bool:
        """Reminder label, a time, and confidence at or above the threshold."""
        if classification is None or not classification.success:
            return False
        return (
            classification.intent == self._settings.REMINDER_INTENT_LABEL
            and bool(classification.time)
            and classification.confidence >= self._settings.INTENT_CONFIDENCE_THRESHOLD
        )

    async def classify(self, user_id: str, utterance: str) -> Optional[IntentClassification]:
        """Classifier result, or None when the classifier is unavailable."""
        try:
            classification = await self._backend.classify_intent(user_id, utterance)
        except BackendError as e:
            logger.error(f"Intent classification failed, falling back to chat: {e}")
            return None
        logger.info(
            f"Intent: {classification.intent} (confidence={classification.confidence}, "
            f"time={classification.time})"
        )
        return classification

    async def route(self, utterance: str) -> RouteDecision:
        user_id = crud.current_user_id(self._storage)
        classification = await self.classify(user_id, utterance)
        return RouteDecision.REMINDER if self.is_reminder(classification) else RouteDecision.CHAT

    async def handle_message(self, utterance: str) -> ConversationReply:
        """Route an utterance and produce the reply shown to the user.

        Raises:
            BackendError: The chat backend failed (the primary function)
            StorageError: Local storage failed on the reminder path
        """
        user_id = crud.current_user_id(self._storage)
        await crud.add_message_to_history(self._storage, "user", utterance)

        classification = await self.classify(user_id, utterance)
        notice = None
        if self.is_reminder(classification):
            try:
                result = await self._scheduler.schedule(
                    utterance,
                    classification.time,
                    classification.confidence
                )
            except StorageError:
                raise
            except ReminderServiceError as e:
                logger.error(f"Failed to handle reminder, falling back to chat: {e}")
                notice = f"Sorry, I couldn't set your reminder: {e.message}"
            else:
                await crud.add_message_to_history(self._storage, "assistant", result.message)
                return ConversationReply(
                    route=RouteDecision.REMINDER,
                    text=result.message,
                    scheduling=result,
                )

        chat = await self._backend.send_message(
            user_id,
            utterance,
            use_web_search=self._storage.get_web_search_enabled()
        )
        await crud.add_message_to_history(self._storage, "assistant", chat.response)
        return ConversationReply(
            route=RouteDecision.CHAT,
            text=chat.response,
            chat=chat,
            notice=notice,
        )
