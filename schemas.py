"""Pydantic schemas for the reminder delivery pipeline.

This module defines the persisted records, the backend wire payloads and the
results surfaced to the UI layer.
IMPORTANT: every instant is a timezone-aware datetime; JSON output is ISO-8601.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator


class Platform(str, Enum):
    """Device platforms known to the push backend"""
    ANDROID = "android"
    IOS = "ios"
    OTHER = "other"

    @classmethod
    def from_name(cls, name: str) -> "Platform":
        try:
            return cls(name.lower())
        except ValueError:
            return cls.OTHER


class DeliveryMethod(str, Enum):
    """How a reminder will reach the user"""
    NONE = "none"
    PUSH = "push"
    LOCAL_ONLY = "local_only"


class RouteDecision(str, Enum):
    """Where an utterance is handled"""
    REMINDER = "reminder"
    CHAT = "chat"


class ReminderRecord(BaseModel):
    """Locally persisted reminder.

    remote_id is present iff method is push and scheduled is true, and a
    scheduled record never has method none.
    """

    id: Optional[str] = Field(None, description="Time-derived unique id, assigned on save")
    user_id: str = Field("anonymous", alias="userId", description="Owner of the reminder")
    text: str = Field(..., description="Reminder payload")
    original_text: str = Field(..., alias="originalText", description="Raw utterance")
    time: datetime = Field(..., description="When the reminder fires")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Classifier confidence")
    platform: Platform = Field(Platform.OTHER, description="Device platform")
    created: datetime = Field(..., description="When the record was created")
    scheduled: bool = Field(False, description="A delivery path confirmed acceptance")
    method: DeliveryMethod = Field(DeliveryMethod.NONE, description="Delivery path")
    remote_id: Optional[str] = Field(None, alias="remoteId", description="Push backend handle")

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def check_delivery_state(self) -> "ReminderRecord":
        if self.time <= self.created:
            raise ValueError("reminder time must be after creation time")
        if self.scheduled and self.method == DeliveryMethod.NONE:
            raise ValueError("a scheduled reminder needs a delivery method")
        expects_remote = self.method == DeliveryMethod.PUSH and self.scheduled
        if (self.remote_id is not None) != expects_remote:
            raise ValueError("remote_id is set only for scheduled push reminders")
        return self

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class DeliveryToken(BaseModel):
    """Device push token as cached by the token manager"""

    value: str
    cached_at: datetime
    registered: bool = False


class PermissionResult(BaseModel):
    """Answer from the device notification permission system"""

    granted: bool
    reason: str = ""


# ---------------------------------------------------------------------------
# Backend wire payloads
# ---------------------------------------------------------------------------

class IntentClassification(BaseModel):
    """Response of POST /intent/classify"""

    success: bool = False
    intent: Optional[str] = None
    time: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class ChatReply(BaseModel):
    """Response of POST /chat"""

    response: str
    tokens_used: Optional[int] = Field(
        None, validation_alias=AliasChoices("tokens_used", "tokensUsed")
    )
    web_search_used: bool = Field(
        False, validation_alias=AliasChoices("web_search_used", "webSearchUsed")
    )


class DeviceRegistration(BaseModel):
    """Body of POST /firebase/register-device"""

    fcm_token: str = Field(..., alias="fcmToken")
    platform: Platform
    version: Optional[int] = None
    user_id: str = Field(..., alias="userId")
    timestamp: datetime

    class Config:
        populate_by_name = True


class ScheduleReminderRequest(BaseModel):
    """Body of POST /firebase/schedule-reminder: the record plus delivery target"""

    reminder: ReminderRecord
    fcm_token: str
    user_id: str
    platform: Platform
    scheduled_at: datetime

    def to_payload(self) -> Dict[str, Any]:
        payload = self.reminder.to_storage()
        payload.update({
            "fcmToken": self.fcm_token,
            "userId": self.user_id,
            "platform": self.platform.value,
            "scheduledAt": self.scheduled_at.isoformat(),
        })
        return payload


class RemoteReminderStatus(BaseModel):
    """Response of GET /firebase/reminder-status/{id}"""

    remote_id: str
    status: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Results surfaced to callers
# ---------------------------------------------------------------------------

class SchedulingResult(BaseModel):
    """Outcome of one schedule() call. warning marks degraded mode."""

    success: bool
    method: DeliveryMethod
    reminder: ReminderRecord
    message: str
    warning: bool = False


class CancelResult(BaseModel):
    success: bool = True
    reminder_id: str
    canceled_remote: bool = False
    method: DeliveryMethod


class PlatformCounts(BaseModel):
    android: int = 0
    ios: int = 0


class ReminderStats(BaseModel):
    total: int = 0
    push: int = 0
    local_only: int = 0
    scheduled: int = 0
    platforms: PlatformCounts = Field(default_factory=PlatformCounts)


class ConversationReply(BaseModel):
    """What the UI renders for one user utterance.

    notice carries the explanation when the reminder path failed and the
    utterance was answered by chat instead.
    """

    route: RouteDecision
    text: str
    scheduling: Optional[SchedulingResult] = None
    chat: Optional[ChatReply] = None
    notice: Optional[str] = None


# ---------------------------------------------------------------------------
# Facade request bodies
# ---------------------------------------------------------------------------

class MessageRequest(BaseModel):
    text: str = Field(..., min_length=1)


class ScheduleRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Reminder utterance")
    time: str = Field(..., min_length=1, description="Time expression, e.g. '10 minutes'")
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class TokenRefreshRequest(BaseModel):
    token: str = Field(..., min_length=1)


class PermissionReport(BaseModel):
    os_granted: bool = True
    push_granted: bool = True
    reason: str = ""


class FeatureToggles(BaseModel):
    web_search_enabled: Optional[bool] = None
    auto_play_audio: Optional[bool] = None
