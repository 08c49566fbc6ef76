"""CRUD operations for the local reminder store.

Reminders live as one serialized collection under a single storage key, so
every mutation is a read-modify-write of the whole list. Those sequences run
under storage.lock; each function holds it for its full duration.
IMPORTANT: list_reminders evicts expired reminders as a side effect.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from config import settings
from database import KeyValueStorage, StorageKeys
from exceptions import StorageError
from logger_config import setup_logger
from schemas import DeliveryMethod, Platform, ReminderRecord, ReminderStats

logger = setup_logger(__name__, 'crud.log')

_reminder_list = TypeAdapter(List[ReminderRecord])


def _load_reminders(storage: KeyValueStorage) -> List[ReminderRecord]:
    raw = storage.get(StorageKeys.LOCAL_REMINDERS)
    if not raw:
        return []
    try:
        return _reminder_list.validate_json(raw)
    except ValidationError as e:
        logger.error(f"Stored reminder collection is corrupt: {e}")
        raise StorageError("Stored reminders could not be decoded") from e


def _write_reminders(storage: KeyValueStorage, reminders: List[ReminderRecord]) -> None:
    storage.set(
        StorageKeys.LOCAL_REMINDERS,
        json.dumps([reminder.to_storage() for reminder in reminders])
    )


def _new_reminder_id(reminders: List[ReminderRecord], created: datetime) -> str:
    """Millisecond timestamp id, bumped until unique."""
    taken = {reminder.id for reminder in reminders}
    candidate = int(created.timestamp() * 1000)
    while str(candidate) in taken:
        candidate += 1
    return str(candidate)


async def list_reminders(storage: KeyValueStorage, now: datetime) -> List[ReminderRecord]:
    """Return active reminders in insertion order.

    Reminders whose time is <= now are removed from storage before the
    remaining set is returned.

    Args:
        storage: Key-value storage
        now: Current instant

    Returns:
        List[ReminderRecord]: Reminders still in the future
    """
    async with storage.lock:
        reminders = _load_reminders(storage)
        active = [r for r in reminders if r.time > now]
        if len(active) != len(reminders):
            expired = [r.id for r in reminders if r.time <= now]
            _write_reminders(storage, active)
            logger.info(f"Evicted {len(expired)} expired reminder(s): {expired}")
        return active


async def get_reminder(storage: KeyValueStorage, reminder_id: str) -> Optional[ReminderRecord]:
    """Get a specific reminder by ID, without eviction.

    Returns:
        Optional[ReminderRecord]: The reminder if stored, None otherwise
    """
    async with storage.lock:
        for reminder in _load_reminders(storage):
            if reminder.id == reminder_id:
                return reminder
    return None


async def save_reminder(storage: KeyValueStorage, reminder: ReminderRecord) -> ReminderRecord:
    """Append a reminder, assigning an id when it has none.

    Raises:
        StorageError: When the collection cannot be read or written
    """
    async with storage.lock:
        reminders = _load_reminders(storage)
        if not reminder.id or any(r.id == reminder.id for r in reminders):
            reminder = reminder.model_copy(
                update={"id": _new_reminder_id(reminders, reminder.created)}
            )
        reminders.append(reminder)
        _write_reminders(storage, reminders)
    logger.info(f"Saved local reminder {reminder.id} for {reminder.time.isoformat()}")
    return reminder


async def update_reminder(
    storage: KeyValueStorage,
    reminder_id: str,
    updates: Dict[str, Any]
) -> Optional[ReminderRecord]:
    """Merge field updates into a stored reminder.

    The merged record is re-validated, so an update can never leave the
    delivery state inconsistent (e.g. scheduled without a method).

    Args:
        storage: Key-value storage
        reminder_id: Reminder id
        updates: Field name -> new value

    Returns:
        Optional[ReminderRecord]: Updated reminder, None if not found
    """
    async with storage.lock:
        reminders = _load_reminders(storage)
        for index, reminder in enumerate(reminders):
            if reminder.id != reminder_id:
                continue
            merged = reminder.model_dump()
            merged.update(updates)
            merged["id"] = reminder_id
            updated = ReminderRecord.model_validate(merged)
            reminders[index] = updated
            _write_reminders(storage, reminders)
            logger.info(
                f"Updated local reminder {reminder_id}: "
                f"method={updated.method.value}, scheduled={updated.scheduled}"
            )
            return updated
    return None


async def remove_reminder(storage: KeyValueStorage, reminder_id: str) -> bool:
    """Delete a reminder.

    Returns:
        bool: True if deleted, False if not found
    """
    async with storage.lock:
        reminders = _load_reminders(storage)
        remaining = [r for r in reminders if r.id != reminder_id]
        if len(remaining) == len(reminders):
            return False
        _write_reminders(storage, remaining)
    logger.info(f"Removed local reminder {reminder_id}")
    return True


async def get_reminder_stats(storage: KeyValueStorage, now: datetime) -> ReminderStats:
    """Counts over the active reminders (evicts like list_reminders)."""
    reminders = await list_reminders(storage, now)
    stats = ReminderStats(
        total=len(reminders),
        push=sum(1 for r in reminders if r.method == DeliveryMethod.PUSH),
        local_only=sum(1 for r in reminders if r.method == DeliveryMethod.LOCAL_ONLY),
        scheduled=sum(1 for r in reminders if r.scheduled),
    )
    stats.platforms.android = sum(1 for r in reminders if r.platform == Platform.ANDROID)
    stats.platforms.ios = sum(1 for r in reminders if r.platform == Platform.IOS)
    return stats


def current_user_id(storage: KeyValueStorage) -> str:
    """Stored user id, or the sentinel when storage cannot provide one."""
    try:
        return storage.get_user_id()
    except StorageError:
        logger.warning(f"Falling back to '{settings.DEFAULT_USER_ID}' user id")
        return settings.DEFAULT_USER_ID


# Conversation history ------------------------------------------------------

async def get_conversation_history(storage: KeyValueStorage) -> List[Dict[str, Any]]:
    async with storage.lock:
        return _load_history(storage)


async def add_message_to_history(
    storage: KeyValueStorage,
    role: str,
    text: str,
    limit: Optional[int] = None
) -> None:
    """Append one chat turn, keeping only the newest `limit` entries."""
    limit = limit or settings.CONVERSATION_HISTORY_LIMIT
    async with storage.lock:
        history = _load_history(storage)
        history.append({
            "role": role,
            "text": text,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        if len(history) > limit:
            history = history[-limit:]
        storage.set(StorageKeys.CONVERSATION_HISTORY, json.dumps(history))


async def clear_conversation_history(storage: KeyValueStorage) -> None:
    async with storage.lock:
        storage.set(StorageKeys.CONVERSATION_HISTORY, json.dumps([]))


def _load_history(storage: KeyValueStorage) -> List[Dict[str, Any]]:
    raw = storage.get(StorageKeys.CONVERSATION_HISTORY)
    if not raw:
        return []
    try:
        history = json.loads(raw)
    except ValueError:
        # History is cosmetic; a corrupt blob just starts over
        logger.error("Conversation history is corrupt, starting fresh")
        return []
    return history if isinstance(history, list) else []
