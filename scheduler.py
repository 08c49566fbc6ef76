"""Reminder scheduling and delivery.

Flow for one reminder:
1. parse the classified time (must be strictly in the future)
2. persist the record locally (method none) - the user's intent is now safe
3. if a registered delivery token is ready, ask the push backend to schedule it
4. record the outcome: push with its remote id, or local only

Push failures never fail the call; they degrade to local-only mode.
Storage failures are the only errors that propagate.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

import crud
from api_client import BackendClient
from config import Settings, settings as default_settings
from database import KeyValueStorage
from exceptions import BackendError, InvalidTime, NotFound, PermissionDenied, TokenUnavailable
from logger_config import setup_logger, mask_token
from schemas import (
    CancelResult,
    DeliveryMethod,
    DeliveryToken,
    Platform,
    ReminderRecord,
    ReminderStats,
    RemoteReminderStatus,
    ScheduleReminderRequest,
    SchedulingResult,
)
from time_parser import format_reminder_time, parse_reminder_time
from token_manager import DeliveryTokenManager

logger = setup_logger(__name__, 'scheduler.log')

TEST_NOTIFICATION_DELAY = timedelta(seconds=10)


class ReminderScheduler:
    """Orchestrates parse -> persist -> push -> reconcile for reminders.

    Args:
        storage: Key-value storage holding the reminder collection
        backend: Backend client used for the push endpoints
        token_manager: Source of the current delivery token
        settings: Application settings
        clock: Returns the current (timezone-aware) instant
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        backend: BackendClient,
        token_manager: DeliveryTokenManager,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._storage = storage
        self._backend = backend
        self._token_manager = token_manager
        self._settings = settings or default_settings
        self._clock = clock or self._local_now
        self._late_watchers: Set[asyncio.Task] = set()
        self.is_initialized = False

    def _local_now(self) -> datetime:
        return datetime.now(ZoneInfo(self._settings.TIMEZONE))

    @property
    def platform(self) -> Platform:
        return Platform.from_name(self._settings.DEVICE_PLATFORM)

    async def initialize(self) -> bool:
        """Bring up the push path. False means local-only mode."""
        try:
            await self._token_manager.initialize()
        except (PermissionDenied, TokenUnavailable) as e:
            logger.warning(f"Push delivery unavailable, using local fallback: {e.message}")
            self.is_initialized = False
            return False
        self.is_initialized = True
        logger.info("Reminder scheduler initialized with push delivery")
        return True

    def is_ready(self) -> bool:
        return self.is_initialized and self._token_manager.is_ready()

    async def schedule(self, utterance: str, classified_time: str, confidence: float) -> SchedulingResult:
        """Schedule one reminder. Each call creates exactly one new record.

        Args:
            utterance: The user's message
            classified_time: Normalized time string from the intent classifier
            confidence: Classifier confidence in [0, 1]

        Returns:
            SchedulingResult: success with method push, or degraded local_only

        Raises:
            InvalidTime: The time could not be parsed or is not in the future
            StorageError: The local record could not be written
        """
        logger.info(f"Scheduling reminder with time: {classified_time}")
        now = self._clock()

        reminder_time = parse_reminder_time(classified_time, now)
        if reminder_time is None:
            raise InvalidTime("Invalid time format received")
        if reminder_time <= now:
            raise InvalidTime("Reminder time must be in the future")

        record = ReminderRecord(
            user_id=crud.current_user_id(self._storage),
            text=utterance,
            original_text=utterance,
            time=reminder_time,
            confidence=confidence,
            platform=self.platform,
            created=now,
        )
        record = await crud.save_reminder(self._storage, record)
        logger.info(f"Reminder {record.id} saved locally as backup")

        pending: Optional[asyncio.Task] = None
        token = await self._token_manager.ready_token()
        if token is None:
            reason = "no registered delivery token"
        else:
            remote_id, pending = await self._schedule_remote(record, token)
            if remote_id is not None:
                return await self._mark_pushed(record, remote_id, token)
            reason = "the push backend did not accept the reminder"

        updated = await crud.update_reminder(self._storage, record.id, {
            "scheduled": False,
            "method": DeliveryMethod.LOCAL_ONLY,
            "remote_id": None,
        })
        if pending is not None:
            self._watch_late_response(record.id, token, pending)
        if updated is None:
            return self._removed_while_scheduling(record)

        logger.warning(f"Reminder {record.id} saved locally only: {reason}")
        return SchedulingResult(
            success=False,
            method=DeliveryMethod.LOCAL_ONLY,
            reminder=updated,
            message=(
                f"Reminder saved locally only for {self._display(reminder_time)}. "
                f"Push notifications are unavailable: {reason}."
            ),
            warning=True,
        )

    async def _schedule_remote(
        self,
        record: ReminderRecord,
        token: DeliveryToken
    ) -> Tuple[Optional[str], Optional[asyncio.Task]]:
        """Ask the push backend to schedule a record, bounded by a timeout.

        Returns:
            (remote_id, None) on success, (None, None) on failure, and
            (None, task) on timeout - the call keeps running and may still succeed.
        """
        request = ScheduleReminderRequest(
            reminder=record,
            fcm_token=token.value,
            user_id=record.user_id,
            platform=self.platform,
            scheduled_at=self._clock(),
        )
        logger.info(f"Scheduling reminder {record.id} via push backend (token {mask_token(token.value)})")
        task = asyncio.ensure_future(self._backend.schedule_reminder(request))
        try:
            remote_id = await asyncio.wait_for(
                asyncio.shield(task),
                timeout=self._settings.PUSH_SCHEDULE_TIMEOUT
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Push scheduling for reminder {record.id} timed out after "
                f"{self._settings.PUSH_SCHEDULE_TIMEOUT}s"
            )
            return None, task
        except BackendError as e:
            logger.error(f"Push scheduling failed for reminder {record.id}: {e}")
            return None, None
        return remote_id, None

    async def _mark_pushed(self, record: ReminderRecord, remote_id: str, token: DeliveryToken) -> SchedulingResult:
        updated = await crud.update_reminder(self._storage, record.id, {
            "scheduled": True,
            "method": DeliveryMethod.PUSH,
            "remote_id": remote_id,
        })
        if updated is None:
            # Cancelled while the push call was in flight
            await self._cancel_remote(remote_id, token.value, record.user_id)
            return self._removed_while_scheduling(record)

        logger.info(f"Reminder {record.id} scheduled via push ({remote_id})")
        return SchedulingResult(
            success=True,
            method=DeliveryMethod.PUSH,
            reminder=updated,
            message=f"Push notification scheduled for {self._display(updated.time)}",
        )

    def _removed_while_scheduling(self, record: ReminderRecord) -> SchedulingResult:
        logger.warning(f"Reminder {record.id} was removed before scheduling completed")
        return SchedulingResult(
            success=False,
            method=DeliveryMethod.NONE,
            reminder=record,
            message="The reminder was cancelled before scheduling completed.",
            warning=True,
        )

    def _watch_late_response(self, record_id: str, token: DeliveryToken, task: asyncio.Task) -> None:
        watcher = asyncio.ensure_future(self._await_late_response(record_id, token, task))
        self._late_watchers.add(watcher)
        watcher.add_done_callback(self._late_watchers.discard)

    async def _await_late_response(self, record_id: str, token: DeliveryToken, task: asyncio.Task) -> None:
        try:
            remote_id = await task
        except BackendError as e:
            logger.info(f"Timed-out push call for reminder {record_id} finally failed: {e}")
            return
        await self.reconcile_late_remote(record_id, remote_id, token)

    async def reconcile_late_remote(self, record_id: str, remote_id: str, token: DeliveryToken) -> bool:
        """Apply a push acceptance that arrived after the timeout.

        A record still in local-only mode is upgraded to push. If the record
        is gone the orphaned remote reminder is cancelled. Anything else is
        left untouched.

        Returns:
            bool: Whether the local record was upgraded
        """
        record = await crud.get_reminder(self._storage, record_id)
        if record is None:
            logger.warning(f"Late push acceptance {remote_id} for removed reminder {record_id}, cancelling it")
            await self._cancel_remote(remote_id, token.value, crud.current_user_id(self._storage))
            return False
        if record.method != DeliveryMethod.LOCAL_ONLY:
            logger.info(f"Ignoring late push acceptance for reminder {record_id} ({record.method.value})")
            return False

        updated = await crud.update_reminder(self._storage, record_id, {
            "scheduled": True,
            "method": DeliveryMethod.PUSH,
            "remote_id": remote_id,
        })
        if updated is None:
            await self._cancel_remote(remote_id, token.value, record.user_id)
            return False
        logger.info(f"Reminder {record_id} reconciled to push after late response ({remote_id})")
        return True

    async def wait_for_pending(self) -> None:
        """Wait until every late-response watcher has finished."""
        if self._late_watchers:
            await asyncio.gather(*list(self._late_watchers), return_exceptions=True)

    async def cancel(self, reminder_id: str) -> CancelResult:
        """Cancel a reminder: remote best-effort, local always.

        Raises:
            NotFound: No such reminder
        """
        logger.info(f"Canceling reminder: {reminder_id}")
        record = await crud.get_reminder(self._storage, reminder_id)
        if record is None:
            raise NotFound(f"Reminder {reminder_id} not found")

        canceled_remote = False
        if record.method == DeliveryMethod.PUSH and record.remote_id:
            token = self._token_manager.current_token()
            canceled_remote = await self._cancel_remote(
                record.remote_id,
                token.value if token else None,
                record.user_id
            )

        if not await crud.remove_reminder(self._storage, reminder_id):
            logger.warning(f"Reminder {reminder_id} was already removed")

        return CancelResult(
            success=True,
            reminder_id=reminder_id,
            canceled_remote=canceled_remote,
            method=record.method,
        )

    async def _cancel_remote(self, remote_id: str, fcm_token: Optional[str], user_id: str) -> bool:
        try:
            canceled = await self._backend.cancel_reminder(remote_id, fcm_token, user_id)
        except BackendError as e:
            logger.error(f"Remote cancellation of {remote_id} failed: {e}")
            return False
        if canceled:
            logger.info(f"Remote reminder {remote_id} canceled")
        else:
            logger.error(f"Backend refused cancellation of {remote_id}")
        return canceled

    async def list_reminders(self) -> List[ReminderRecord]:
        """Active reminders; expired ones are evicted."""
        return await crud.list_reminders(self._storage, self._clock())

    async def get_stats(self) -> ReminderStats:
        return await crud.get_reminder_stats(self._storage, self._clock())

    async def get_remote_status(self, reminder_id: str) -> RemoteReminderStatus:
        """Delivery status of a push reminder from the backend.

        Raises:
            NotFound: Unknown reminder or not scheduled via push
            BackendError: Status lookup failed
        """
        record = await crud.get_reminder(self._storage, reminder_id)
        if record is None or not record.remote_id:
            raise NotFound(f"No push reminder with id {reminder_id}")
        return await self._backend.get_reminder_status(record.remote_id)

    async def send_test_notification(self) -> str:
        """Push a test reminder ten seconds from now. Nothing is stored locally.

        Returns:
            str: Remote id of the test push

        Raises:
            TokenUnavailable: No registered token
            BackendError: Push backend refused
        """
        token = await self._token_manager.ready_token()
        if token is None:
            raise TokenUnavailable("Push delivery not ready for testing")

        now = self._clock()
        record = ReminderRecord(
            id=f"test_{int(now.timestamp() * 1000)}",
            user_id=crud.current_user_id(self._storage),
            text="This is a test notification",
            original_text="Test notification",
            time=now + TEST_NOTIFICATION_DELAY,
            confidence=1.0,
            platform=self.platform,
            created=now,
        )
        return await self._backend.schedule_reminder(ScheduleReminderRequest(
            reminder=record,
            fcm_token=token.value,
            user_id=record.user_id,
            platform=self.platform,
            scheduled_at=now,
        ))

    async def get_debug_info(self) -> Dict[str, Any]:
        token = self._token_manager.current_token()
        stats = await self.get_stats()
        return {
            "isInitialized": self.is_initialized,
            "pushReady": self._token_manager.is_ready(),
            "tokenRegistered": bool(token and token.registered),
            "fcmToken": mask_token(token.value if token else None),
            "platform": self.platform.value,
            "reminders": stats.model_dump(),
            "pendingLateResponses": len(self._late_watchers),
            "timestamp": self._clock().isoformat(),
        }

    def _display(self, instant: datetime) -> str:
        relative = format_reminder_time(instant, self._clock())
        return f"{instant.strftime('%Y-%m-%d %H:%M')} ({relative.lower()})"
