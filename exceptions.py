"""Error taxonomy for the reminder delivery pipeline.

Only StorageError is allowed to abort a scheduling attempt. Everything else
is handled by falling back to the next-lower-capability path
(push -> local only, reminder -> chat).
"""

from typing import Optional


class ReminderServiceError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidTime(ReminderServiceError):
    """Time expression could not be parsed or is not in the future."""


class PermissionDenied(ReminderServiceError):
    """Notification permission refused. Terminal for push this session."""

    def __init__(self, reason: str = "Notification permissions denied"):
        super().__init__(reason)
        self.reason = reason


class TokenUnavailable(ReminderServiceError):
    """The push service did not hand out a delivery token."""


class BackendError(ReminderServiceError):
    """Network failure, timeout, non-2xx status or malformed backend response.

    status is 0 when the server could not be reached at all.
    """

    def __init__(self, message: str, status: int = 0, path: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.path = path

    def __str__(self):
        return f"{self.message} (status={self.status})"


class NotFound(ReminderServiceError):
    """Cancel / update / status referencing an unknown reminder id."""


class StorageError(ReminderServiceError):
    """Key-value storage failure or corrupt persisted data."""
