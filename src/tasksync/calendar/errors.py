"""Error hierarchy for calendar sync and token handling.

Every error carries a stable ``code`` and the HTTP status the API layer maps
it to.  None of these are retried automatically; they are terminal for the
operation that raised them.
"""

from __future__ import annotations


class TaskSyncError(RuntimeError):
    """Base error for task and calendar-sync operations."""

    code = "TASK_SYNC_ERROR"
    http_status = 500


class Unauthenticated(TaskSyncError):
    """Raised when an operation requires a caller identity and none is present."""

    code = "UNAUTHENTICATED"
    http_status = 401

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class MissingProviderCredentials(TaskSyncError):
    """Raised when the OAuth client id/secret for a provider is not configured."""

    code = "MISSING_PROVIDER_CREDENTIALS"
    http_status = 503

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"{provider} OAuth credentials not configured")


class TaskNotFound(TaskSyncError):
    code = "TASK_NOT_FOUND"
    http_status = 404

    def __init__(self, task_id: object) -> None:
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class TaskNotSchedulable(TaskSyncError):
    """Raised when a task has no due date and so no calendar slot."""

    code = "TASK_NOT_SCHEDULABLE"
    http_status = 422

    def __init__(self, task_id: object) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} has no due date to place on a calendar")


class CalendarNotConnected(TaskSyncError):
    code = "CALENDAR_NOT_CONNECTED"
    http_status = 409

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"{provider} calendar not connected")


class NoRefreshToken(TaskSyncError):
    """Raised when a credential cannot be renewed and re-authorization is required."""

    code = "NO_REFRESH_TOKEN"
    http_status = 409

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"No refresh token available for {provider}")


class SyncConflict(TaskSyncError):
    """Raised when a task's event reference changed underneath a sync."""

    code = "SYNC_CONFLICT"
    http_status = 409


class RemoteCallError(TaskSyncError):
    """Base for failures reported by a provider's HTTP API.

    ``status_code`` is ``None`` when the request never produced a response
    (connection error, timeout).
    """

    http_status = 502
    action = "call provider"

    def __init__(self, *, status_code: int | None, status_text: str) -> None:
        self.status_code = status_code
        self.status_text = status_text
        super().__init__(f"Failed to {self.action}: {status_text}")


class TokenRefreshFailed(RemoteCallError):
    code = "TOKEN_REFRESH_FAILED"
    action = "refresh token"


class TokenExchangeFailed(RemoteCallError):
    code = "TOKEN_EXCHANGE_FAILED"
    action = "exchange code"


class RemoteEventCreateFailed(RemoteCallError):
    code = "REMOTE_EVENT_CREATE_FAILED"
    action = "create calendar event"


class RemoteEventDeleteFailed(RemoteCallError):
    code = "REMOTE_EVENT_DELETE_FAILED"
    action = "delete calendar event"
