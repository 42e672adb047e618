"""
Error Handling
==============

Standardized error codes and the exception taxonomy shared by the
sync engine, the remote adapters and the task store.

    TaskflowError
    ├── ConnectivityError      no network path (timeouts included)
    ├── RemoteError            repository rejected the call
    │   ├── AuthError
    │   ├── NotFoundError
    │   ├── RemoteValidationError
    │   ├── RateLimitError
    │   └── ServerError
    ├── ConfigurationError     required connection settings absent
    ├── NoCacheAvailable       disconnected and no usable snapshot
    ├── SyncInProgressError    overlapping drain
    ├── TaskNotFoundError      unknown id in the local view
    ├── RecordNotFoundError    unknown observation / fuel operation id
    └── ReconciliationError    change targets an unreconciled temporary id
"""

from typing import Optional


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCodes:
    """Standardized error codes."""

    # Connectivity
    CONNECTIVITY = "CONNECTIVITY"
    TIMEOUT = "TIMEOUT"

    # Remote repository (REMOTE_001 - REMOTE_010)
    REMOTE_ERROR = "REMOTE_001"
    REMOTE_AUTH = "REMOTE_002"
    REMOTE_NOT_FOUND = "REMOTE_003"
    REMOTE_VALIDATION = "REMOTE_004"
    REMOTE_RATE_LIMIT = "REMOTE_005"
    REMOTE_SERVER = "REMOTE_006"

    # Local state (SYNC_001 - SYNC_010)
    NO_CACHE = "SYNC_001"
    SYNC_IN_PROGRESS = "SYNC_002"
    TASK_NOT_FOUND = "SYNC_003"
    RECONCILIATION = "SYNC_004"
    RECORD_NOT_FOUND = "SYNC_005"

    # General
    CONFIGURATION = "CONFIGURATION"


# =============================================================================
# Custom Exceptions
# =============================================================================

class TaskflowError(Exception):
    """
    Base application exception with a structured payload.

    ``retryable`` tells the pending-change queue whether replaying the
    same change later can succeed.
    """

    retryable = True

    def __init__(self, code: str, message: str, **extra):
        self.code = code
        self.message = message
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> dict:
        detail = {"code": self.code, "message": self.message}
        detail.update(self.extra)
        return detail


class ConnectivityError(TaskflowError):
    """No network path to the remote store."""

    def __init__(
        self,
        message: str = "Remote store is unreachable",
        code: str = ErrorCodes.CONNECTIVITY,
        **extra,
    ):
        super().__init__(code=code, message=message, **extra)


class RemoteError(TaskflowError):
    """The remote repository rejected the call."""

    def __init__(
        self,
        status_code: Optional[int] = None,
        message: str = "Remote store rejected the request",
        code: str = ErrorCodes.REMOTE_ERROR,
        **extra,
    ):
        self.status_code = status_code
        super().__init__(code=code, message=message, status_code=status_code, **extra)


class AuthError(RemoteError):
    """Credentials missing, expired or lacking permission."""

    def __init__(self, status_code: int = 401, message: str = "Authentication failed", **extra):
        super().__init__(status_code, message, ErrorCodes.REMOTE_AUTH, **extra)


class NotFoundError(RemoteError):
    """Record does not exist on the remote store."""

    retryable = False

    def __init__(self, status_code: int = 404, message: str = "Record not found", **extra):
        super().__init__(status_code, message, ErrorCodes.REMOTE_NOT_FOUND, **extra)


class RemoteValidationError(RemoteError):
    """Remote store refused the payload."""

    retryable = False

    def __init__(self, status_code: int = 422, message: str = "Invalid record", **extra):
        super().__init__(status_code, message, ErrorCodes.REMOTE_VALIDATION, **extra)


class RateLimitError(RemoteError):
    """Too many requests."""

    def __init__(self, status_code: int = 429, message: str = "Rate limit exceeded", **extra):
        super().__init__(status_code, message, ErrorCodes.REMOTE_RATE_LIMIT, **extra)


class ServerError(RemoteError):
    """Remote store fault."""

    def __init__(self, status_code: int = 500, message: str = "Remote server error", **extra):
        super().__init__(status_code, message, ErrorCodes.REMOTE_SERVER, **extra)


class ConfigurationError(TaskflowError):
    """Required connection settings are absent."""

    retryable = False

    def __init__(self, message: str = "Configuration is missing", **extra):
        super().__init__(code=ErrorCodes.CONFIGURATION, message=message, **extra)


class NoCacheAvailable(TaskflowError):
    """
    Disconnected and the requested filter has no usable snapshot.

    Not a failure: callers present it as "no data yet".
    """

    def __init__(self, filter_key: str, message: Optional[str] = None, **extra):
        self.filter_key = filter_key
        super().__init__(
            code=ErrorCodes.NO_CACHE,
            message=message or f"No cached tasks available offline for '{filter_key}'",
            filter_key=filter_key,
            **extra,
        )


class SyncInProgressError(TaskflowError):
    """A drain is already running."""

    def __init__(self, message: str = "Pending changes are already being synced", **extra):
        super().__init__(code=ErrorCodes.SYNC_IN_PROGRESS, message=message, **extra)


class TaskNotFoundError(TaskflowError):
    """Task id is not part of the local view."""

    retryable = False

    def __init__(self, task_id: str, **extra):
        self.task_id = task_id
        super().__init__(
            code=ErrorCodes.TASK_NOT_FOUND,
            message=f"Task '{task_id}' not found",
            task_id=task_id,
            **extra,
        )


class RecordNotFoundError(TaskflowError):
    """Observation or fuel operation id is not in the loaded list."""

    retryable = False

    def __init__(self, kind: str, record_id: str, **extra):
        self.record_id = record_id
        super().__init__(
            code=ErrorCodes.RECORD_NOT_FOUND,
            message=f"{kind.capitalize()} '{record_id}' not found",
            record_id=record_id,
            **extra,
        )


class ReconciliationError(TaskflowError):
    """A change references a temporary id the remote store never saw."""

    retryable = False

    def __init__(self, task_id: str, **extra):
        self.task_id = task_id
        super().__init__(
            code=ErrorCodes.RECONCILIATION,
            message=f"Task '{task_id}' has not been created remotely yet",
            task_id=task_id,
            **extra,
        )


# =============================================================================
# Status Mapping
# =============================================================================

def remote_error_for_status(status_code: int, message: str = "") -> RemoteError:
    """Map an HTTP status code to the matching ``RemoteError`` subclass."""
    message = message or f"Remote store returned HTTP {status_code}"
    if status_code in (401, 403):
        return AuthError(status_code, message)
    if status_code == 404:
        return NotFoundError(status_code, message)
    if status_code in (400, 422):
        return RemoteValidationError(status_code, message)
    if status_code == 429:
        return RateLimitError(status_code, message)
    if status_code >= 500:
        return ServerError(status_code, message)
    return RemoteError(status_code, message)
