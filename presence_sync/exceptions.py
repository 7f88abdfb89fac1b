"""
Custom exceptions for presence sync.

Local CRUD raises StorageError / ValidationError to its caller. The
reconciliation engine catches RemoteError and AuthError per record or per
cycle and reports them through the sync status channel instead.
"""


class PresenceSyncError(Exception):
    """Base exception for all presence sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StorageError(PresenceSyncError):
    """Raised when a local storage I/O operation fails."""

    def __init__(self, operation: str, key: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if key:
            details["key"] = key
        if cause:
            details["cause"] = str(cause)
        message = f"Storage error during {operation}"
        if key:
            message += f": {key}"
        super().__init__(message, details)
        self.operation = operation
        self.key = key
        self.cause = cause


class ValidationError(PresenceSyncError):
    """Raised when a record handed to the local store is malformed."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class AuthError(PresenceSyncError):
    """Raised when the auth subsystem fails to produce a session."""

    def __init__(self, message: str, code: str | None = None, status: int | None = None):
        details: dict = {}
        if code:
            details["code"] = code
        if status is not None:
            details["status"] = status
        super().__init__(message, details)
        self.code = code
        self.status = status


class InvalidRefreshTokenError(AuthError):
    """The device-held refresh token is invalid, expired or revoked.

    Retrying with the same credential can never succeed, so the session
    cache clears the local session when it sees this error.
    """

    def __init__(self, message: str = "Invalid Refresh Token", status: int | None = None):
        super().__init__(message, code="refresh_token_not_found", status=status)


class NotAuthenticatedError(PresenceSyncError):
    """No authenticated session is available.

    Offline use is a supported mode, so the engine treats this as a no-op
    rather than a failure.
    """

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class RemoteError(PresenceSyncError):
    """Raised when a remote store call fails (network or API error)."""

    def __init__(
        self,
        table: str,
        operation: str,
        status: int | None = None,
        detail: str | None = None,
        cause: Exception | None = None,
    ):
        details: dict = {"table": table, "operation": operation}
        if status is not None:
            details["status"] = status
        if detail:
            details["detail"] = detail
        if cause:
            details["cause"] = str(cause)
        message = f"Remote {operation} on {table} failed"
        if status is not None:
            message += f" (HTTP {status})"
        if detail:
            message += f": {detail}"
        super().__init__(message, details)
        self.table = table
        self.operation = operation
        self.status = status
        self.detail = detail
        self.cause = cause


def is_invalid_refresh_token(error: BaseException) -> bool:
    """Check whether an auth failure signals a dead refresh credential."""
    if isinstance(error, InvalidRefreshTokenError):
        return True
    code = getattr(error, "code", None)
    if code == "refresh_token_not_found":
        return True
    message = str(getattr(error, "message", None) or error)
    return "Refresh Token" in message or "refresh_token" in message
