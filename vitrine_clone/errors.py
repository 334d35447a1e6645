"""Errors raised by clone operations."""

from typing import Any


class CloneError(Exception):
    """Base class for errors that abort a clone operation.

    Item-level failures (one product, one image) are never raised; they are
    recorded as strings in the report. Subclasses carry the HTTP status the
    service answers with and, when writes already happened, the partial report.
    """

    status_code = 500

    def __init__(self, message: str, report: Any = None):
        self.message = message
        self.report = report
        super().__init__(message)


class InvalidRequestError(CloneError):
    """Raised for self-clones, empty option sets and malformed ids."""

    status_code = 400


class AuthorizationError(CloneError):
    """Raised when the caller presents no credential or an invalid one."""

    status_code = 401


class ForbiddenError(AuthorizationError):
    """Raised when a credential is present but not allowed to clone."""

    status_code = 403


class NotFoundError(CloneError):
    """Raised when the source or target account does not exist."""

    status_code = 404


class QuotaExceededError(CloneError):
    """Raised when the projected product count exceeds the listing limit."""

    status_code = 400

    def __init__(self, existing: int, adding: int, limit: int, report: Any = None):
        self.existing = existing
        self.adding = adding
        self.limit = limit
        super().__init__(
            f"Target would exceed listing limit. "
            f"Current: {existing}, Adding: {adding}, Limit: {limit}",
            report,
        )


class CloneTimeoutError(CloneError):
    """Raised when the whole operation exceeds its wall-clock budget.

    Writes issued before the deadline are not rolled back.
    """

    status_code = 504


class StoreError(CloneError):
    """Raised when the row store fails outside any single item."""

    status_code = 502


class ConfigurationError(CloneError):
    """Raised when required server-side settings are missing."""

    status_code = 500


def classify_error(status_code: int | None, error_message: str) -> str:
    """Classify a store error into a category for the operation log.

    Args:
        status_code: HTTP status code from the store (None for network errors)
        error_message: Error message from the store

    Returns:
        Error type: duplicate, validation, permission, not_found, server, unknown
    """
    if status_code is None:
        return "unknown"

    if status_code in (401, 403):
        return "permission"

    if status_code >= 500:
        return "server"

    msg_lower = error_message.lower() if error_message else ""

    # Postgres unique violations surface as 409 or as 23505 in the message
    if status_code == 409 or "duplicate" in msg_lower or "already exists" in msg_lower:
        return "duplicate"

    if "not found" in msg_lower or status_code == 404:
        return "not_found"

    if status_code in (400, 422):
        return "validation"

    return "unknown"
