from __future__ import annotations


class CalkyError(Exception):
    """Base exception for calendar store operations."""


class StoreError(CalkyError):
    """Raised when the remote store is unreachable or answers with an error."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def user_message(self) -> str:
        return f"Storage error: {self}"


class WriteConflictError(StoreError):
    """Raised when a conditional write still fails after the single retry."""

    @property
    def user_message(self) -> str:
        return "Write conflict, please retry"


class CalendarNotFoundError(CalkyError):
    pass


class ReadOnlyCalendarError(CalkyError):
    pass


class IcsDateError(ValueError):
    pass
