"""
Custom exceptions for the catalog sync pipeline with structured error context.

Each exception carries a ``context`` dictionary for debugging and for the
audit trail, and can be serialized with ``to_dict()``.

Exception Hierarchy:
    SyncException (base)
    ├── FetchFailure            fatal to the run
    ├── ItemFailure             one record, isolated and counted
    ├── AssetFailure            always degraded to a fallback reference
    ├── LedgerWriteFailure      logged and swallowed
    ├── NotificationFailure     logged and swallowed
    └── BatchNotFoundError
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class SyncException(Exception):
    """
    Base exception for all sync-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, record, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


class FetchFailure(SyncException):
    """
    Raised when the catalog source is unreachable or answers with a
    non-success status.

    Context should include:
        - source_url: The catalog endpoint
        - status_code: HTTP status code (None for transport errors)
        - retry_count: Number of attempts made
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        super().__init__(message, context, original_exception)
        self.status_code = status_code
        self.context["status_code"] = status_code


class ItemFailure(SyncException):
    """
    Raised when a single record cannot be reconciled.

    Context should include:
        - external_id: Source identifier of the record
        - title: Natural key of the record
    """
    pass


class AssetFailure(SyncException):
    """Raised inside the asset ingestor; never escapes it."""
    pass


class LedgerWriteFailure(SyncException):
    """
    Raised when a sync run audit row cannot be written.

    Context should include:
        - run_id: The sync run being written
        - operation: start, update, complete or fail
    """
    pass


class NotificationFailure(SyncException):
    """Raised when the final report cannot be delivered."""
    pass


class BatchNotFoundError(SyncException):
    """Raised when a batch id does not match any persisted batch."""

    def __init__(self, batch_id: str):
        super().__init__(f"Batch not found: {batch_id}", context={"batch_id": batch_id})
        self.batch_id = batch_id
