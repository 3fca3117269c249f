"""Failure normalization shared by the engine's operations."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from state_persistence.errors import ErrorCode, PersistenceError
from state_persistence.observability.events import EventBus, EventType

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECOVERABLE_CODES = frozenset(
    {
        ErrorCode.NETWORK_ERROR,
        ErrorCode.VALIDATION_ERROR,
        ErrorCode.STORAGE_QUOTA_EXCEEDED,
        ErrorCode.TIMEOUT_ERROR,
        ErrorCode.FILE_NOT_FOUND,
    }
)

USER_MESSAGES = {
    ErrorCode.STORAGE_QUOTA_EXCEEDED: "Storage quota exceeded. Please free up space.",
    ErrorCode.VALIDATION_ERROR: "Invalid file format. Please check the file contents.",
    ErrorCode.TIMEOUT_ERROR: "Saving took too long. Please try again.",
    ErrorCode.SERIALIZATION_ERROR: "The data could not be encoded or decoded.",
    ErrorCode.NETWORK_ERROR: "Network connection failed. Please check your connection.",
    ErrorCode.FILE_NOT_FOUND: "File not found. Please check the file path.",
    ErrorCode.PERMISSION_DENIED: "Permission denied. Please check file permissions.",
    ErrorCode.FILE_READ_ERROR: "Failed to read file. Please check file permissions.",
    ErrorCode.FILE_WRITE_ERROR: "Failed to write file. Please check disk space and permissions.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred.",
}

# Keyword fallback for exceptions raised outside this package.
_KEYWORD_CODES = (
    (("quota", "disk is full", "no space"), ErrorCode.STORAGE_QUOTA_EXCEEDED),
    (("timeout", "timed out"), ErrorCode.TIMEOUT_ERROR),
    (("network", "connection", "econnrefused", "enotfound"), ErrorCode.NETWORK_ERROR),
    (("permission", "denied", "eacces"), ErrorCode.PERMISSION_DENIED),
    (("not found", "enoent", "no such file"), ErrorCode.FILE_NOT_FOUND),
)


@dataclass
class OperationResult:
    """Outcome of an operation run through the error handler.

    Attributes:
        success: Whether the operation completed.
        data: The operation's return value on success.
        error: Error message on failure.
        code: Normalized error code on failure.
        context: Caller context merged with error details.
        recoverable: Whether the failure is user-actionable.
    """

    success: bool
    data: Any = None
    error: str | None = None
    code: ErrorCode | None = None
    context: dict[str, Any] = field(default_factory=dict)
    recoverable: bool = True


class ErrorHandler:
    """Runs operations and turns their failures into `OperationResult`s.

    Failures are logged as structured JSON and, when an event bus is attached,
    re-published as `ERROR_OCCURRED`.

    Args:
        events: Optional event bus for `ERROR_OCCURRED` notifications.
        emit_events: Whether to publish failures on the bus.
    """

    def __init__(self, events: EventBus | None = None, emit_events: bool = True) -> None:
        self._events = events
        self._emit_events = emit_events

    def handle_sync(self, operation: Callable[[], T], context: dict[str, Any] | None = None) -> OperationResult:
        """Run a synchronous operation, capturing any failure."""
        try:
            return OperationResult(success=True, data=operation())
        except Exception as exc:  # pylint: disable=broad-except
            return self.handle_error(exc, context)

    async def handle_async(
        self,
        operation: Callable[[], Awaitable[T]],
        context: dict[str, Any] | None = None,
    ) -> OperationResult:
        """Await an asynchronous operation, capturing any failure."""
        try:
            return OperationResult(success=True, data=await operation())
        except Exception as exc:  # pylint: disable=broad-except
            return self.handle_error(exc, context)

    def handle_error(self, error: BaseException, context: dict[str, Any] | None = None) -> OperationResult:
        """Normalize, log and publish a failure.

        Returns:
            OperationResult: A failed result describing `error`.
        """
        context = dict(context or {})
        code = self.normalize_error(error)
        recoverable = code in RECOVERABLE_CODES
        result = OperationResult(
            success=False,
            error=str(error) or type(error).__name__,
            code=code,
            context={**context, "exception": type(error).__name__},
            recoverable=recoverable,
        )

        log_entry = {
            "event": "operation_failed",
            "source": context.get("source", "unknown"),
            "operation": context.get("operation", "unknown"),
            "code": code.value,
            "error": result.error,
            "recoverable": recoverable,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        if recoverable:
            logger.warning(json.dumps(log_entry))
        else:
            logger.error(json.dumps(log_entry), exc_info=error)

        if self._emit_events and self._events is not None:
            self._events.emit(
                EventType.ERROR_OCCURRED,
                {
                    "source": context.get("source", "ErrorHandler"),
                    "data": {
                        "error": result.error,
                        "code": code.value,
                        "recoverable": recoverable,
                        "context": result.context,
                    },
                },
            )
        return result

    @staticmethod
    def normalize_error(error: BaseException) -> ErrorCode:
        """Map an exception to an `ErrorCode`.

        Package errors carry their own code; standard exceptions are matched
        by type, then by message keywords.
        """
        if isinstance(error, PersistenceError):
            return error.code
        if isinstance(error, TimeoutError):
            return ErrorCode.TIMEOUT_ERROR
        if isinstance(error, FileNotFoundError):
            return ErrorCode.FILE_NOT_FOUND
        if isinstance(error, PermissionError):
            return ErrorCode.PERMISSION_DENIED

        message = str(error).lower()
        for keywords, code in _KEYWORD_CODES:
            if any(keyword in message for keyword in keywords):
                return code
        return ErrorCode.UNKNOWN_ERROR

    def user_message(self, error: BaseException) -> str:
        """Return remediation text suitable for showing to a user."""
        return USER_MESSAGES[self.normalize_error(error)]
