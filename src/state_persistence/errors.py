"""Error taxonomy for the persistence engine.

Every failure raised by this package derives from `PersistenceError` and
carries an `ErrorCode` so that callers can tell user-actionable failures
(quota, validation) apart from generic ones without matching on messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Normalized failure codes.

    Attributes:
        STORAGE_QUOTA_EXCEEDED: Local store ran out of capacity.
        TIMEOUT_ERROR: Worker round-trip exceeded its bound.
        SERIALIZATION_ERROR: Encode/decode failed inline or in the worker.
        VALIDATION_ERROR: Document lacks both `projects` and `pages`.
        NETWORK_ERROR: Remote fetch/post failed.
        FILE_NOT_FOUND: Exchange path does not exist.
        FILE_READ_ERROR: Exchange read failed.
        FILE_WRITE_ERROR: Exchange write failed.
        PERMISSION_DENIED: Exchange path is not accessible.
        UNKNOWN_ERROR: Anything else.
    """

    STORAGE_QUOTA_EXCEEDED = "STORAGE_QUOTA_EXCEEDED"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    SERIALIZATION_ERROR = "SERIALIZATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_READ_ERROR = "FILE_READ_ERROR"
    FILE_WRITE_ERROR = "FILE_WRITE_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class PersistenceError(Exception):
    """Base class for all persistence failures."""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class StorageError(PersistenceError):
    """Raised when the storage backend fails for a reason other than quota."""

    pass


class QuotaExceededError(StorageError):
    """Raised when a write would exceed the store's capacity."""

    default_code = ErrorCode.STORAGE_QUOTA_EXCEEDED


class SerializationFaultError(PersistenceError):
    """Raised when encoding or decoding a state fails."""

    default_code = ErrorCode.SERIALIZATION_ERROR


class SerializationTimeoutError(PersistenceError):
    """Raised when a worker round-trip does not complete in time."""

    default_code = ErrorCode.TIMEOUT_ERROR

    def __init__(self, request_id: int, timeout: float) -> None:
        super().__init__(f"Serialization request {request_id} timed out after {timeout}s")
        self.request_id = request_id
        self.timeout = timeout


class ValidationFaultError(PersistenceError):
    """Raised when a document has neither a `projects` nor a `pages` list."""

    default_code = ErrorCode.VALIDATION_ERROR


class ExchangeError(PersistenceError):
    """Raised when the exchange collaborator cannot read, write or transfer a file."""

    default_code = ErrorCode.FILE_READ_ERROR
