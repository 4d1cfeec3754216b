"""Custom exceptions for the NotePocket storage layer.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_TITLE_REQUIRED = 1004

    # Folder errors (2xxx)
    FOLDER_NOT_FOUND = 2001
    FOLDER_VALIDATION_FAILED = 2002
    FOLDER_REFERENCE_INVALID = 2003

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_NOT_INITIALIZED = 4004
    STORAGE_UNSUPPORTED = 4008
    FILE_SELECTION_CANCELLED = 4009
    DESERIALIZATION_FAILED = 4010

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_NOTE_TYPE = 7002
    INVALID_PAYLOAD = 7006


class NotePocketError(Exception):
    """Base exception for all NotePocket errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class RecordNotFoundError(NotePocketError):
    """Raised when an update or delete targets an unknown id."""

    def __init__(
        self,
        entity: str,
        record_id: str,
        code: ErrorCode,
        message: Optional[str] = None
    ):
        super().__init__(
            message or f"{entity} with ID '{record_id}' not found",
            code=code,
            details={f"{entity.lower()}_id": record_id}
        )
        self.entity = entity
        self.record_id = record_id


class NoteNotFoundError(RecordNotFoundError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__("Note", note_id, ErrorCode.NOTE_NOT_FOUND, message)
        self.note_id = note_id


class FolderNotFoundError(RecordNotFoundError):
    """Raised when a folder cannot be found."""

    def __init__(self, folder_id: str, message: Optional[str] = None):
        super().__init__("Folder", folder_id, ErrorCode.FOLDER_NOT_FOUND, message)
        self.folder_id = folder_id


class ValidationError(NotePocketError):
    """Raised for general validation errors, including malformed payloads."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class NoteValidationError(ValidationError):
    """Raised when note or folder data fails validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.NOTE_VALIDATION_FAILED
    ):
        super().__init__(message, field=field, value=value, code=code)


class StorageError(NotePocketError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.replace("\\", "/").split("/")[-1]
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class WriteFailedError(StorageError):
    """Raised when flushing the durable image to its file fails.

    The in-memory state is kept, so a later flush can retry. When the flush
    followed a create or update, ``record`` holds the model that mutation
    stored; it is in the store and reaches disk with the next successful
    flush.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None,
        record: Optional[Any] = None
    ):
        super().__init__(
            message,
            operation="flush",
            path=path,
            code=ErrorCode.STORAGE_WRITE_FAILED,
            original_error=original_error
        )
        self.record = record

    @property
    def stored(self) -> bool:
        """Whether the failed flush followed a committed create or update."""
        return self.record is not None


class StorageInitializationError(StorageError):
    """Base class for errors that prevent the durable store from opening.

    These are reported by ``StorageAdapter.upgrade()`` as a non-fatal upgrade
    failure; the adapter keeps using the volatile store.
    """


class InitializationUnsupportedError(StorageInitializationError):
    """Raised when the file-system capability is unavailable in this runtime."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or "Durable file storage is not supported in this environment",
            operation="probe",
            code=ErrorCode.STORAGE_UNSUPPORTED
        )


class FileSelectionCancelledError(StorageInitializationError):
    """Raised when the user declines to choose a database file."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or "File selection was cancelled",
            operation="select_file",
            code=ErrorCode.FILE_SELECTION_CANCELLED
        )


class DeserializationFailedError(StorageInitializationError):
    """Raised when a chosen file is not a valid database image."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message,
            operation="load",
            path=path,
            code=ErrorCode.DESERIALIZATION_FAILED,
            original_error=original_error
        )
