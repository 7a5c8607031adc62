"""
Exception classes for OSS Uploader.

Every error carries a ``retryable`` flag that the retry policy and the
upload state machine use to decide between retrying and giving up.
"""

from typing import Any, Dict, Optional


class UploaderError(Exception):
    """Base exception for all OSS Uploader errors."""

    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ValidationError(UploaderError):
    """Raised for input validation errors."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        details = {"field": field, "value": value}
        super().__init__(f"Validation error for {field}: {message}", details)
        self.field = field
        self.value = value


class ConfigurationError(UploaderError):
    """Raised for configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class FileAccessError(UploaderError):
    """Raised when the local source file cannot be used."""

    def __init__(self, message: str, file_path: Optional[str] = None) -> None:
        details = {"file_path": file_path} if file_path else {}
        super().__init__(message, details)
        self.file_path = file_path


class SourceFileNotFoundError(FileAccessError):
    """Raised when the local source file does not exist."""

    def __init__(self, file_path: str) -> None:
        super().__init__(f"File not found: {file_path}", file_path)


class NotAFileError(FileAccessError):
    """Raised when the source path exists but is not a regular file."""

    def __init__(self, file_path: str) -> None:
        super().__init__(f"Not a regular file: {file_path}", file_path)


class FileChangedError(FileAccessError):
    """Raised when the source file changed size while it was being uploaded."""

    retryable = True

    def __init__(
        self,
        file_path: str,
        expected: Optional[int] = None,
        actual: Optional[int] = None,
    ) -> None:
        super().__init__(f"File changed during upload: {file_path}", file_path)
        self.details.update({"expected": expected, "actual": actual})
        self.expected = expected
        self.actual = actual


class TransportError(UploaderError):
    """Raised when a call to the object store fails in transit or on the server."""

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if status_code:
            details["status_code"] = status_code
        if operation:
            details["operation"] = operation
        super().__init__(message, details)
        self.status_code = status_code
        self.operation = operation


class SessionNotFoundError(TransportError):
    """Raised when the remote multipart session no longer exists."""

    def __init__(self, session_id: str, operation: Optional[str] = None) -> None:
        super().__init__(
            f"Multipart upload session not found: {session_id}",
            status_code=404,
            operation=operation,
        )
        self.session_id = session_id


class InsufficientStorageError(UploaderError):
    """Raised when the object store reports it is out of space."""

    def __init__(self, message: str = "Insufficient storage space") -> None:
        super().__init__(message, {"status_code": 507})


class FinalizeError(UploaderError):
    """Raised when completing a multipart session fails."""

    retryable = True

    def __init__(self, object_key: str, session_id: str, cause: Exception) -> None:
        details = {"object_key": object_key, "session_id": session_id, "cause": str(cause)}
        super().__init__(f"Failed to complete multipart upload for {object_key}", details)
        self.object_key = object_key
        self.session_id = session_id
        self.cause = cause
        self.retryable = getattr(cause, "retryable", True)


class RetryExhaustedError(UploaderError):
    """Raised when an operation still fails after every allowed retry."""

    def __init__(self, operation: str, attempts: int, last_error: Exception) -> None:
        details = {"operation": operation, "attempts": attempts, "cause": str(last_error)}
        super().__init__(f"{operation} failed after {attempts} attempt(s)", details)
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        self.retryable = is_retryable(last_error)


class UploadFailedError(UploaderError):
    """Terminal error handed to the caller once the whole upload gives up."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[Exception] = None,
        file_path: Optional[str] = None,
    ) -> None:
        details: Dict[str, Any] = {"attempts": attempts}
        if file_path:
            details["file_path"] = file_path
        if last_error is not None:
            details["cause"] = str(last_error)
        super().__init__(message, details)
        self.attempts = attempts
        self.last_error = last_error
        self.file_path = file_path

    @property
    def root_cause(self) -> Optional[Exception]:
        """The innermost error, unwrapping nested retry exhaustion."""
        cause = self.last_error
        while isinstance(cause, RetryExhaustedError):
            cause = cause.last_error
        return cause


def is_retryable(exc: BaseException) -> bool:
    """Return True if ``exc`` is worth another attempt."""
    if isinstance(exc, UploaderError):
        return bool(exc.retryable)
    # Unclassified I/O failures (EIO, EAGAIN, ...) are assumed transient
    return isinstance(exc, OSError) and not isinstance(
        exc, (FileNotFoundError, IsADirectoryError, NotADirectoryError, PermissionError)
    )
