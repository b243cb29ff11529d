"""
Custom exceptions for storage backends.
"""

from typing import Optional


class StorageError(Exception):
    """Base exception for storage errors."""

    def __init__(self, message: str, op: Optional[str] = None, key: Optional[str] = None):
        if op and key is not None:
            message = f"[{op} {key}] {message}"
        elif op:
            message = f"[{op}] {message}"
        super().__init__(message)
        self.op = op
        self.key = key


class ConfigurationError(StorageError):
    """Configuration-related errors (missing or invalid config)."""
    pass


class InvalidVisibilityError(StorageError, ValueError):
    """Unrecognized visibility value, or an ACL that maps to no visibility."""
    pass


class ObjectNotFoundError(StorageError):
    """Object absent where its presence is required."""
    pass


class UnsupportedOperationError(StorageError):
    """Operation not available for this backend configuration."""
    pass


class BackendError(StorageError):
    """Local I/O or remote transport error. The original error is chained as __cause__."""
    pass


class UploadPartError(BackendError):
    """A multipart part could not be submitted within the retry bound."""

    def __init__(self, message: str, op: Optional[str] = None, key: Optional[str] = None,
                 part_number: int = None, attempts: int = None):
        super().__init__(message, op=op, key=key)
        self.part_number = part_number
        self.attempts = attempts


class AbortUploadError(BackendError):
    """Aborting a multipart upload failed; the session leaks until it expires."""

    def __init__(self, message: str, op: Optional[str] = None, key: Optional[str] = None,
                 upload_id: str = None, original_error: BaseException = None):
        super().__init__(message, op=op, key=key)
        self.upload_id = upload_id
        self.original_error = original_error
