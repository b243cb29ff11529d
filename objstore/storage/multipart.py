"""
Streaming multipart upload engine shared by the remote backends.

The engine reads the source one part at a time, so memory use is bounded by
``part_size`` regardless of object size. Each part is retried with a fixed
delay; when a part cannot be delivered or the source fails, the remote session
is aborted so uploaded parts are released. Completion failures are not
aborted: the session expiry reclaims them on the remote side.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import BinaryIO, Callable, List, Optional

from .exceptions import AbortUploadError, BackendError, ConfigurationError, UploadPartError

logger = logging.getLogger(__name__)

MIN_PART_SIZE = 5 * 1024 * 1024  # smallest non-final part S3 accepts
DEFAULT_PART_SIZE = MIN_PART_SIZE
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 2.0  # seconds
DEFAULT_SESSION_TTL = timedelta(hours=6)


class UploadState(Enum):
    INITIATED = 'initiated'
    UPLOADING = 'uploading'
    COMPLETED = 'completed'
    ABORTED = 'aborted'


@dataclass
class CompletedPart:
    part_number: int
    etag: str


@dataclass
class UploadSession:
    """Transient record of one multipart upload. Never persisted."""
    key: str
    upload_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    parts: List[CompletedPart] = field(default_factory=list)
    state: UploadState = UploadState.INITIATED

    @property
    def next_part_number(self) -> int:
        return len(self.parts) + 1


class MultipartTransport(ABC):
    """Adapter between the engine and a backend SDK."""

    @abstractmethod
    def create_upload(self, key: str, acl: str, expires_at: datetime) -> str:
        """Open a session and return its upload id."""
        pass

    @abstractmethod
    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        """Submit one part and return its integrity tag (ETag)."""
        pass

    @abstractmethod
    def complete_upload(self, key: str, upload_id: str, parts: List[CompletedPart]) -> None:
        pass

    @abstractmethod
    def abort_upload(self, key: str, upload_id: str) -> None:
        pass

    @abstractmethod
    def put_object(self, key: str, data: bytes, acl: str) -> None:
        """Single-shot write, used for empty sources."""
        pass


class MultipartUploader:
    """Drives one upload session per ``upload`` call."""

    def __init__(self, transport: MultipartTransport, *, part_size: int = DEFAULT_PART_SIZE,
                 max_attempts: int = DEFAULT_MAX_ATTEMPTS, retry_delay: float = DEFAULT_RETRY_DELAY,
                 session_ttl: timedelta = DEFAULT_SESSION_TTL,
                 sleep: Callable[[float], None] = time.sleep):
        if part_size < MIN_PART_SIZE:
            raise ConfigurationError(f"part_size must be at least {MIN_PART_SIZE} bytes, got {part_size}")
        if max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {max_attempts}")
        if retry_delay < 0:
            raise ConfigurationError(f"retry_delay cannot be negative, got {retry_delay}")
        self.transport = transport
        self.part_size = part_size
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.session_ttl = session_ttl
        self._sleep = sleep

    def _read_chunk(self, source: BinaryIO) -> bytearray:
        """Fill one part buffer; short reads are accumulated until EOF."""
        buffer = bytearray()
        while len(buffer) < self.part_size:
            data = source.read(self.part_size - len(buffer))
            if not data:
                break
            buffer.extend(data)
        return buffer

    def upload(self, key: str, source: BinaryIO, acl: str) -> UploadSession:
        session = UploadSession(key=key)

        try:
            chunk = self._read_chunk(source)
        except Exception as e:
            raise BackendError(f"error reading source: {e}", op='put', key=key) from e

        if not chunk:
            logger.debug(f"Empty source for {key}, storing zero-length object")
            try:
                self.transport.put_object(key, b'', acl)
            except Exception as e:
                raise BackendError(f"error storing empty object: {e}", op='put', key=key) from e
            session.state = UploadState.COMPLETED
            return session

        session.expires_at = datetime.now(timezone.utc) + self.session_ttl
        try:
            session.upload_id = self.transport.create_upload(key, acl, session.expires_at)
        except Exception as e:
            raise BackendError(f"error creating multipart upload: {e}", op='put', key=key) from e
        session.state = UploadState.UPLOADING

        while chunk:
            self._upload_part(session, chunk)
            try:
                chunk = self._read_chunk(source)
            except Exception as e:
                self._abort(session, e)
                raise BackendError(f"error reading source: {e}", op='put', key=key) from e

        try:
            self.transport.complete_upload(key, session.upload_id, list(session.parts))
        except Exception as e:
            raise BackendError(f"error completing multipart upload: {e}", op='put', key=key) from e

        session.state = UploadState.COMPLETED
        logger.debug(f"Upload success: {key} ({len(session.parts)} parts)")
        return session

    def _upload_part(self, session: UploadSession, data: bytes) -> None:
        part_number = session.next_part_number
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            logger.debug(f"Uploading ({len(data)} bytes) part {part_number} - {session.key}")
            try:
                etag = self.transport.upload_part(session.key, session.upload_id, part_number, data)
            except Exception as e:
                last_error = e
                if attempt < self.max_attempts:
                    logger.debug(f"Retrying part {part_number} - {session.key}, err: {e}")
                    self._sleep(self.retry_delay)
                continue
            session.parts.append(CompletedPart(part_number=part_number, etag=etag))
            return

        self._abort(session, last_error)
        raise UploadPartError(
            f"part {part_number} failed after {self.max_attempts} attempts: {last_error}",
            op='put', key=session.key, part_number=part_number, attempts=self.max_attempts,
        ) from last_error

    def _abort(self, session: UploadSession, cause: BaseException) -> None:
        logger.warning(f"Aborting multipart upload {session.upload_id} for {session.key}: {cause}")
        try:
            self.transport.abort_upload(session.key, session.upload_id)
        except Exception as e:
            raise AbortUploadError(
                f"error aborting multipart upload {session.upload_id}: {e}",
                op='put', key=session.key, upload_id=session.upload_id, original_error=cause,
            ) from e
        session.state = UploadState.ABORTED
