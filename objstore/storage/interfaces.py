"""
Storage contract and shared value types for object storage backends.
"""

from __future__ import annotations

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum, auto
from typing import BinaryIO, Optional, Set, Union

from .exceptions import InvalidVisibilityError


class Visibility(str, Enum):
    """Access classification of a stored object."""
    PRIVATE = 'private'
    PUBLIC_READ = 'public-read'
    PUBLIC_READ_WRITE = 'public-read-write'

    @classmethod
    def parse(cls, value: Union['Visibility', str]) -> 'Visibility':
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidVisibilityError(f"invalid object visibility: {value!r}") from None

    @property
    def is_public(self) -> bool:
        return self is not Visibility.PRIVATE


class StorageCapability(Enum):
    """Optional features a backend can declare."""
    BULK_DELETE = auto()    # Deletes many keys in one request
    SIGNED_URLS = auto()    # Signs temporary URLs natively
    IMAGE_RESIZE = auto()   # Honors StorageResize in generated URLs


@dataclass
class StorageResize:
    """Image transformation hint for URL generation. Never applied to stored bytes."""

    max_height: Optional[int] = None  # px

    def to_oss_process(self) -> str:
        result = 'image/resize,m_lfit'
        if self.max_height is not None:
            result += f",h_{int(self.max_height)}"
        return result


Source = Union[BinaryIO, bytes, bytearray, str]


def as_stream(source: Source) -> BinaryIO:
    """Accept a binary stream, or raw bytes/str to be wrapped in one."""
    if isinstance(source, str):
        return io.BytesIO(source.encode('utf-8'))
    if isinstance(source, (bytes, bytearray)):
        return io.BytesIO(bytes(source))
    return source


class BaseStorage(ABC):
    """
    Abstract base class for storage backends.

    Every object key is relative to the root configured for the backend and
    is normalized with ``clean_key`` before use.
    """

    # Class-level capability declarations - subclasses should override
    CAPABILITIES: Set[StorageCapability] = set()
    BACKEND_NAME: str = "unknown"

    @abstractmethod
    def _validate_config(self) -> None:
        """
        Validate required configuration is present.

        Raises:
            ConfigurationError: If required config is missing or invalid
        """
        pass

    @abstractmethod
    def read(self, key: str) -> BinaryIO:
        """Return a readable binary stream over the object content."""
        pass

    @abstractmethod
    def put(self, key: str, source: Source, visibility: Union[Visibility, str] = Visibility.PRIVATE) -> None:
        """Store the source stream under key with the given visibility."""
        pass

    @abstractmethod
    def delete(self, *keys: str) -> None:
        """Delete objects. Missing objects are not an error."""
        pass

    @abstractmethod
    def url(self, key: str, resize: Optional[StorageResize] = None) -> str:
        """Return the public URL of an object."""
        pass

    @abstractmethod
    def temporary_url(self, key: str, expire_in: timedelta, resize: Optional[StorageResize] = None) -> str:
        """Return a signed URL giving temporary access to an object."""
        pass

    @abstractmethod
    def copy(self, src_key: str, dst_key: str) -> None:
        pass

    @abstractmethod
    def size(self, key: str) -> int:
        pass

    @abstractmethod
    def last_modified(self, key: str) -> datetime:
        pass

    @abstractmethod
    def exist(self, key: str) -> bool:
        pass

    @abstractmethod
    def set_visibility(self, key: str, visibility: Union[Visibility, str]) -> None:
        pass

    @abstractmethod
    def get_visibility(self, key: str) -> Visibility:
        pass

    def supports(self, capability: StorageCapability) -> bool:
        """Check if backend supports a capability."""
        return capability in self.CAPABILITIES

    def get_capabilities(self) -> Set[StorageCapability]:
        """Get all supported capabilities."""
        return self.CAPABILITIES.copy()
