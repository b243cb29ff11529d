"""
Local filesystem storage backend with a private and a public tree.

Every object's content lives under ``private_root``. An object is public when
an entry with the same relative path exists under ``public_root``; that entry
is a link to the private file and the public tree is served by an external
HTTP layer. Visibility is derived from tree membership only, so public-read
and public-read-write cannot be told apart once stored.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
import stat
import tempfile
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional, Set, Union
from urllib.parse import quote, urlsplit, urlunsplit

from .exceptions import (
    BackendError,
    ConfigurationError,
    InvalidVisibilityError,
    ObjectNotFoundError,
    StorageError,
    UnsupportedOperationError,
)
from .interfaces import BaseStorage, Source, StorageCapability, StorageResize, Visibility, as_stream
from .linking import select_publisher
from .paths import clean_key, local_path_from_key

logger = logging.getLogger(__name__)

# (absolute file path, object key, expiry) -> URL
SignedURLBuilder = Callable[[str, str, timedelta], str]


def unsupported_signed_url_builder(absolute_path: str, key: str, expire_in: timedelta) -> str:
    raise UnsupportedOperationError('no signed url builder configured', op='temporary_url', key=key)


@contextmanager
def _local_errors(op: str, key: str) -> Iterator[None]:
    try:
        yield
    except StorageError:
        raise
    except FileNotFoundError as e:
        raise ObjectNotFoundError(f"object not found: {e}", op=op, key=key) from e
    except OSError as e:
        raise BackendError(str(e), op=op, key=key) from e


class LocalStorageBackend(BaseStorage):
    """Local filesystem implementation for the storage contract."""

    CAPABILITIES: Set[StorageCapability] = set()
    BACKEND_NAME = 'local'

    def __init__(self, private_root: str, public_root: str, public_base_url: str,
                 signed_url_builder: Optional[SignedURLBuilder] = None, publisher=None):
        self.private_root = private_root
        self.public_root = public_root
        self.public_base_url = public_base_url
        if signed_url_builder is None:
            signed_url_builder = unsupported_signed_url_builder
        else:
            self.CAPABILITIES = self.CAPABILITIES | {StorageCapability.SIGNED_URLS}
        self.signed_url_builder = signed_url_builder
        self._validate_config()

        self.private_root = str(Path(private_root))
        self.public_root = str(Path(public_root))
        Path(self.private_root).mkdir(parents=True, exist_ok=True)
        Path(self.public_root).mkdir(parents=True, exist_ok=True)
        self.publisher = publisher or select_publisher(self.public_root)
        logger.debug(f"Local storage ready: private={self.private_root} public={self.public_root} "
                     f"publisher={self.publisher.name}")

    def _validate_config(self) -> None:
        if not self.private_root:
            raise ConfigurationError('private_root is required for local storage')
        if not self.public_root:
            raise ConfigurationError('public_root is required for local storage')
        if os.path.abspath(self.private_root) == os.path.abspath(self.public_root):
            raise ConfigurationError('private_root and public_root must be different directories')
        if not self.public_base_url:
            raise ConfigurationError('public_base_url is required for local storage')

    def _private_path(self, key: str) -> str:
        return local_path_from_key(self.private_root, key)

    def _public_path(self, key: str) -> str:
        return local_path_from_key(self.public_root, key)

    @staticmethod
    def _object_key(op: str, key: str) -> str:
        """Clean key; an empty result would address a tree root."""
        key = clean_key(key)
        if not key:
            raise ObjectNotFoundError('empty object key', op=op, key=key)
        return key

    def _public_entry_exists(self, key: str) -> bool:
        # Parent directories of nested public entries are not entries.
        public_path = self._public_path(key)
        return os.path.islink(public_path) or os.path.isfile(public_path)

    # ------------------------------------------------------------------
    # Visibility state
    # ------------------------------------------------------------------

    def _make_public(self, key: str) -> None:
        public_path = self._public_path(key)
        Path(public_path).parent.mkdir(parents=True, exist_ok=True)
        if self._public_entry_exists(key):
            os.remove(public_path)
        self.publisher.link(self._private_path(key), public_path)

    def _make_private(self, key: str) -> None:
        if self._public_entry_exists(key):
            os.remove(self._public_path(key))

    def _apply_visibility(self, key: str, visibility: Visibility) -> None:
        if visibility.is_public:
            self._make_public(key)
        else:
            self._make_private(key)

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def _write_private(self, key: str, source: BinaryIO) -> None:
        """Write to a sibling temp file, then rename over the target."""
        dst = self._private_path(key)
        Path(dst).parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(dst), prefix='.', suffix='.part')
        try:
            with os.fdopen(fd, 'wb') as out_f:
                shutil.copyfileobj(source, out_f)
            os.replace(tmp_path, dst)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def read(self, key: str) -> BinaryIO:
        key = self._object_key('read', key)
        with _local_errors('read', key):
            return open(self._private_path(key), 'rb')

    def put(self, key: str, source: Source, visibility: Union[Visibility, str] = Visibility.PRIVATE) -> None:
        key = self._object_key('put', key)
        try:
            visibility = Visibility.parse(visibility)
        except InvalidVisibilityError as e:
            raise InvalidVisibilityError(str(e), op='put', key=key) from None
        with _local_errors('put', key):
            try:
                self._write_private(key, as_stream(source))
            except OSError:
                raise
            except Exception as e:
                raise BackendError(f"error reading source: {e}", op='put', key=key) from e
            # A hard-linked public entry still references the replaced inode.
            self._apply_visibility(key, visibility)

    def delete(self, *keys: str) -> None:
        for raw_key in keys:
            key = clean_key(raw_key)
            if not key:
                continue
            with _local_errors('delete', key):
                self._make_private(key)
                private_path = self._private_path(key)
                if os.path.isfile(private_path):
                    os.remove(private_path)

    def copy(self, src_key: str, dst_key: str) -> None:
        src_key = self._object_key('copy', src_key)
        dst_key = self._object_key('copy', dst_key)
        with _local_errors('copy', src_key):
            with open(self._private_path(src_key), 'rb') as src_f:
                self._write_private(dst_key, src_f)
        with _local_errors('copy', dst_key):
            self._make_private(dst_key)

    def url(self, key: str, resize: Optional[StorageResize] = None) -> str:
        if not key:
            return ''
        key = clean_key(key)
        if not key or not self._public_entry_exists(key):
            raise ObjectNotFoundError('file not found in public path', op='url', key=key)

        parts = urlsplit(self.public_base_url)
        path = posixpath.join(parts.path or '/', key)
        return urlunsplit((parts.scheme, parts.netloc, quote(path, safe='/'), '', ''))

    def temporary_url(self, key: str, expire_in: timedelta, resize: Optional[StorageResize] = None) -> str:
        if not key:
            return ''
        key = self._object_key('temporary_url', key)
        private_path = self._private_path(key)
        if os.path.isfile(private_path):
            return self.signed_url_builder(private_path, key, expire_in)

        try:
            return self.url(key, resize)
        except ObjectNotFoundError:
            raise ObjectNotFoundError('file not found in public or private path',
                                      op='temporary_url', key=key) from None

    def size(self, key: str) -> int:
        key = self._object_key('size', key)
        with _local_errors('size', key):
            return os.stat(self._private_path(key)).st_size

    def last_modified(self, key: str) -> datetime:
        key = self._object_key('last_modified', key)
        with _local_errors('last_modified', key):
            mtime = os.stat(self._private_path(key)).st_mtime
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    def exist(self, key: str) -> bool:
        key = clean_key(key)
        if not key:
            return False
        with _local_errors('exist', key):
            try:
                st = os.stat(self._private_path(key))
            except (FileNotFoundError, NotADirectoryError):
                return False
        return not stat.S_ISDIR(st.st_mode)

    def set_visibility(self, key: str, visibility: Union[Visibility, str]) -> None:
        key = self._object_key('set_visibility', key)
        try:
            visibility = Visibility.parse(visibility)
        except InvalidVisibilityError as e:
            raise InvalidVisibilityError(str(e), op='set_visibility', key=key) from None

        with _local_errors('set_visibility', key):
            if not visibility.is_public:
                self._make_private(key)
            elif not self._public_entry_exists(key):
                if not os.path.isfile(self._private_path(key)):
                    raise ObjectNotFoundError('object not found', op='set_visibility', key=key)
                self._make_public(key)

    def get_visibility(self, key: str) -> Visibility:
        key = self._object_key('get_visibility', key)
        if self._public_entry_exists(key):
            return Visibility.PUBLIC_READ
        if os.path.isfile(self._private_path(key)):
            return Visibility.PRIVATE
        raise ObjectNotFoundError('object not found', op='get_visibility', key=key)
