"""Alibaba Cloud OSS storage backend with image-process URL support."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import BinaryIO, Iterator, List, Optional, Set, Union
from urllib.parse import quote, urlencode

from .acl import oss_acl_for, visibility_from_oss_acl
from .exceptions import BackendError, ConfigurationError, InvalidVisibilityError, ObjectNotFoundError, StorageError
from .interfaces import BaseStorage, Source, StorageCapability, StorageResize, Visibility, as_stream
from .multipart import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PART_SIZE,
    DEFAULT_RETRY_DELAY,
    DEFAULT_SESSION_TTL,
    CompletedPart,
    MultipartTransport,
    MultipartUploader,
)
from .paths import clean_key

logger = logging.getLogger(__name__)

OSS_SIGNED_URL_MIN_EXPIRE = timedelta(minutes=1)
OSS_DELETE_BATCH_SIZE = 1000
OSS_ACL_HEADER = 'x-oss-object-acl'
OSS_PROCESS_PARAM = 'x-oss-process'


def remove_scheme(endpoint: str) -> str:
    for scheme in ('https://', 'http://'):
        if endpoint.startswith(scheme):
            return endpoint[len(scheme):]
    return endpoint


@contextmanager
def _oss_errors(op: str, key: Optional[str]) -> Iterator[None]:
    from oss2.exceptions import OssError

    try:
        yield
    except StorageError:
        raise
    except OssError as e:
        if e.status == 404:
            raise ObjectNotFoundError(f"object not found: {e.code or e.status}", op=op, key=key) from e
        raise BackendError(f"{e.code or e.status}: {e.message}", op=op, key=key) from e
    except Exception as e:
        raise BackendError(str(e), op=op, key=key) from e


class OSSMultipartTransport(MultipartTransport):
    """Multipart calls through an ``oss2.Bucket``."""

    def __init__(self, bucket):
        self.bucket = bucket

    def create_upload(self, key: str, acl: str, expires_at: datetime) -> str:
        headers = {
            OSS_ACL_HEADER: acl,
            'Expires': format_datetime(expires_at.astimezone(timezone.utc), usegmt=True),
        }
        return self.bucket.init_multipart_upload(key, headers=headers).upload_id

    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        return self.bucket.upload_part(key, upload_id, part_number, data).etag

    def complete_upload(self, key: str, upload_id: str, parts: List[CompletedPart]) -> None:
        from oss2.models import PartInfo

        self.bucket.complete_multipart_upload(
            key, upload_id, [PartInfo(p.part_number, p.etag) for p in parts],
        )

    def abort_upload(self, key: str, upload_id: str) -> None:
        self.bucket.abort_multipart_upload(key, upload_id)

    def put_object(self, key: str, data: bytes, acl: str) -> None:
        self.bucket.put_object(key, data, headers={OSS_ACL_HEADER: acl})


class OSSStorageBackend(BaseStorage):
    """OSS storage backend with lazy oss2 initialization."""

    CAPABILITIES: Set[StorageCapability] = {
        StorageCapability.BULK_DELETE,
        StorageCapability.SIGNED_URLS,
        StorageCapability.IMAGE_RESIZE,
    }
    BACKEND_NAME = 'oss'

    def __init__(self, *, bucket: str, endpoint: str, access_key_id: Optional[str] = None,
                 access_key_secret: Optional[str] = None, session_token: Optional[str] = None,
                 part_size: int = DEFAULT_PART_SIZE, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 retry_delay: float = DEFAULT_RETRY_DELAY, session_ttl: timedelta = DEFAULT_SESSION_TTL,
                 oss_bucket=None):
        self.bucket_name = bucket
        self.endpoint = endpoint
        self.access_key_id = access_key_id
        self.access_key_secret = access_key_secret
        self.session_token = session_token
        self.part_size = part_size
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.session_ttl = session_ttl
        self._bucket = oss_bucket
        self._validate_config()

    def _validate_config(self) -> None:
        if not self.bucket_name:
            raise ConfigurationError('bucket is required for OSS storage')
        if not self.endpoint:
            raise ConfigurationError('endpoint is required for OSS storage')
        if self._bucket is None and not (self.access_key_id and self.access_key_secret):
            raise ConfigurationError('access_key_id and access_key_secret are required for OSS storage')

    def _get_bucket(self):
        if self._bucket is not None:
            return self._bucket

        try:
            import oss2
        except Exception as exc:
            raise ConfigurationError('OSS backend requires oss2 installed') from exc

        if self.session_token:
            auth = oss2.StsAuth(self.access_key_id, self.access_key_secret, self.session_token)
        else:
            auth = oss2.Auth(self.access_key_id, self.access_key_secret)
        self._bucket = oss2.Bucket(auth, self.endpoint, self.bucket_name)
        return self._bucket

    def _uploader(self) -> MultipartUploader:
        return MultipartUploader(
            OSSMultipartTransport(self._get_bucket()),
            part_size=self.part_size,
            max_attempts=self.max_attempts,
            retry_delay=self.retry_delay,
            session_ttl=self.session_ttl,
        )

    def read(self, key: str) -> BinaryIO:
        key = clean_key(key)
        with _oss_errors('read', key):
            return self._get_bucket().get_object(key)

    def put(self, key: str, source: Source, visibility: Union[Visibility, str] = Visibility.PRIVATE) -> None:
        key = clean_key(key)
        try:
            acl = oss_acl_for(visibility)
        except InvalidVisibilityError as e:
            raise InvalidVisibilityError(str(e), op='put', key=key) from None
        self._uploader().upload(key, as_stream(source), acl)

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        bucket = self._get_bucket()
        cleaned = [clean_key(k) for k in keys]
        if len(cleaned) == 1:
            with _oss_errors('delete', cleaned[0]):
                bucket.delete_object(cleaned[0])
            return

        for start in range(0, len(cleaned), OSS_DELETE_BATCH_SIZE):
            batch = cleaned[start:start + OSS_DELETE_BATCH_SIZE]
            with _oss_errors('delete', None):
                bucket.batch_delete_objects(batch)

    def copy(self, src_key: str, dst_key: str) -> None:
        src_key = clean_key(src_key)
        dst_key = clean_key(dst_key)
        with _oss_errors('copy', src_key):
            self._get_bucket().copy_object(self.bucket_name, src_key, dst_key)

    def url(self, key: str, resize: Optional[StorageResize] = None) -> str:
        if not key:
            return ''
        key = quote(clean_key(key), safe='/')
        result = f"https://{self.bucket_name}.{remove_scheme(self.endpoint).rstrip('/')}/{key}"
        if resize is not None:
            result += '?' + urlencode({OSS_PROCESS_PARAM: resize.to_oss_process()}, safe='/,')
        return result

    def temporary_url(self, key: str, expire_in: timedelta, resize: Optional[StorageResize] = None) -> str:
        if not key:
            return ''
        key = clean_key(key)
        expire_in = max(expire_in, OSS_SIGNED_URL_MIN_EXPIRE)
        params = {OSS_PROCESS_PARAM: resize.to_oss_process()} if resize is not None else None
        with _oss_errors('temporary_url', key):
            return self._get_bucket().sign_url('GET', key, int(expire_in.total_seconds()), params=params)

    def _meta(self, op: str, key: str):
        with _oss_errors(op, key):
            return self._get_bucket().get_object_meta(key)

    def size(self, key: str) -> int:
        return int(self._meta('size', clean_key(key)).content_length)

    def last_modified(self, key: str) -> datetime:
        return datetime.fromtimestamp(self._meta('last_modified', clean_key(key)).last_modified, tz=timezone.utc)

    def exist(self, key: str) -> bool:
        key = clean_key(key)
        with _oss_errors('exist', key):
            return bool(self._get_bucket().object_exists(key))

    def set_visibility(self, key: str, visibility: Union[Visibility, str]) -> None:
        key = clean_key(key)
        try:
            acl = oss_acl_for(visibility)
        except InvalidVisibilityError as e:
            raise InvalidVisibilityError(str(e), op='set_visibility', key=key) from None
        with _oss_errors('set_visibility', key):
            self._get_bucket().put_object_acl(key, acl)

    def get_visibility(self, key: str) -> Visibility:
        key = clean_key(key)
        with _oss_errors('get_visibility', key):
            result = self._get_bucket().get_object_acl(key)
        try:
            return visibility_from_oss_acl(result.acl)
        except InvalidVisibilityError as e:
            raise InvalidVisibilityError(str(e), op='get_visibility', key=key) from None
