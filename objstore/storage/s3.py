"""S3-compatible storage backend (AWS S3 / MinIO)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import BinaryIO, Iterator, List, Optional, Set, Union
from urllib.parse import quote

from .acl import s3_acl_for, visibility_from_s3_grants
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

S3_SIGNED_URL_MIN_EXPIRE = timedelta(hours=24)
S3_SIGNED_URL_MAX_EXPIRE = timedelta(days=7)
S3_DELETE_BATCH_SIZE = 1000


def _is_not_found(exc: Exception) -> bool:
    from botocore.exceptions import ClientError

    if not isinstance(exc, ClientError):
        return False
    response = getattr(exc, 'response', {}) or {}
    status_code = (response.get('ResponseMetadata') or {}).get('HTTPStatusCode')
    error_code = str((response.get('Error') or {}).get('Code') or '')
    return status_code == 404 or error_code in ('404', 'NoSuchKey', 'NotFound')


@contextmanager
def _s3_errors(op: str, key: Optional[str]) -> Iterator[None]:
    try:
        yield
    except StorageError:
        raise
    except Exception as e:
        if _is_not_found(e):
            raise ObjectNotFoundError(f"object not found: {e}", op=op, key=key) from e
        raise BackendError(str(e), op=op, key=key) from e


class S3MultipartTransport(MultipartTransport):
    """Multipart calls against one bucket through a boto3 client."""

    def __init__(self, client, bucket: str):
        self.client = client
        self.bucket = bucket

    def create_upload(self, key: str, acl: str, expires_at: datetime) -> str:
        resp = self.client.create_multipart_upload(Bucket=self.bucket, Key=key, ACL=acl, Expires=expires_at)
        return resp['UploadId']

    def upload_part(self, key: str, upload_id: str, part_number: int, data: bytes) -> str:
        resp = self.client.upload_part(
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=data,
            ContentLength=len(data),
        )
        return resp['ETag']

    def complete_upload(self, key: str, upload_id: str, parts: List[CompletedPart]) -> None:
        self.client.complete_multipart_upload(
            Bucket=self.bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={'Parts': [{'PartNumber': p.part_number, 'ETag': p.etag} for p in parts]},
        )

    def abort_upload(self, key: str, upload_id: str) -> None:
        self.client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)

    def put_object(self, key: str, data: bytes, acl: str) -> None:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ACL=acl)


class S3StorageBackend(BaseStorage):
    """S3 storage backend with lazy boto3 initialization."""

    CAPABILITIES: Set[StorageCapability] = {
        StorageCapability.BULK_DELETE,
        StorageCapability.SIGNED_URLS,
    }
    BACKEND_NAME = 's3'

    def __init__(self, *, bucket: str, region: Optional[str] = None, access_key_id: Optional[str] = None,
                 secret_access_key: Optional[str] = None, session_token: Optional[str] = None,
                 endpoint_url: Optional[str] = None, use_path_style: bool = False, verify_ssl: bool = True,
                 part_size: int = DEFAULT_PART_SIZE, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 retry_delay: float = DEFAULT_RETRY_DELAY, session_ttl: timedelta = DEFAULT_SESSION_TTL,
                 client=None):
        self.bucket = bucket
        self.region = region
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.session_token = session_token
        self.endpoint_url = endpoint_url
        self.use_path_style = use_path_style
        self.verify_ssl = verify_ssl
        self.part_size = part_size
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.session_ttl = session_ttl
        self._client = client
        self._validate_config()

    def _validate_config(self) -> None:
        if not self.bucket:
            raise ConfigurationError('bucket is required for S3 storage')
        if not self.region and not self.endpoint_url:
            raise ConfigurationError('region or endpoint_url is required for S3 storage')
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise ConfigurationError('access_key_id and secret_access_key must be set together')

    def _get_client(self):
        if self._client is not None:
            return self._client

        try:
            import boto3
            from botocore.config import Config
        except Exception as exc:
            raise ConfigurationError('S3 backend requires boto3 and botocore installed') from exc

        client_kwargs = {
            'service_name': 's3',
            'verify': self.verify_ssl,
        }
        if self.region:
            client_kwargs['region_name'] = self.region
        if self.endpoint_url:
            client_kwargs['endpoint_url'] = self.endpoint_url
        if self.access_key_id:
            client_kwargs['aws_access_key_id'] = self.access_key_id
        if self.secret_access_key:
            client_kwargs['aws_secret_access_key'] = self.secret_access_key
        if self.session_token:
            client_kwargs['aws_session_token'] = self.session_token

        addressing_style = 'path' if self.use_path_style else 'auto'
        client_kwargs['config'] = Config(signature_version='s3v4', s3={'addressing_style': addressing_style})

        self._client = boto3.client(**client_kwargs)
        return self._client

    def _uploader(self) -> MultipartUploader:
        return MultipartUploader(
            S3MultipartTransport(self._get_client(), self.bucket),
            part_size=self.part_size,
            max_attempts=self.max_attempts,
            retry_delay=self.retry_delay,
            session_ttl=self.session_ttl,
        )

    def read(self, key: str) -> BinaryIO:
        key = clean_key(key)
        with _s3_errors('read', key):
            output = self._get_client().get_object(Bucket=self.bucket, Key=key)
        return output['Body']

    def put(self, key: str, source: Source, visibility: Union[Visibility, str] = Visibility.PRIVATE) -> None:
        key = clean_key(key)
        try:
            acl = s3_acl_for(visibility)
        except InvalidVisibilityError as e:
            raise InvalidVisibilityError(str(e), op='put', key=key) from None
        self._uploader().upload(key, as_stream(source), acl)

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        client = self._get_client()
        cleaned = [clean_key(k) for k in keys]
        if len(cleaned) == 1:
            with _s3_errors('delete', cleaned[0]):
                client.delete_object(Bucket=self.bucket, Key=cleaned[0])
            return

        for start in range(0, len(cleaned), S3_DELETE_BATCH_SIZE):
            batch = cleaned[start:start + S3_DELETE_BATCH_SIZE]
            with _s3_errors('delete', None):
                resp = client.delete_objects(
                    Bucket=self.bucket,
                    Delete={'Objects': [{'Key': k} for k in batch], 'Quiet': True},
                )
            errors = resp.get('Errors') or []
            if errors:
                failed = ', '.join(f"{e.get('Key')} ({e.get('Code')})" for e in errors)
                raise BackendError(f"failed to delete: {failed}", op='delete', key=errors[0].get('Key'))

    def copy(self, src_key: str, dst_key: str) -> None:
        src_key = clean_key(src_key)
        dst_key = clean_key(dst_key)
        with _s3_errors('copy', src_key):
            self._get_client().copy_object(
                Bucket=self.bucket,
                Key=dst_key,
                CopySource={'Bucket': self.bucket, 'Key': src_key},
            )

    def url(self, key: str, resize: Optional[StorageResize] = None) -> str:
        if not key:
            return ''
        key = quote(clean_key(key), safe='/')
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def temporary_url(self, key: str, expire_in: timedelta, resize: Optional[StorageResize] = None) -> str:
        if not key:
            return ''
        key = clean_key(key)
        expire_in = min(max(expire_in, S3_SIGNED_URL_MIN_EXPIRE), S3_SIGNED_URL_MAX_EXPIRE)
        with _s3_errors('temporary_url', key):
            return self._get_client().generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket, 'Key': key},
                ExpiresIn=int(expire_in.total_seconds()),
            )

    def _head(self, op: str, key: str) -> dict:
        with _s3_errors(op, key):
            return self._get_client().head_object(Bucket=self.bucket, Key=key)

    def size(self, key: str) -> int:
        return self._head('size', clean_key(key))['ContentLength']

    def last_modified(self, key: str) -> datetime:
        return self._head('last_modified', clean_key(key))['LastModified']

    def exist(self, key: str) -> bool:
        try:
            self._head('exist', clean_key(key))
            return True
        except ObjectNotFoundError:
            return False

    def set_visibility(self, key: str, visibility: Union[Visibility, str]) -> None:
        key = clean_key(key)
        try:
            acl = s3_acl_for(visibility)
        except InvalidVisibilityError as e:
            raise InvalidVisibilityError(str(e), op='set_visibility', key=key) from None
        with _s3_errors('set_visibility', key):
            self._get_client().put_object_acl(Bucket=self.bucket, Key=key, ACL=acl)

    def get_visibility(self, key: str) -> Visibility:
        key = clean_key(key)
        with _s3_errors('get_visibility', key):
            output = self._get_client().get_object_acl(Bucket=self.bucket, Key=key)
        try:
            return visibility_from_s3_grants(output.get('Grants'))
        except InvalidVisibilityError as e:
            raise InvalidVisibilityError(str(e), op='get_visibility', key=key) from None
