"""Factory for configuring storage backends from environment variables."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, Mapping, Optional

from .exceptions import ConfigurationError
from .interfaces import BaseStorage
from .local import LocalStorageBackend
from .multipart import DEFAULT_MAX_ATTEMPTS, DEFAULT_PART_SIZE, DEFAULT_RETRY_DELAY, DEFAULT_SESSION_TTL
from .oss import OSSStorageBackend
from .s3 import S3StorageBackend

logger = logging.getLogger(__name__)


@dataclass
class StorageSettings:
    backend: str = 'local'
    local_private_root: str = 'storage/private'
    local_public_root: str = 'storage/public'
    public_base_url: str = 'http://localhost:8000/files'
    part_size: int = DEFAULT_PART_SIZE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY
    session_ttl: timedelta = DEFAULT_SESSION_TTL
    s3_bucket_name: Optional[str] = None
    s3_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    s3_access_key_id: Optional[str] = None
    s3_secret_access_key: Optional[str] = None
    s3_session_token: Optional[str] = None
    s3_use_path_style: bool = False
    s3_verify_ssl: bool = True
    oss_bucket_name: Optional[str] = None
    oss_endpoint: Optional[str] = None
    oss_access_key_id: Optional[str] = None
    oss_access_key_secret: Optional[str] = None
    oss_session_token: Optional[str] = None


def _env_bool(env: Mapping[str, str], name: str, default: str) -> bool:
    return env.get(name, default).strip().lower() == 'true'


def _env_number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.split('#')[0].strip())
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def load_storage_settings_from_env(environ: Optional[Mapping[str, str]] = None) -> StorageSettings:
    if environ is None:
        from objstore.config import load_environment

        load_environment()
        environ = os.environ
    env = environ

    part_size_mb = _env_number(env, 'OBJSTORE_UPLOAD_PART_SIZE_MB', None, int)
    ttl_hours = _env_number(env, 'OBJSTORE_UPLOAD_SESSION_TTL_HOURS', None, float)

    return StorageSettings(
        backend=(env.get('OBJSTORE_BACKEND') or 'local').strip().lower() or 'local',
        local_private_root=env.get('OBJSTORE_LOCAL_PRIVATE_ROOT', 'storage/private'),
        local_public_root=env.get('OBJSTORE_LOCAL_PUBLIC_ROOT', 'storage/public'),
        public_base_url=env.get('OBJSTORE_PUBLIC_BASE_URL', 'http://localhost:8000/files'),
        part_size=part_size_mb * 1024 * 1024 if part_size_mb is not None else DEFAULT_PART_SIZE,
        max_attempts=_env_number(env, 'OBJSTORE_UPLOAD_MAX_ATTEMPTS', DEFAULT_MAX_ATTEMPTS, int),
        retry_delay=_env_number(env, 'OBJSTORE_UPLOAD_RETRY_DELAY', DEFAULT_RETRY_DELAY, float),
        session_ttl=timedelta(hours=ttl_hours) if ttl_hours is not None else DEFAULT_SESSION_TTL,
        s3_bucket_name=env.get('OBJSTORE_S3_BUCKET'),
        s3_region=env.get('OBJSTORE_S3_REGION'),
        s3_endpoint_url=env.get('OBJSTORE_S3_ENDPOINT_URL'),
        s3_access_key_id=env.get('OBJSTORE_S3_ACCESS_KEY_ID'),
        s3_secret_access_key=env.get('OBJSTORE_S3_SECRET_ACCESS_KEY'),
        s3_session_token=env.get('OBJSTORE_S3_SESSION_TOKEN'),
        s3_use_path_style=_env_bool(env, 'OBJSTORE_S3_USE_PATH_STYLE', 'false'),
        s3_verify_ssl=_env_bool(env, 'OBJSTORE_S3_VERIFY_SSL', 'true'),
        oss_bucket_name=env.get('OBJSTORE_OSS_BUCKET'),
        oss_endpoint=env.get('OBJSTORE_OSS_ENDPOINT'),
        oss_access_key_id=env.get('OBJSTORE_OSS_ACCESS_KEY_ID'),
        oss_access_key_secret=env.get('OBJSTORE_OSS_ACCESS_KEY_SECRET'),
        oss_session_token=env.get('OBJSTORE_OSS_SESSION_TOKEN'),
    )


def build_local_backend(settings: StorageSettings) -> LocalStorageBackend:
    return LocalStorageBackend(
        settings.local_private_root,
        settings.local_public_root,
        settings.public_base_url,
    )


def build_s3_backend(settings: StorageSettings) -> S3StorageBackend:
    return S3StorageBackend(
        bucket=settings.s3_bucket_name,
        region=settings.s3_region,
        access_key_id=settings.s3_access_key_id,
        secret_access_key=settings.s3_secret_access_key,
        session_token=settings.s3_session_token,
        endpoint_url=settings.s3_endpoint_url,
        use_path_style=settings.s3_use_path_style,
        verify_ssl=settings.s3_verify_ssl,
        part_size=settings.part_size,
        max_attempts=settings.max_attempts,
        retry_delay=settings.retry_delay,
        session_ttl=settings.session_ttl,
    )


def build_oss_backend(settings: StorageSettings) -> OSSStorageBackend:
    return OSSStorageBackend(
        bucket=settings.oss_bucket_name,
        endpoint=settings.oss_endpoint,
        access_key_id=settings.oss_access_key_id,
        access_key_secret=settings.oss_access_key_secret,
        session_token=settings.oss_session_token,
        part_size=settings.part_size,
        max_attempts=settings.max_attempts,
        retry_delay=settings.retry_delay,
        session_ttl=settings.session_ttl,
    )


BACKEND_BUILDERS: Dict[str, Callable[[StorageSettings], BaseStorage]] = {
    'local': build_local_backend,
    's3': build_s3_backend,
    'oss': build_oss_backend,
}


def build_storage(settings: Optional[StorageSettings] = None) -> BaseStorage:
    """Build the backend named by ``settings.backend``."""
    settings = settings or load_storage_settings_from_env()
    builder = BACKEND_BUILDERS.get(settings.backend)
    if builder is None:
        raise ConfigurationError(
            f"Unknown storage backend: {settings.backend}. Available: {list(BACKEND_BUILDERS.keys())}"
        )
    storage = builder(settings)
    logger.info(f"Storage backend initialized: {storage.BACKEND_NAME}")
    return storage


_storage_singleton: Optional[BaseStorage] = None
_storage_singleton_lock = threading.Lock()


def get_storage() -> BaseStorage:
    global _storage_singleton
    if _storage_singleton is None:
        with _storage_singleton_lock:
            if _storage_singleton is None:
                _storage_singleton = build_storage()
    return _storage_singleton


def reset_storage_singleton() -> None:
    global _storage_singleton
    with _storage_singleton_lock:
        _storage_singleton = None
