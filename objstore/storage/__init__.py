"""Object storage with interchangeable local, S3 and OSS backends."""

from .exceptions import (
    AbortUploadError,
    BackendError,
    ConfigurationError,
    InvalidVisibilityError,
    ObjectNotFoundError,
    StorageError,
    UnsupportedOperationError,
    UploadPartError,
)
from .factory import StorageSettings, build_storage, get_storage, load_storage_settings_from_env, reset_storage_singleton
from .interfaces import BaseStorage, StorageCapability, StorageResize, Visibility
from .local import LocalStorageBackend
from .oss import OSSStorageBackend
from .paths import clean_key
from .s3 import S3StorageBackend

__all__ = [
    'AbortUploadError',
    'BackendError',
    'ConfigurationError',
    'InvalidVisibilityError',
    'ObjectNotFoundError',
    'StorageError',
    'UnsupportedOperationError',
    'UploadPartError',
    'StorageSettings',
    'build_storage',
    'get_storage',
    'load_storage_settings_from_env',
    'reset_storage_singleton',
    'BaseStorage',
    'StorageCapability',
    'StorageResize',
    'Visibility',
    'LocalStorageBackend',
    'OSSStorageBackend',
    'clean_key',
    'S3StorageBackend',
]
