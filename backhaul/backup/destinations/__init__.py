"""
Remote storage destinations.

- gdrive-api: Google Drive v3 API with a service account
- gdrive: Google Drive through rclone
- s3-rclone: S3 through rclone
- s3-sdk: S3 through boto3
"""

from .base import (
    StorageDestination,
    StorageError,
    StorageConnectionError,
    UploadError,
    ListError,
    DeleteError,
    NotInitialized,
)
from .gdrive import GoogleDriveApiDestination
from .rclone import RcloneDriveDestination, RcloneS3Destination
from .s3 import S3SdkDestination
from .registry import (
    DESTINATION_TYPES,
    UnsupportedType,
    NoActiveDestinations,
    build_from_config,
    create_destination,
)

__all__ = [
    'StorageDestination',
    'StorageError',
    'StorageConnectionError',
    'UploadError',
    'ListError',
    'DeleteError',
    'NotInitialized',
    'GoogleDriveApiDestination',
    'RcloneDriveDestination',
    'RcloneS3Destination',
    'S3SdkDestination',
    'DESTINATION_TYPES',
    'UnsupportedType',
    'NoActiveDestinations',
    'build_from_config',
    'create_destination',
]
