"""
S3 destination using boto3 directly.

Objects are stored as {prefix}{file_name}. The remote container passed by
the orchestrator is ignored in favour of the configured prefix, and listings
strip that prefix back off. Re-uploading a name overwrites the object.
"""

import os
import logging
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from backhaul.models import RemoteObject, UploadResult
from ..compression import format_bytes
from .base import (
    DeleteError,
    ListError,
    StorageConnectionError,
    StorageDestination,
    UploadError,
)

logger = logging.getLogger(__name__)

MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class S3SdkDestination(StorageDestination):
    """Upload archives to S3 (or an S3-compatible endpoint) with boto3."""

    type_name = 's3-sdk'

    def __init__(self, config: Dict[str, Any]):
        """
        Args:
            config: Destination entry with keys:
                - bucket: S3 bucket name (required)
                - prefix: Key prefix, e.g. 'backups/' (default '')
                - region: AWS region (default us-east-1)
                - storage_class: S3 storage class (default STANDARD)
                - endpoint_url: Custom endpoint for S3-compatible stores
        """
        super().__init__(config)
        self.bucket_name = self._require_field(config, 'bucket')
        self.prefix = config.get('prefix') or ''
        self.region = config.get('region') or 'us-east-1'
        self.storage_class = (config.get('storage_class') or 'STANDARD').upper()
        self.endpoint_url: Optional[str] = config.get('endpoint_url')
        self.s3_client = None

    @property
    def container(self) -> str:
        return self.prefix

    def initialize(self):
        # Credentials come from the standard AWS chain (env vars, profile, IAM role)
        try:
            self.s3_client = boto3.client(
                's3',
                region_name=self.region,
                endpoint_url=self.endpoint_url
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageConnectionError(f"Failed to initialize S3 client: {e}")

        self.initialized = True
        logger.info(f"S3 SDK client initialized (bucket: {self.bucket_name}, region: {self.region})")

    def test_connection(self) -> bool:
        """
        Test S3 connection and bucket access.

        Raises:
            StorageConnectionError: If the bucket is missing or inaccessible
        """
        self._require_initialized()

        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in ('404', 'NoSuchBucket'):
                raise StorageConnectionError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageConnectionError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageConnectionError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageConnectionError(f"Failed to connect to S3: {e}")

        logger.info(f"S3 connection OK (bucket: {self.bucket_name}, region: {self.region})")
        return True

    def _key(self, file_name: str) -> str:
        return f"{self.prefix}{file_name}"

    def upload_file(self, local_path: str, remote_container: str, file_name: str) -> UploadResult:
        """
        Upload archive to s3://{bucket}/{prefix}{file_name}.

        Raises:
            UploadError: If the local file is missing or the upload fails
        """
        self._require_initialized()

        if not os.path.exists(local_path):
            raise UploadError(f"File not found: {local_path}")

        file_size = os.path.getsize(local_path)
        key = self._key(file_name)
        logger.info(f"Uploading to S3: {file_name} ({format_bytes(file_size)})")

        try:
            if file_size > MULTIPART_THRESHOLD:
                self._multipart_upload(local_path, key)
            else:
                self._simple_upload(local_path, key)
        except ClientError as e:
            raise UploadError(f"S3 upload failed ({_error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise UploadError(f"S3 upload failed: {e}")

        logger.info(f"Upload successful: {file_name} -> s3://{self.bucket_name}/{key}")
        return UploadResult(name=file_name, size=file_size)

    def _simple_upload(self, local_path: str, key: str):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=f,
                StorageClass=self.storage_class,
                ContentType='application/gzip'
            )

    def _multipart_upload(self, local_path: str, key: str):
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key,
            StorageClass=self.storage_class,
            ContentType='application/gzip'
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            # Abort so S3 does not keep billing for orphaned parts
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload for {key}: {abort_error}")
            raise

    def list_files(self, remote_container: str) -> List[RemoteObject]:
        """
        List objects under the configured prefix, newest first.

        Raises:
            ListError: If listing fails
        """
        self._require_initialized()

        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.prefix):
                for obj in page.get('Contents', []):
                    key = obj['Key']
                    name = key[len(self.prefix):] if key.startswith(self.prefix) else key
                    if not name:
                        continue
                    objects.append(RemoteObject(
                        name=name,
                        size=obj['Size'],
                        modified=obj['LastModified'],
                        id=key
                    ))

        except ClientError as e:
            raise ListError(f"S3 list failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise ListError(f"Failed to list S3 objects: {e}")

        objects.sort(key=lambda o: o.modified, reverse=True)
        return objects

    def delete_file(self, remote_container: str, file_name: str):
        """
        Delete {prefix}{file_name} from the bucket.

        Raises:
            DeleteError: If deletion fails
        """
        self._require_initialized()

        key = self._key(file_name)
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
        except ClientError as e:
            raise DeleteError(f"S3 delete failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise DeleteError(f"Failed to delete from S3: {e}")

        logger.info(f"Deleted file from S3: {key}")
