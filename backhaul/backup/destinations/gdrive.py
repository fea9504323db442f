"""
Google Drive destination talking to the Drive v3 API with a service account.

The remote container is a Drive folder id. Drive allows several files with
the same name in one folder, so re-uploading a name creates a duplicate;
delete_file removes every file with that name, and retention cleanup deletes
by file id.
"""

import os
import logging
from datetime import datetime
from typing import Any, Dict, List

from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleApiError
from googleapiclient.http import MediaFileUpload

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

DRIVE_SCOPES = ['https://www.googleapis.com/auth/drive.file']

_FILE_FIELDS = 'id, name, size, createdTime'


def _escape(value: str) -> str:
    return value.replace('\\', '\\\\').replace("'", "\\'")


def _parse_rfc3339(value: str) -> datetime:
    # Drive returns e.g. 2024-01-15T02:00:05.123Z
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


class GoogleDriveApiDestination(StorageDestination):
    """Upload archives into a Drive folder (shared drives supported)."""

    type_name = 'gdrive-api'

    def __init__(self, config: Dict[str, Any]):
        """
        Args:
            config: Destination entry with keys:
                - folder_id: Drive folder id (required)
                - service_account_file: Path to the service account JSON key;
                  falls back to GOOGLE_SERVICE_ACCOUNT_PATH, then
                  GOOGLE_APPLICATION_CREDENTIALS
        """
        super().__init__(config)
        self.folder_id = self._require_field(config, 'folder_id')
        self.service_account_file = (
            config.get('service_account_file')
            or os.environ.get('GOOGLE_SERVICE_ACCOUNT_PATH')
            or os.environ.get('GOOGLE_APPLICATION_CREDENTIALS')
        )
        self.service = None

    @property
    def container(self) -> str:
        return self.folder_id

    def _build_service(self, credentials):
        return build('drive', 'v3', credentials=credentials, cache_discovery=False)

    def initialize(self):
        if not self.service_account_file:
            raise StorageConnectionError(
                "Google Drive requires a service account key. Set 'service_account_file' "
                "or the GOOGLE_SERVICE_ACCOUNT_PATH environment variable."
            )
        if not os.path.exists(self.service_account_file):
            raise StorageConnectionError(f"Service account file not found: {self.service_account_file}")

        try:
            credentials = Credentials.from_service_account_file(
                self.service_account_file, scopes=DRIVE_SCOPES
            )
            self.service = self._build_service(credentials)
        except (GoogleAuthError, GoogleApiError, ValueError) as e:
            raise StorageConnectionError(f"Failed to initialize Google Drive client: {e}")

        self.initialized = True
        logger.info("Google Drive client initialized")

    def test_connection(self) -> bool:
        self._require_initialized()

        try:
            response = self.service.about().get(fields='user').execute()
        except (GoogleApiError, GoogleAuthError) as e:
            raise StorageConnectionError(f"Google Drive connection test failed: {e}")

        email = response.get('user', {}).get('emailAddress', 'unknown')
        logger.info(f"Google Drive connection OK (user: {email})")
        return True

    def upload_file(self, local_path: str, remote_container: str, file_name: str) -> UploadResult:
        self._require_initialized()

        if not os.path.exists(local_path):
            raise UploadError(f"File not found: {local_path}")

        file_size = os.path.getsize(local_path)
        logger.info(f"Uploading to Google Drive: {file_name} ({format_bytes(file_size)})")

        metadata = {'name': file_name, 'parents': [remote_container]}
        media = MediaFileUpload(local_path, mimetype='application/gzip', resumable=True)

        try:
            response = self.service.files().create(
                body=metadata,
                media_body=media,
                fields=_FILE_FIELDS,
                supportsAllDrives=True
            ).execute()
        except (GoogleApiError, GoogleAuthError, OSError) as e:
            raise UploadError(f"Google Drive upload failed: {e}")

        logger.info(f"Upload successful: {response.get('name')} (ID: {response.get('id')})")
        return UploadResult(name=response.get('name', file_name), size=int(response.get('size') or file_size))

    def _query(self, q: str) -> List[dict]:
        files = []
        page_token = None

        while True:
            response = self.service.files().list(
                q=q,
                fields=f'nextPageToken, files({_FILE_FIELDS})',
                orderBy='createdTime desc',
                pageSize=1000,
                pageToken=page_token,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True
            ).execute()

            files.extend(response.get('files', []))
            page_token = response.get('nextPageToken')
            if not page_token:
                return files

    def list_files(self, remote_container: str) -> List[RemoteObject]:
        self._require_initialized()

        q = f"'{_escape(remote_container)}' in parents and trashed = false"
        try:
            raw_files = self._query(q)
        except (GoogleApiError, GoogleAuthError) as e:
            if getattr(getattr(e, 'resp', None), 'status', None) == 404:
                return []
            raise ListError(f"Failed to list Google Drive files: {e}")

        try:
            files = [
                RemoteObject(
                    name=f['name'],
                    size=int(f.get('size') or 0),
                    modified=_parse_rfc3339(f['createdTime']),
                    id=f['id']
                )
                for f in raw_files
            ]
        except (KeyError, ValueError) as e:
            raise ListError(f"Unexpected Google Drive listing: {e}")

        files.sort(key=lambda f: f.modified, reverse=True)
        return files

    def _delete_by_id(self, file_id: str):
        try:
            self.service.files().delete(fileId=file_id, supportsAllDrives=True).execute()
        except (GoogleApiError, GoogleAuthError) as e:
            raise DeleteError(f"Failed to delete file {file_id}: {e}")
        logger.info(f"Deleted file from Google Drive: {file_id}")

    def delete_file(self, remote_container: str, file_name: str):
        self._require_initialized()

        q = (
            f"'{_escape(remote_container)}' in parents and "
            f"name = '{_escape(file_name)}' and trashed = false"
        )
        try:
            matches = self._query(q)
        except (GoogleApiError, GoogleAuthError) as e:
            raise DeleteError(f"Failed to look up {file_name}: {e}")

        if not matches:
            raise DeleteError(f"File not found in folder {remote_container}: {file_name}")

        for match in matches:
            self._delete_by_id(match['id'])

    def _delete_object(self, remote_container: str, obj: RemoteObject):
        self._delete_by_id(obj.id)
