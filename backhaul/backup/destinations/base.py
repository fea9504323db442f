"""
Common contract for remote storage destinations.

Each provider (Google Drive API, rclone, boto3) subclasses
StorageDestination and translates its own library errors into the
StorageError family below. Retention cleanup is implemented once here on
top of list_files/delete_file.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from backhaul.config import ConfigError
from backhaul.models import RemoteObject, UploadResult

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base class for destination failures."""
    pass


class StorageConnectionError(StorageError):
    """Raised when credentials or reachability checks fail."""
    pass


class UploadError(StorageError):
    pass


class ListError(StorageError):
    pass


class DeleteError(StorageError):
    pass


class NotInitialized(StorageError):
    """Raised when an I/O method is called before initialize() succeeded."""
    pass


class StorageDestination(ABC):
    """
    Remote storage endpoint that archives are replicated to.

    Lifecycle: construct (validates config), initialize(), then any of
    test_connection/upload_file/list_files/delete_file/cleanup_old_backups.
    """

    #: Stable provider identifier, also the `type` value in settings
    type_name = ''

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = dict(config or {})
        self.initialized = False
        self.label = self.config.get('name') or self.type_name

    @staticmethod
    def _require_field(config: Dict[str, Any], field: str) -> str:
        value = config.get(field)
        if not value:
            raise ConfigError(f"Missing required field '{field}'")
        return value

    def _require_initialized(self):
        if not self.initialized:
            raise NotInitialized(f"{self.get_type()} destination not initialized")

    def get_type(self) -> str:
        return self.type_name

    @property
    def container(self) -> str:
        """Remote container the orchestrator uploads into and prunes."""
        return ''

    @abstractmethod
    def initialize(self):
        """Validate credentials and reachability. Raises StorageConnectionError."""

    @abstractmethod
    def test_connection(self) -> bool:
        """Lightweight reachability check. Raises StorageConnectionError."""

    @abstractmethod
    def upload_file(self, local_path: str, remote_container: str, file_name: str) -> UploadResult:
        """Upload one file. Raises UploadError."""

    @abstractmethod
    def list_files(self, remote_container: str) -> List[RemoteObject]:
        """List files newest first; empty when the container is missing. Raises ListError."""

    @abstractmethod
    def delete_file(self, remote_container: str, file_name: str):
        """Delete one file by name. Raises DeleteError."""

    def _delete_object(self, remote_container: str, obj: RemoteObject):
        self.delete_file(remote_container, obj.name)

    def cleanup_old_backups(self, remote_container: str, retention_days: int) -> int:
        """
        Delete remote files older than the retention window.

        A file is deleted when its timestamp is strictly earlier than
        now - retention_days; a file exactly at the cutoff is kept.

        Args:
            remote_container: Container to prune
            retention_days: Retention window in days

        Returns:
            Number of files deleted

        Raises:
            ListError: If the listing fails (individual delete failures are
                logged and skipped)
        """
        self._require_initialized()

        files = self.list_files(remote_container)
        if not files:
            logger.info(f"{self.label}: no files to clean up")
            return 0

        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)

        deleted_count = 0
        for obj in files:
            modified = obj.modified
            if modified.tzinfo is None:
                modified = modified.replace(tzinfo=timezone.utc)

            if modified < cutoff:
                try:
                    self._delete_object(remote_container, obj)
                    deleted_count += 1
                    logger.info(f"{self.label}: deleted old backup {obj.name} (modified: {modified.isoformat()})")
                except StorageError as e:
                    logger.error(f"{self.label}: failed to delete {obj.name}: {e}")

        return deleted_count

    def __repr__(self):
        return f'<{self.__class__.__name__} {self.label}>'
