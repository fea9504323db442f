"""
Destinations that shell out to rclone.

rclone must be installed and, normally, pre-configured with a named remote
(`rclone config`). Two flavors share the plumbing:

- RcloneDriveDestination ('gdrive'): a Google Drive remote, files under a
  folder path
- RcloneS3Destination ('s3-rclone'): an S3 remote, files under
  {bucket}/{prefix}

Uploads use `rclone copyto`, so re-uploading a name overwrites it.
"""

import os
import re
import json
import logging
import subprocess
from datetime import datetime, timezone
from typing import Any, Dict, List

from backhaul.models import RemoteObject, UploadResult
from ..compression import format_bytes
from .base import (
    DeleteError,
    ListError,
    StorageConnectionError,
    StorageDestination,
    StorageError,
    UploadError,
)

logger = logging.getLogger(__name__)

RCLONE_INSTALL_HINT = (
    "rclone is not installed. Install it first:\n"
    "  macOS: brew install rclone\n"
    "  Linux: curl https://rclone.org/install.sh | sudo bash"
)

_FRACTION_RE = re.compile(r"\.(\d+)")


class RcloneCommandError(StorageError):
    """rclone exited non-zero."""

    def __init__(self, args: List[str], returncode: int, stderr: str):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"`{' '.join(args[:2])}` exited with {returncode}: {stderr.strip()}")


def parse_mod_time(value: str) -> datetime:
    """
    Parse an rclone ModTime such as 2024-01-15T02:00:05.123456789+09:00.

    rclone emits up to nine fractional digits with trailing zeros trimmed;
    datetime wants exactly six.
    """
    value = value.strip()
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    value = _FRACTION_RE.sub(lambda m: "." + (m.group(1) + "000000")[:6], value)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RcloneDestination(StorageDestination):
    """Shared rclone plumbing; subclasses define where files live."""

    default_remote = ''

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.remote_name = config.get('remote_name') or self.default_remote
        self.rclone_binary = config.get('rclone_binary') or 'rclone'

    @property
    def remote(self) -> str:
        return self.remote_name

    def _run(self, *args: str) -> str:
        cmd = [self.rclone_binary, *args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True
            )
        except FileNotFoundError:
            raise StorageConnectionError(RCLONE_INSTALL_HINT)

        if result.returncode != 0:
            raise RcloneCommandError(cmd, result.returncode, result.stderr or '')
        return result.stdout

    def _list_remotes(self) -> List[str]:
        stdout = self._run('listremotes')
        return [line.strip().rstrip(':') for line in stdout.splitlines() if line.strip()]

    def _check_binary(self):
        try:
            self._run('version')
        except RcloneCommandError as e:
            raise StorageConnectionError(f"rclone is not usable: {e}")

    def _remote_missing(self, remotes: List[str]):
        raise StorageConnectionError(
            f"rclone remote '{self.remote_name}' not found. "
            f"Please run 'rclone config' to set it up.\n"
            f"Available remotes: {', '.join(remotes) or 'none'}"
        )

    def initialize(self):
        self._check_binary()

        try:
            remotes = self._list_remotes()
        except RcloneCommandError as e:
            raise StorageConnectionError(f"Failed to list rclone remotes: {e}")

        if self.remote_name not in remotes:
            self._remote_missing(remotes)

        self.initialized = True
        logger.info(f"rclone client initialized ({self.get_type()}, remote: {self.remote})")

    # Subclasses map a (container, file_name) pair to an rclone path
    def _dir_path(self, remote_container: str) -> str:
        raise NotImplementedError

    def _file_path(self, remote_container: str, file_name: str) -> str:
        raise NotImplementedError

    def _upload_args(self) -> List[str]:
        return []

    def upload_file(self, local_path: str, remote_container: str, file_name: str) -> UploadResult:
        self._require_initialized()

        if not os.path.exists(local_path):
            raise UploadError(f"File not found: {local_path}")

        file_size = os.path.getsize(local_path)
        target = self._file_path(remote_container, file_name)
        logger.info(f"Uploading to {self.label}: {file_name} ({format_bytes(file_size)})")

        try:
            self._run('copyto', local_path, target, *self._upload_args())
        except StorageError as e:
            raise UploadError(f"{self.get_type()} upload failed: {e}")

        logger.info(f"Upload successful: {file_name} -> {target}")
        return UploadResult(name=file_name, size=file_size)

    def list_files(self, remote_container: str) -> List[RemoteObject]:
        self._require_initialized()

        try:
            stdout = self._run('lsjson', self._dir_path(remote_container))
        except RcloneCommandError as e:
            if 'directory not found' in e.stderr.lower():
                return []
            raise ListError(f"Failed to list {self.get_type()} files: {e}")
        except StorageError as e:
            raise ListError(f"Failed to list {self.get_type()} files: {e}")

        if not stdout.strip():
            return []

        try:
            entries = json.loads(stdout)
            files = [
                RemoteObject(
                    name=entry['Name'],
                    size=entry.get('Size', 0),
                    modified=parse_mod_time(entry['ModTime']),
                    # rclone has no stable ids, the path stands in for one
                    id=entry.get('Path', entry['Name'])
                )
                for entry in entries
                if not entry.get('IsDir')
            ]
        except (ValueError, KeyError, TypeError) as e:
            raise ListError(f"Unexpected rclone lsjson output: {e}")

        files.sort(key=lambda f: f.modified, reverse=True)
        return files

    def delete_file(self, remote_container: str, file_name: str):
        self._require_initialized()

        target = self._file_path(remote_container, file_name)
        try:
            self._run('deletefile', target)
        except StorageError as e:
            raise DeleteError(f"Failed to delete {target}: {e}")

        logger.info(f"Deleted file from {self.label}: {file_name}")


class RcloneDriveDestination(RcloneDestination):
    """Google Drive through an rclone remote; the container is a folder path."""

    type_name = 'gdrive'
    default_remote = 'gdrive'

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.folder_path = (config.get('folder_path') or '').strip('/')

    @property
    def container(self) -> str:
        return self.folder_path

    def _dir_path(self, remote_container: str) -> str:
        return f"{self.remote}:{remote_container}"

    def _file_path(self, remote_container: str, file_name: str) -> str:
        folder = remote_container.strip('/')
        return f"{self.remote}:{folder}/{file_name}" if folder else f"{self.remote}:{file_name}"

    def test_connection(self) -> bool:
        self._require_initialized()

        try:
            stdout = self._run('about', f"{self.remote}:")
        except StorageError as e:
            raise StorageConnectionError(f"Google Drive connection test failed: {e}")

        total = next((line.strip() for line in stdout.splitlines() if 'Total:' in line), None)
        if total:
            logger.info(f"Google Drive connection OK ({total})")
        else:
            logger.info("Google Drive connection OK")
        return True


class RcloneS3Destination(RcloneDestination):
    """
    S3 through rclone; objects live at {bucket}/{prefix}{file_name}.

    When the named remote is not configured but AWS credentials are in the
    environment, an on-the-fly remote with env_auth is used instead.
    """

    type_name = 's3-rclone'
    default_remote = 's3'

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.bucket = self._require_field(config, 'bucket')
        self.prefix = config.get('prefix') or ''
        self.region = config.get('region') or 'us-east-1'
        self.storage_class = (config.get('storage_class') or 'STANDARD').upper()
        self._env_auth = False

    @property
    def container(self) -> str:
        return self.prefix

    @property
    def remote(self) -> str:
        if self._env_auth:
            return f":s3,provider=AWS,env_auth=true,region={self.region}"
        return self.remote_name

    def _remote_missing(self, remotes: List[str]):
        if not os.environ.get('AWS_ACCESS_KEY_ID') or not os.environ.get('AWS_SECRET_ACCESS_KEY'):
            raise StorageConnectionError(
                f"rclone remote '{self.remote_name}' not found and AWS credentials not in environment.\n"
                f"Either:\n"
                f"  1. Run 'rclone config' to set up S3 remote\n"
                f"  2. Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables\n"
                f"Available remotes: {', '.join(remotes) or 'none'}"
            )
        logger.info("Using AWS credentials from environment variables (no rclone remote configured)")
        self._env_auth = True

    def _dir_path(self, remote_container: str) -> str:
        return f"{self.remote}:{self.bucket}/{remote_container}"

    def _file_path(self, remote_container: str, file_name: str) -> str:
        return f"{self.remote}:{self.bucket}/{remote_container}{file_name}"

    def _upload_args(self) -> List[str]:
        return ['--s3-storage-class', self.storage_class]

    def test_connection(self) -> bool:
        self._require_initialized()

        try:
            self._run('lsd', f"{self.remote}:{self.bucket}")
        except StorageError as e:
            raise StorageConnectionError(f"S3 connection test failed: {e}")

        logger.info(f"S3 connection OK (bucket: {self.bucket}, region: {self.region})")
        return True
