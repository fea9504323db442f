"""
Archive creation for backup targets.

Every target becomes a single gzip-compressed tar:
- folders are added recursively under their basename
- database dumps are added as a single file
"""

import os
import tarfile
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = 'tar.gz'
COMPRESS_LEVEL = 6


class ArchiveError(Exception):
    """Raised when archive creation fails."""
    pass


def compress_folder(source_path: str, output_path: str) -> str:
    """
    Compress a directory into a tar.gz archive.

    Args:
        source_path: Directory to archive
        output_path: Full path of the archive to create

    Returns:
        output_path

    Raises:
        ArchiveError: If the source is missing, not a directory, or writing fails
    """
    source = Path(source_path)

    if not source.exists():
        raise ArchiveError(f"Source path does not exist: {source_path}")
    if not source.is_dir():
        raise ArchiveError(f"Source path is not a directory: {source_path}")

    _write_tar(source, output_path)
    logger.info(f"Compressed: {source.name} -> {format_bytes(get_archive_size(output_path))}")
    return output_path


def compress_file(source_path: str, output_path: str) -> str:
    """
    Wrap a single file (a database dump) in a tar.gz archive.

    Raises:
        ArchiveError: If the file is missing or writing fails
    """
    source = Path(source_path)

    if not source.is_file():
        raise ArchiveError(f"Dump file does not exist: {source_path}")

    _write_tar(source, output_path)
    logger.info(f"Compressed DB dump: {source.name} -> {format_bytes(get_archive_size(output_path))}")
    return output_path


def _write_tar(source: Path, archive_path: str):
    Path(archive_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(archive_path, 'w:gz', compresslevel=COMPRESS_LEVEL) as tar:
            # Basename as arcname keeps absolute paths out of the archive
            tar.add(str(source), arcname=source.name, recursive=True)
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                logger.warning(f"Failed to remove partial archive {archive_path}")
        raise ArchiveError(f"Failed to create archive {archive_path}: {e}")


def generate_archive_filename(kind: str, name: str, now: Optional[datetime] = None) -> str:
    """
    Generate the archive filename for a target.

    Format: {kind}-{name}-{YYYYMMDD-HHMMSS}.tar.gz, timestamp in UTC.
    Restore tooling matches on this pattern, so it must not change.

    Args:
        kind: 'folder' or 'db'
        name: Folder basename or database name
        now: Timestamp override

    Returns:
        Filename (without path)
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)

    timestamp = now.strftime('%Y%m%d-%H%M%S')
    return f"{kind}-{name}-{timestamp}.{ARCHIVE_EXTENSION}"


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        ArchiveError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchiveError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchiveError(f"Failed to get archive size: {e}")


def format_bytes(size: int) -> str:
    """Format byte count as human-readable size (1536 -> '1.5 KB')."""
    if size == 0:
        return '0 Bytes'

    units = ['Bytes', 'KB', 'MB', 'GB', 'TB']
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1

    return f"{round(value, 2):g} {units[index]}"
