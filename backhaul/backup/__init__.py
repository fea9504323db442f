"""
Backup module for backhaul.

This module handles the core backup functionality including:
- Database dumps
- Compression
- Remote destinations (Google Drive, S3)
- Run orchestration with retries
- Retention policy enforcement
"""

from .executor import BackupOrchestrator, RunState, run_backup
from .retry import RetryExecutor, RetryExhausted
from .compression import compress_folder, compress_file, generate_archive_filename
from .sources import create_database_dump
from .retention import RetentionManager

__all__ = [
    'BackupOrchestrator',
    'RunState',
    'run_backup',
    'RetryExecutor',
    'RetryExhausted',
    'compress_folder',
    'compress_file',
    'generate_archive_filename',
    'create_database_dump',
    'RetentionManager'
]
