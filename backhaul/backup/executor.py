"""
Backup orchestrator - drives one complete backup run.

Workflow:
1. Load settings and the target list
2. Build destinations, initialize and test every one (any failure is fatal)
3. Archive each target in turn (folder -> tar.gz, database -> dump -> tar.gz)
4. Upload each archive to every destination in parallel
5. Delete a local archive only once every destination has it
6. Prune old backups on each destination
7. Summarize and decide the exit signal
"""

import os
import time
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from backhaul.config import Config, ConfigError
from backhaul.models import Archive, BackupTarget, FolderTarget, RunReport, Settings
from .compression import ArchiveError, compress_file, compress_folder, generate_archive_filename
from .destinations.base import StorageConnectionError, StorageDestination, StorageError
from .destinations.registry import build_from_config
from .retention import RetentionManager
from .retry import RetryExecutor
from .sources import create_database_dump

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    INIT = 'init'
    LOAD_CONFIG = 'load_config'
    INIT_DESTINATIONS = 'init_destinations'
    ARCHIVE_TARGETS = 'archive_targets'
    UPLOAD = 'upload'
    CLEANUP = 'cleanup'
    REPORT = 'report'
    SUCCESS = 'success'
    FAILURE = 'failure'


class BackupOrchestrator:
    """
    Orchestrates the complete backup workflow for one run.

    Collaborators (archivers, dumper, destination builder, sleep) are
    injectable so runs can be driven without touching real storage.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        build_destinations: Callable[[list], List[StorageDestination]] = build_from_config,
        archive_folder: Callable[[str, str], str] = compress_folder,
        archive_file: Callable[[str, str], str] = compress_file,
        dump_database: Callable[[str, str], str] = create_database_dump,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize backup orchestrator.

        Args:
            config: File locations; defaults to a Config read from the environment
            build_destinations: Turns the `uploaders` entries into destinations
            archive_folder: compress_folder(source, output) replacement
            archive_file: compress_file(source, output) replacement
            dump_database: create_database_dump(url, output) replacement
            sleep: Backoff sleep used by the retry executor
        """
        self.config = config or Config()
        self._build_destinations = build_destinations
        self._archive_folder = archive_folder
        self._archive_file = archive_file
        self._dump_database = dump_database
        self._sleep = sleep

        self.state = RunState.INIT
        self.settings: Optional[Settings] = None
        self.targets: List[BackupTarget] = []
        self.destinations: List[StorageDestination] = []
        self.backup_dir = None
        self.retry = None
        self.report = RunReport()
        self.logs = []
        self._claimed_archives: Dict[str, BackupTarget] = {}

    def execute(self) -> RunReport:
        """
        Run the full pipeline.

        Fatal errors (configuration, destination setup) stop the run before
        any archive is made; everything later is isolated per target and
        per destination. The summary is logged in every case.

        Returns:
            The finished RunReport; report.exit_code is the process signal
        """
        started = time.monotonic()

        self._log('========================================')
        self._log('Starting backup process...')
        self._log('========================================')

        try:
            self._load_config()
            self._init_destinations()
            archives = self._archive_targets()
            self._upload_archives(archives)
            self._cleanup_remote()

            self._transition(RunState.REPORT)
            final_state = self._decide_outcome()

        except (ConfigError, StorageError) as e:
            self.report.fatal_error = str(e)
            self._log(f"Backup process failed during {self.state.value}: {e}", logging.ERROR)
            final_state = RunState.FAILURE

        except Exception as e:
            self.report.fatal_error = f"Unexpected error: {e}"
            logger.exception(f"Unexpected error during {self.state.value}")
            self._log(f"Backup process failed: {e}", logging.ERROR)
            final_state = RunState.FAILURE

        self._transition(final_state)
        self.report.state = final_state.value
        self.report.duration_seconds = time.monotonic() - started

        self._log('========================================')
        self._log('Backup process completed!' if self.report.success else 'Backup process finished with errors')
        for line in self.report.summary_lines():
            self._log(line)
        self._log('========================================')

        return self.report

    def _transition(self, state: RunState):
        logger.debug(f"State: {self.state.value} -> {state.value}")
        self.state = state

    def _load_config(self):
        self._transition(RunState.LOAD_CONFIG)
        self._log('Loading configuration...')

        self.settings = self.config.load_settings()
        self.targets = self.config.load_backup_targets()
        self.backup_dir = self.config.ensure_local_backup_dir()

        self.retry = RetryExecutor(
            max_attempts=self.settings.retry_attempts,
            initial_delay=self.settings.retry_initial_delay,
            sleep=self._sleep
        )

        folders = sum(1 for t in self.targets if isinstance(t, FolderTarget))
        self._log(f"Backup targets: {folders} folder(s), {len(self.targets) - folders} database(s)")
        self._log(f"Retention policy: {self.settings.retention_days} days")

    def _init_destinations(self):
        self._transition(RunState.INIT_DESTINATIONS)
        self._log('Initializing uploaders...')

        self.destinations = self._build_destinations(self.settings.uploaders)
        self._log(f"Enabled uploaders: {', '.join(d.label for d in self.destinations)}")

        # Every destination must be reachable before any archive is made
        for destination in self.destinations:
            destination.initialize()
            if not destination.test_connection():
                raise StorageConnectionError(f"Connection test failed for {destination.label}")

    def _archive_targets(self) -> List[Archive]:
        self._transition(RunState.ARCHIVE_TARGETS)

        archives = []
        total = len(self.targets)

        for index, target in enumerate(self.targets, start=1):
            self.report.targets_attempted += 1
            self._log(f"[{index}/{total}] Processing {target.kind}: {target}")

            try:
                archive = self._archive_target(target)
            except Exception as e:
                self.report.targets_failed += 1
                self._log(f"Failed to backup {target.kind} {target}: {e}", logging.ERROR)
                continue

            self.report.archives_created += 1
            archives.append(archive)

        return archives

    def _archive_target(self, target: BackupTarget) -> Archive:
        archive_name = generate_archive_filename(target.kind, target.name, datetime.now(timezone.utc))
        archive_path = os.path.join(self.backup_dir, archive_name)

        # Same basename or db name within one second maps to the same file
        claimed_by = self._claimed_archives.get(archive_path)
        if claimed_by is not None:
            raise ArchiveError(
                f"Archive name {archive_name} already used by {claimed_by.kind} {claimed_by} in this run; "
                f"cannot archive {target.kind} {target}"
            )
        if os.path.exists(archive_path):
            raise ArchiveError(f"Archive {archive_path} already exists; cannot archive {target.kind} {target}")
        self._claimed_archives[archive_path] = target

        if isinstance(target, FolderTarget):
            self.retry.execute(
                lambda: self._archive_folder(target.path, archive_path),
                description=f"archive {target.path}"
            )
            return Archive(archive_path, archive_name, target)

        dump_path = os.path.join(self.backup_dir, f"{target.name}.dump")
        try:
            self.retry.execute(
                lambda: self._dump_database(target.connection_url, dump_path),
                description=f"dump {target.name}"
            )
            self.retry.execute(
                lambda: self._archive_file(dump_path, archive_path),
                description=f"compress {target.name}.dump"
            )
        finally:
            # The raw dump is only an intermediate
            if os.path.exists(dump_path):
                os.remove(dump_path)

        return Archive(archive_path, archive_name, target)

    def _upload_archives(self, archives: List[Archive]):
        self._transition(RunState.UPLOAD)

        if not archives:
            self._log('No archives to upload')
            return

        workers = max(1, min(self.settings.max_parallel_uploads, len(self.destinations)))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='upload') as pool:
            for index, archive in enumerate(archives, start=1):
                self._log(f"[{index}/{len(archives)}] Uploading {archive.display_name}")

                futures = {
                    pool.submit(self._upload_to_destination, archive, destination): destination
                    for destination in self.destinations
                }
                results = {}
                for future in as_completed(futures):
                    results[futures[future].label] = future.result()

                self._finalize_local_archive(archive, all(results.values()))

        for destination in self.destinations:
            stats = self.report.destinations.get(destination.label)
            if stats is not None:
                self._log(
                    f"{destination.label} upload summary: "
                    f"{stats.uploads_succeeded} succeeded, {stats.uploads_failed} failed"
                )

    def _upload_to_destination(self, archive: Archive, destination: StorageDestination) -> bool:
        try:
            self.retry.execute(
                lambda: destination.upload_file(archive.local_path, destination.container, archive.display_name),
                description=f"upload {archive.display_name} to {destination.label}"
            )
        except Exception as e:
            self._log(f"  Failed to upload {archive.display_name} to {destination.label}: {e}", logging.ERROR)
            self.report.record_upload(destination.label, succeeded=False)
            return False

        self.report.record_upload(destination.label, succeeded=True)
        return True

    def _finalize_local_archive(self, archive: Archive, uploaded_everywhere: bool):
        if not uploaded_everywhere:
            if not os.path.exists(archive.local_path):
                self._log(f"Local archive missing, nothing to preserve: {archive.local_path}", logging.ERROR)
                return
            self.report.preserved_archives.append(archive.local_path)
            self._log(
                f"Keeping local archive for manual recovery: {archive.local_path}",
                logging.WARNING
            )
            return

        try:
            os.remove(archive.local_path)
        except OSError as e:
            self._log(f"Failed to remove {archive.display_name}: {e}", logging.WARNING)
            return

        self.report.local_files_removed += 1
        self._log(f"Removed local archive: {archive.display_name}")

    def _cleanup_remote(self):
        self._transition(RunState.CLEANUP)

        manager = RetentionManager(self.destinations, self.settings.retention_days)
        manager.enforce_all_policies(self.report)
        self.logs.extend(manager.logs)

    def _decide_outcome(self) -> RunState:
        if self.report.uploads_failed > 0:
            return RunState.FAILURE

        if self.settings.fail_on_no_archives and self.targets and self.report.archives_created == 0:
            self._log('No archives were produced and fail_on_no_archives is set', logging.ERROR)
            return RunState.FAILURE

        return RunState.SUCCESS

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def run_backup(config: Optional[Config] = None) -> RunReport:
    """
    Execute one backup run with the default collaborators.

    Returns:
        RunReport with execution results
    """
    orchestrator = BackupOrchestrator(config)
    return orchestrator.execute()
