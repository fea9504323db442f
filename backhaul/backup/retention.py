"""
Retention policy enforcement for backups.

Prunes old archives from every destination independently. A destination
whose cleanup fails is logged and skipped; it never affects the others or
the outcome of the run that just uploaded fresh backups.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from backhaul.models import RunReport
from .destinations.base import StorageDestination

logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Manages retention policy enforcement across destinations.
    """

    def __init__(self, destinations: List[StorageDestination], retention_days: int):
        """
        Args:
            destinations: Initialized destinations to prune
            retention_days: Files older than this many days are deleted
        """
        self.destinations = destinations
        self.retention_days = retention_days
        self.logs = []

    def enforce_all_policies(self, report: Optional[RunReport] = None) -> Dict[str, Any]:
        """
        Enforce the retention policy on every destination.

        Args:
            report: Optional run report to record per-destination results into

        Returns:
            Dict with summary of cleanup operations:
            {
                'destinations_processed': int,
                'deleted': int,
                'errors': List[str],
                'logs': List[str]
            }
        """
        self._log(f"Cleaning up backups older than {self.retention_days} days")

        summary = {
            'destinations_processed': 0,
            'deleted': 0,
            'errors': []
        }

        for destination in self.destinations:
            try:
                deleted = self.enforce_destination_policy(destination)
                summary['destinations_processed'] += 1
                summary['deleted'] += deleted
                if report is not None:
                    report.record_cleanup(destination.label, deleted=deleted)
            except Exception as e:
                error_msg = f"Cleanup failed for {destination.label}: {e}"
                self._log(error_msg, logging.ERROR)
                summary['errors'].append(error_msg)
                if report is not None:
                    report.record_cleanup(destination.label, failed=True)

        self._log(
            f"Retention enforcement complete. "
            f"Destinations: {summary['destinations_processed']}, "
            f"Deleted: {summary['deleted']}, "
            f"Errors: {len(summary['errors'])}"
        )

        summary['logs'] = self.logs
        return summary

    def enforce_destination_policy(self, destination: StorageDestination) -> int:
        """
        Prune one destination.

        Returns:
            Number of backups deleted

        Raises:
            StorageError: If the destination listing fails
        """
        self._log(f"Cleaning {destination.label}...")

        deleted_count = destination.cleanup_old_backups(destination.container, self.retention_days)

        if deleted_count > 0:
            self._log(f"  Deleted {deleted_count} old backup(s) from {destination.label}")
        else:
            self._log(f"  No old backups to delete from {destination.label}")

        return deleted_count

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
