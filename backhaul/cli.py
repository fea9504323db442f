"""
Command-line entry point: run one backup and exit.

Takes no arguments; everything comes from the environment (BACKUP_FILE,
CONFIG_FILE, LOCAL_BACKUP_DIR, LOG_LEVEL, LOG_DIR) and the files they name.
Exit code 0 means the run succeeded, 1 means it did not.
"""

import sys
import logging

from backhaul import configure_logging
from backhaul.config import Config
from backhaul.backup.executor import BackupOrchestrator

logger = logging.getLogger(__name__)


def run() -> int:
    config = Config()
    configure_logging(config.log_level, config.log_dir)

    try:
        report = BackupOrchestrator(config).execute()
    except Exception:
        logger.exception("Backup run crashed")
        return 1

    return report.exit_code


def main():
    sys.exit(run())


if __name__ == '__main__':
    main()
