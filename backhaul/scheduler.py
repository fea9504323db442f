"""
APScheduler runner for recurring backups.

Reads the cron expression from the `schedule` setting and runs one
backup per trigger in the foreground. The settings and target list are
re-read on every run, so edits take effect without a restart; changing
the schedule itself needs one.
"""

import sys
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from backhaul import configure_logging
from backhaul.config import Config, ConfigError
from backhaul.backup.executor import BackupOrchestrator

logger = logging.getLogger(__name__)

JOB_ID = 'backup'


def _execute_backup_wrapper(config: Config):
    """Run one backup inside the scheduler thread; never lets an error kill the scheduler."""
    try:
        logger.info("Scheduler executing backup run")
        report = BackupOrchestrator(config).execute()
        logger.info(f"Backup run completed with status: {report.state}")
    except Exception:
        logger.exception("Scheduled backup run failed")


def create_scheduler(config: Config) -> BlockingScheduler:
    """
    Build a scheduler with a single cron-triggered backup job.

    Raises:
        ConfigError: If the settings file is missing or the schedule is invalid
    """
    settings = config.load_settings()

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Never overlap two runs
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults, timezone='UTC')
    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config],
        trigger=CronTrigger.from_crontab(settings.schedule, timezone='UTC'),
        id=JOB_ID,
        name=f"Backup ({settings.schedule})",
        replace_existing=True
    )

    logger.info(f"Scheduled backup job ({settings.schedule} UTC)")
    return scheduler


def main():
    config = Config()
    configure_logging(config.log_level, config.log_dir)

    try:
        scheduler = create_scheduler(config)
    except ConfigError as e:
        logger.error(f"Cannot start scheduler: {e}")
        sys.exit(1)

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")


if __name__ == '__main__':
    main()
