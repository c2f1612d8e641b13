"""
APScheduler configuration for running backups on a schedule.

Runs in the foreground (``hostbackup schedule``). Each fired backup goes
through BackupExecutor.create(), so it takes the same host-wide run lock as
a manual run; a run that finds the lock held is logged and skipped.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from hostbackup.backup.errors import AlreadyRunning, BackupError
from hostbackup.backup.executor import BackupExecutor
from hostbackup.config import BackupConfig


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def init_scheduler(config: BackupConfig, source_dir: str, cron: str, timezone: str = None):
    """
    Initialize and configure APScheduler.

    Args:
        config: Backup configuration
        source_dir: Directory to back up on every run
        cron: Crontab expression (e.g. '0 2 * * *')
        timezone: Scheduler timezone (default: local time)

    Returns:
        The scheduler instance

    Raises:
        ValueError: If the cron expression is invalid
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler_kwargs = {'job_defaults': job_defaults}
    if timezone:
        scheduler_kwargs['timezone'] = timezone

    trigger = CronTrigger.from_crontab(cron, timezone=timezone)

    scheduler = BlockingScheduler(**scheduler_kwargs)
    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=trigger,
        args=[config, source_dir],
        id='scheduled_backup',
        name=f'Backup of {source_dir}',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until stop_scheduler() or an interrupt.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    for job in scheduler.get_jobs():
        logger.info(f"Scheduled {job.name} (trigger: {job.trigger})")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler interrupted")
    finally:
        stop_scheduler()


def stop_scheduler():
    """Stop the scheduler and forget it."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None


def _execute_backup_wrapper(config: BackupConfig, source_dir: str):
    """
    Run one scheduled backup.

    Failures are logged; they never stop the scheduler.
    """
    logger.info(f"Scheduler executing backup of {source_dir}")
    try:
        archive = BackupExecutor(config).create(source_dir)
        logger.info(f"Scheduled backup completed: {archive.name}")
    except AlreadyRunning as e:
        logger.warning(f"Scheduled backup skipped: {e}")
    except BackupError as e:
        logger.error(f"Scheduled backup of {source_dir} failed: {e}")
