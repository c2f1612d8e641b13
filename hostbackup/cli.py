"""
Command-line interface.

    hostbackup create <sourceDir>
    hostbackup verify <archivePath>
    hostbackup list
    hostbackup restore <archivePath> <destDir>
    hostbackup prune [--dry-run]
    hostbackup schedule <sourceDir> --cron '0 2 * * *'

Exit status is 0 on success and the error's exit code otherwise.
"""

import logging
import functools

import click

from hostbackup import configure_logging
from hostbackup.backup.errors import BackupError, ChecksumMismatch
from hostbackup.backup.executor import BackupExecutor
from hostbackup.config import ConfigError, load_config


logger = logging.getLogger(__name__)


def handle_backup_errors(func):
    """Log BackupError and exit with its code."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ChecksumMismatch as e:
            # Already reported at CRITICAL by the executor
            raise SystemExit(e.exit_code)
        except BackupError as e:
            logger.error(str(e))
            raise SystemExit(e.exit_code)

    return wrapper


@click.group()
@click.option('-c', '--config', 'config_file', type=click.Path(dir_okay=False),
              envvar='BACKUP_CONFIG', default=None,
              help='KEY=VALUE config file (default: ./backup.config).')
@click.option('-d', '--destination', default=None, help='Override BACKUP_DESTINATION.')
@click.option('-v', '--verbose', is_flag=True, help='Enable debug logging.')
@click.pass_context
def cli(ctx, config_file, destination, verbose):
    """Snapshot, verify, list, restore and prune directory backups."""
    try:
        config = load_config(config_file, BACKUP_DESTINATION=destination)
    except ConfigError as e:
        raise click.UsageError(str(e))

    configure_logging(config, verbose=verbose)
    ctx.obj = BackupExecutor(config)


@cli.command()
@click.argument('source_dir', type=click.Path())
@click.option('--no-prune', is_flag=True, help='Skip retention enforcement after the backup.')
@click.pass_obj
@handle_backup_errors
def create(executor, source_dir, no_prune):
    """Create a new backup of SOURCE_DIR."""
    executor.create(source_dir, prune=not no_prune)


@cli.command()
@click.argument('archive_path', type=click.Path())
@click.pass_obj
@handle_backup_errors
def verify(executor, archive_path):
    """Verify ARCHIVE_PATH against its .sha256 file."""
    executor.verify(archive_path)


@cli.command('list')
@click.pass_obj
@handle_backup_errors
def list_command(executor):
    """List backups in the destination directory."""
    executor.list_archives()


@cli.command()
@click.argument('archive_path', type=click.Path())
@click.argument('dest_dir', type=click.Path(file_okay=False), required=False)
@click.option('--to', 'to_dir', type=click.Path(file_okay=False), default=None,
              help='Destination directory (alternative to DEST_DIR).')
@click.option('--verify', 'verify_first', is_flag=True, help='Verify the checksum before extracting.')
@click.pass_obj
@handle_backup_errors
def restore(executor, archive_path, dest_dir, to_dir, verify_first):
    """Restore ARCHIVE_PATH into DEST_DIR."""
    target = dest_dir or to_dir
    if not target:
        raise click.UsageError('Missing destination directory (DEST_DIR or --to).')
    executor.restore(archive_path, target, verify=verify_first)


@cli.command()
@click.option('--dry-run', is_flag=True, help='Show what would be deleted.')
@click.pass_obj
@handle_backup_errors
def prune(executor, dry_run):
    """Delete backups outside the retention windows."""
    executor.prune(dry_run=dry_run)


@cli.command()
@click.argument('source_dir', type=click.Path())
@click.option('--cron', default='0 2 * * *', show_default=True, help='Crontab schedule.')
@click.option('--timezone', default=None, help='Timezone for the schedule (default: local).')
@click.pass_obj
def schedule(executor, source_dir, cron, timezone):
    """Back up SOURCE_DIR on a cron schedule (runs in the foreground)."""
    from hostbackup.scheduler import init_scheduler, start_scheduler

    try:
        init_scheduler(executor.config, source_dir, cron, timezone=timezone)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='--cron')
    start_scheduler()


def main():
    cli(prog_name='hostbackup')


if __name__ == '__main__':
    main()
