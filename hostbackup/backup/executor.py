"""
Backup executor - runs one backup lifecycle operation per invocation.

Create workflow:
1. Acquire the run lock
2. Ensure the destination directory exists
3. Create the compressed archive
4. Write the sidecar digest
5. Verify the new archive from disk
6. Enforce the retention policy
7. Release the run lock (on every exit path)

Restore and prune run under the same lock; verify and list do not.
"""

import logging
from datetime import datetime
from typing import List, Optional

from hostbackup import SUCCESS
from hostbackup.config import BackupConfig
from hostbackup.models import Archive
from .catalog import BackupCatalog
from .checksum import compute_checksum, verify_checksum
from .compression import create_archive
from .errors import BackupError, ChecksumMismatch, CompressionFailed
from .lock import RunLock
from .restore import restore_archive
from .retention import RetentionManager


logger = logging.getLogger(__name__)


def format_size(size_bytes: int) -> str:
    """Human readable size, like `du -h`."""
    size = float(size_bytes)
    for unit in ('B', 'K', 'M', 'G'):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == 'B' else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}T"


class BackupExecutor:
    """
    Runs backup lifecycle operations against one configuration.
    """

    def __init__(self, config: BackupConfig):
        """
        Initialize backup executor.

        Args:
            config: Immutable configuration for this run
        """
        self.config = config
        self.catalog = BackupCatalog(config.destination_path)
        self.logs: List[str] = []

    def run_lock(self) -> RunLock:
        return RunLock(self.config.lock_file)

    def create(self, source_dir: str, prune: bool = True) -> Archive:
        """
        Create, checksum and verify a new archive, then enforce retention.

        Args:
            source_dir: Directory to back up
            prune: Enforce the retention policy after a successful backup

        Returns:
            The completed Archive (with digest)

        Raises:
            AlreadyRunning: If another operation holds the run lock
            SourceNotFound: If source_dir is not a directory
            CompressionFailed: If the archive cannot be written
            ChecksumWriteFailed: If the sidecar cannot be written
            ChecksumMismatch: If the fresh archive fails verification
        """
        with self.run_lock():
            try:
                self.config.ensure_destination()
            except OSError as e:
                raise CompressionFailed(
                    f"Cannot create backup destination {self.config.destination_path}: {e}",
                    path=self.config.destination_path
                ) from e
            self._log(f"Starting backup of {source_dir}")

            archive = create_archive(
                source_dir,
                self.config.destination_path,
                self.config.exclude_patterns,
                self.config.compression_format
            )

            try:
                compute_checksum(archive.path)
            except BackupError:
                # An archive without its digest was never complete
                self.catalog.delete(archive)
                raise
            archive.has_checksum = True

            self._log(
                f"Backup created: {archive.name} "
                f"(Size: {format_size(archive.size_bytes)}, Time: {archive.duration_seconds:.0f}s)",
                level=SUCCESS
            )

            archive.digest = self._verify(archive.path)

            if prune:
                self._prune()

        return archive

    def verify(self, archive_path: str) -> str:
        """
        Verify an existing archive against its sidecar digest.

        Returns:
            The verified digest

        Raises:
            VerificationError: ArchiveMissing, ChecksumMissing or ChecksumMismatch
        """
        return self._verify(archive_path)

    def list_archives(self) -> List[Archive]:
        """
        Log and return the archive inventory, oldest first.
        """
        self._log(f"Listing all backups in {self.config.destination_path}")
        archives = self.catalog.list()

        for archive in archives:
            checksum_state = 'sha256' if archive.has_checksum else 'no checksum'
            self._log(
                f"{archive.name}  {format_size(archive.size_bytes):>7}  "
                f"{archive.timestamp:%Y-%m-%d %H:%M}  [{checksum_state}]"
            )

        if not archives:
            self._log("No backups found")
        return archives

    def restore(self, archive_path: str, dest_dir: str, verify: bool = False) -> str:
        """
        Restore an archive into dest_dir under the run lock.

        Args:
            archive_path: Archive to restore
            dest_dir: Target directory
            verify: Check the archive digest before extracting

        Returns:
            Absolute path of the restored directory

        Raises:
            AlreadyRunning: If another operation holds the run lock
            VerificationError: If verify is set and the archive fails it
            RestoreError: ArchiveNotFound or ExtractionFailed
        """
        with self.run_lock():
            if verify:
                self._verify(archive_path)

            self._log(f"Restoring backup {archive_path} to {dest_dir}")
            restored = restore_archive(archive_path, dest_dir)
            self._log(f"Backup restored to {restored}", level=SUCCESS)

        return restored

    def prune(self, dry_run: bool = False) -> List[str]:
        """
        Enforce the retention policy under the run lock.

        Returns:
            Paths deleted (or that would be deleted on a dry run)
        """
        with self.run_lock():
            return self._prune(dry_run=dry_run)

    def _verify(self, archive_path: str) -> str:
        self._log(f"Verifying backup: {archive_path}")
        try:
            digest = verify_checksum(archive_path)
        except ChecksumMismatch as e:
            self._log(f"CORRUPTION: {e}", level=logging.CRITICAL)
            raise
        self._log("Backup verified successfully.", level=SUCCESS)
        return digest

    def _prune(self, dry_run: bool = False) -> List[str]:
        manager = RetentionManager(self.catalog, self.config.retention)
        deleted = manager.prune(dry_run=dry_run)
        verb = 'Would prune' if dry_run else 'Pruned'
        self._log(f"{verb} {len(deleted)} old backup(s)")
        return deleted

    def _log(self, message: str, level: int = logging.INFO):
        """
        Record a log message for this run and emit it.

        Args:
            message: Log message
            level: logging level
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {logging.getLevelName(level)}: {message}")
        logger.log(level, message)
