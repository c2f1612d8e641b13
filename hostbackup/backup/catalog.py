"""
Catalog of archives in the destination directory.

Archives and their .sha256 sidecars live flat in one directory. Nothing is
cached between runs: every call rescans the filesystem.
"""

import os
import logging
from typing import List

from hostbackup.models import Archive
from .checksum import CHECKSUM_SUFFIX, checksum_path_for
from .compression import parse_archive_timestamp
from .errors import BackupError


logger = logging.getLogger(__name__)


class BackupCatalog:
    """
    Enumerates archives stored in a destination directory.

    Only regular files whose name matches ``backup-YYYY-MM-DD-HHMM.<ext>``
    are listed; symlinks are never followed.
    """

    def __init__(self, destination_path: str):
        """
        Initialize catalog.

        Args:
            destination_path: Directory holding archives and sidecars
        """
        self.destination_path = destination_path

    def list(self) -> List[Archive]:
        """
        List all archives, oldest first.

        Unreadable entries are skipped with a warning.

        Returns:
            List of Archive objects sorted by timestamp ascending
        """
        if not os.path.isdir(self.destination_path):
            logger.info(f"Backup destination does not exist yet: {self.destination_path}")
            return []

        try:
            scanner = os.scandir(self.destination_path)
        except OSError as e:
            raise BackupError(f"Cannot read backup destination {self.destination_path}: {e}",
                              path=self.destination_path) from e

        archives = []

        with scanner as entries:
            for entry in entries:
                if entry.name.endswith(CHECKSUM_SUFFIX):
                    continue

                timestamp = parse_archive_timestamp(entry.name)
                if timestamp is None:
                    continue

                try:
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    stat = entry.stat(follow_symlinks=False)
                except OSError as e:
                    logger.warning(f"Skipping unreadable entry {entry.path}: {e}")
                    continue

                archives.append(Archive(
                    path=entry.path,
                    timestamp=timestamp,
                    size_bytes=stat.st_size,
                    has_checksum=os.path.isfile(checksum_path_for(entry.path)),
                ))

        archives.sort(key=lambda archive: (archive.timestamp, archive.name))
        return archives

    def delete(self, archive: Archive):
        """
        Delete an archive and its sidecar.

        Raises:
            OSError: If deletion fails
        """
        for path in (archive.path, archive.checksum_path):
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
        logger.debug(f"Deleted {archive.path}")

    def __repr__(self):
        return f'<BackupCatalog {self.destination_path}>'
