"""
Retention policy enforcement for backups.

Archives are classified newest first:

1. The ``daily_keep`` most recent archives are kept.
2. Of the older ones, the newest archive of each calendar (ISO) week is kept
   for up to ``weekly_keep`` distinct weeks.
3. Of the archives older than the weekly window, the newest archive of each
   calendar month is kept for up to ``monthly_keep`` distinct months.

Everything else is deleted: duplicates within a kept week or month, and
anything older than all three windows. Archives without a sidecar digest
are left alone and take no part in the classification, and the most
recent archive is never deleted.
"""

import logging
from datetime import datetime
from typing import List, Tuple

from hostbackup.models import Archive, RetentionPolicy
from .catalog import BackupCatalog


logger = logging.getLogger(__name__)


def week_key(timestamp: datetime) -> Tuple[int, int]:
    year, week, _ = timestamp.isocalendar()
    return year, week


def month_key(timestamp: datetime) -> Tuple[int, int]:
    return timestamp.year, timestamp.month


class RetentionManager:
    """
    Decides which archives survive and prunes the rest.

    plan() is a pure classification; prune() applies it to the catalog.
    """

    def __init__(self, catalog: BackupCatalog, policy: RetentionPolicy):
        """
        Initialize retention manager.

        Args:
            catalog: Catalog of the destination directory
            policy: Keep counts
        """
        self.catalog = catalog
        self.policy = policy

    def plan(self, archives: List[Archive]) -> Tuple[List[Archive], List[Archive]]:
        """
        Split archives into keep and delete lists.

        Args:
            archives: Archives in any order

        Returns:
            (keep, delete), both newest first. Archives without a sidecar
            appear in neither list.
        """
        candidates = sorted(
            (archive for archive in archives if archive.has_checksum),
            key=lambda archive: archive.timestamp,
            reverse=True
        )

        keep = candidates[:self.policy.daily_keep]
        delete = []
        remaining = candidates[self.policy.daily_keep:]

        for key_func, limit in ((week_key, self.policy.weekly_keep),
                                (month_key, self.policy.monthly_keep)):
            kept_buckets = set()
            overflow = []

            for index, archive in enumerate(remaining):
                bucket = key_func(archive.timestamp)
                if bucket in kept_buckets:
                    delete.append(archive)
                elif len(kept_buckets) < limit:
                    kept_buckets.add(bucket)
                    keep.append(archive)
                else:
                    # Window full: the rest falls through to the next tier
                    overflow = remaining[index:]
                    break

            remaining = overflow

        delete.extend(remaining)

        # Never delete the most recent archive
        if candidates and candidates[0] in delete:
            delete.remove(candidates[0])
            keep.append(candidates[0])

        keep.sort(key=lambda archive: archive.timestamp, reverse=True)
        delete.sort(key=lambda archive: archive.timestamp, reverse=True)
        return keep, delete

    def prune(self, dry_run: bool = False) -> List[str]:
        """
        Delete archives that fall outside the retention windows.

        Running it twice without new archives deletes nothing the second
        time.

        Args:
            dry_run: Only report what would be deleted

        Returns:
            Paths of deleted archives (or those that would be, on a dry run)
        """
        archives = self.catalog.list()

        unmatched = [archive for archive in archives if not archive.has_checksum]
        for archive in unmatched:
            logger.warning(f"Retention: skipping {archive.name} (no checksum file)")

        keep, delete = self.plan(archives)
        logger.info(
            f"Retention {self.policy!r}: {len(archives)} archives, "
            f"keeping {len(keep)}, pruning {len(delete)}"
        )

        deleted = []
        for archive in delete:
            if dry_run:
                logger.info(f"Would delete {archive.name}")
                deleted.append(archive.path)
                continue
            try:
                self.catalog.delete(archive)
                deleted.append(archive.path)
                logger.info(f"Deleted old backup: {archive.name}")
            except OSError as e:
                logger.error(f"Failed to delete {archive.path}: {e}")

        return deleted
