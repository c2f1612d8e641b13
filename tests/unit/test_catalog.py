"""
Unit tests for the archive catalog (hostbackup/backup/catalog.py).
"""

import os
from contextlib import contextmanager
from datetime import datetime
from unittest.mock import patch

import pytest

from hostbackup.backup.catalog import BackupCatalog
from hostbackup.backup.errors import BackupError


class TestBackupCatalog:

    def test_missing_destination_lists_nothing(self, tmp_path):
        assert BackupCatalog(str(tmp_path / 'absent')).list() == []

    def test_lists_archives_oldest_first(self, destination, make_archive):
        make_archive(datetime(2024, 3, 2, 10, 0))
        make_archive(datetime(2024, 3, 1, 23, 59))
        make_archive(datetime(2024, 3, 3, 0, 1), extension='zip')

        archives = BackupCatalog(str(destination)).list()

        assert [archive.name for archive in archives] == [
            'backup-2024-03-01-2359.tar.gz',
            'backup-2024-03-02-1000.tar.gz',
            'backup-2024-03-03-0001.zip',
        ]
        assert archives[0].timestamp == datetime(2024, 3, 1, 23, 59)
        assert all(archive.has_checksum for archive in archives)

    def test_size_and_checksum_state(self, destination, make_archive):
        path = make_archive(datetime(2024, 3, 1, 12, 0), checksum=False)

        archive, = BackupCatalog(str(destination)).list()

        assert archive.path == str(path)
        assert archive.size_bytes == path.stat().st_size
        assert archive.has_checksum is False

    def test_ignores_unrelated_entries(self, destination, make_archive):
        make_archive(datetime(2024, 3, 1, 12, 0))
        (destination / 'notes.txt').write_text('hello')
        (destination / '.backup-2024-03-01-1300.tar.gz.x1y2.partial').write_bytes(b'partial')
        (destination / 'backup-2024-03-01-1400.tar.gz').mkdir()

        names = [archive.name for archive in BackupCatalog(str(destination)).list()]

        assert names == ['backup-2024-03-01-1200.tar.gz']

    def test_does_not_follow_symlinks(self, tmp_path, destination, make_archive):
        make_archive(datetime(2024, 3, 1, 12, 0))
        elsewhere = tmp_path / 'elsewhere.tar.gz'
        elsewhere.write_bytes(b'data')
        os.symlink(elsewhere, destination / 'backup-2024-03-02-1200.tar.gz')

        names = [archive.name for archive in BackupCatalog(str(destination)).list()]

        assert names == ['backup-2024-03-01-1200.tar.gz']

    def test_unreadable_entry_is_skipped_with_warning(self, destination, make_archive, caplog):
        make_archive(datetime(2024, 3, 1, 12, 0))
        make_archive(datetime(2024, 3, 2, 12, 0))

        real_scandir = os.scandir

        class FlakyEntry:
            def __init__(self, entry):
                self._entry = entry
                self.name = entry.name
                self.path = entry.path

            def is_file(self, follow_symlinks=True):
                return self._entry.is_file(follow_symlinks=follow_symlinks)

            def stat(self, follow_symlinks=True):
                if self.name == 'backup-2024-03-01-1200.tar.gz':
                    raise PermissionError("denied")
                return self._entry.stat(follow_symlinks=follow_symlinks)

        @contextmanager
        def flaky_scandir(path):
            with real_scandir(path) as entries:
                yield [FlakyEntry(entry) for entry in entries]

        with patch('hostbackup.backup.catalog.os.scandir', flaky_scandir):
            archives = BackupCatalog(str(destination)).list()

        assert [archive.name for archive in archives] == ['backup-2024-03-02-1200.tar.gz']
        assert 'Skipping unreadable entry' in caplog.text

    def test_delete_removes_archive_and_sidecar(self, destination, make_archive):
        path = make_archive(datetime(2024, 3, 1, 12, 0))
        catalog = BackupCatalog(str(destination))
        archive, = catalog.list()

        catalog.delete(archive)

        assert not path.exists()
        assert not os.path.exists(f"{path}.sha256")
        assert catalog.list() == []

    def test_delete_is_tolerant_of_missing_files(self, destination, make_archive):
        path = make_archive(datetime(2024, 3, 1, 12, 0), checksum=False)
        catalog = BackupCatalog(str(destination))
        archive, = catalog.list()
        path.unlink()

        catalog.delete(archive)

    def test_unreadable_destination(self, destination):
        with patch('hostbackup.backup.catalog.os.scandir', side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(BackupError, match="Cannot read backup destination"):
                BackupCatalog(str(destination)).list()
