"""
Shared pytest fixtures for hostbackup tests.

This module provides fixtures for:
- BackupConfig pointing at temporary directories
- Source trees to back up
- Synthetic archives with sidecar checksums
- Mock scheduler
"""

import logging
import tarfile
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from hostbackup.backup.checksum import compute_checksum
from hostbackup.config import BackupConfig
from hostbackup.models import RetentionPolicy


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers installed by configure_logging() between tests."""
    yield
    logger = logging.getLogger('hostbackup')
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def destination(tmp_path):
    """Empty backup destination directory."""
    path = tmp_path / 'backups'
    path.mkdir()
    return path


@pytest.fixture
def backup_config(tmp_path, destination):
    """
    BackupConfig with default retention, writing into a temp destination.
    """
    return BackupConfig(
        destination_path=str(destination),
        exclude_patterns=frozenset({'.git', 'node_modules', '.cache'}),
        retention=RetentionPolicy(daily_keep=7, weekly_keep=4, monthly_keep=3),
        compression_format='tar.gz',
        log_file=None,
        lock_file=str(tmp_path / 'run' / 'backup.lock'),
    )


@pytest.fixture
def source_tree(tmp_path):
    """
    Create a source directory to back up.

    Creates:
    - src/data.txt (10 bytes)
    - src/.git/config (must be excluded)
    """
    src = tmp_path / 'src'
    src.mkdir()
    (src / 'data.txt').write_bytes(b'0123456789')

    git_dir = src / '.git'
    git_dir.mkdir()
    (git_dir / 'config').write_text('[core]\n')

    return src


@pytest.fixture
def temp_files(tmp_path):
    """
    Create a richer source tree.

    Creates:
    - project/test_file1.txt
    - project/test_file2.log
    - project/nested/test_file3.txt
    - project/node_modules/pkg/index.js (excluded by default patterns)
    - project/test_file.pyc
    """
    project = tmp_path / 'project'
    project.mkdir()
    (project / 'test_file1.txt').write_text('Test content 1')
    (project / 'test_file2.log').write_text('Test log content')

    nested_dir = project / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    modules = project / 'node_modules' / 'pkg'
    modules.mkdir(parents=True)
    (modules / 'index.js').write_text('module.exports = {}')

    (project / 'test_file.pyc').write_bytes(b'compiled python')

    return project


@pytest.fixture
def sample_archive(tmp_path):
    """
    Create a sample archive file (with sidecar) for testing.
    """
    test_dir = tmp_path / 'test_data'
    test_dir.mkdir()
    (test_dir / 'file1.txt').write_text('Content 1')
    (test_dir / 'file2.txt').write_text('Content 2')

    archive_path = tmp_path / 'backup-2024-01-15-0200.tar.gz'
    with tarfile.open(archive_path, 'w:gz') as tar:
        tar.add(test_dir, arcname='test_data')

    compute_checksum(str(archive_path))
    return archive_path


@pytest.fixture
def make_archive(destination):
    """
    Factory for synthetic archives named after a timestamp.

    Usage:
        make_archive(datetime(2024, 3, 1, 12, 0))
        make_archive(datetime(2024, 3, 1, 12, 0), checksum=False)
    """

    def _make(when: datetime, checksum: bool = True, extension: str = 'tar.gz') -> Path:
        path = destination / f"backup-{when:%Y-%m-%d-%H%M}.{extension}"
        path.write_bytes(f"archive {when.isoformat()}".encode())
        if checksum:
            compute_checksum(str(path))
        return path

    return _make


@pytest.fixture
def mock_scheduler():
    """
    Mock APScheduler for testing scheduler functionality.
    """
    import hostbackup.scheduler as scheduler_module

    scheduler_module.scheduler = None
    with patch('hostbackup.scheduler.BlockingScheduler') as mock_sched:
        scheduler_instance = MagicMock()
        mock_sched.return_value = scheduler_instance

        scheduler_instance.running = False
        scheduler_instance.get_jobs.return_value = []

        yield scheduler_instance

    scheduler_module.scheduler = None
