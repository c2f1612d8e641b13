"""
Restore an archive into a target directory.

The archive format is taken from the file name: `.zip` archives are read
with zipfile, anything else as a tar with any compression. Members keep the
relative paths recorded in the archive and can never be written outside the
target directory; symlinks are restored with their recorded targets.
"""

import os
import lzma
import zlib
import logging
import tarfile
import zipfile

from .errors import ArchiveNotFound, ExtractionFailed


logger = logging.getLogger(__name__)


def restore_archive(archive_path: str, dest_dir: str) -> str:
    """
    Extract an archive's full contents into dest_dir.

    Partial output may remain on disk when extraction fails.

    Args:
        archive_path: Path to the archive file
        dest_dir: Directory to extract into (created with parents if absent)

    Returns:
        Absolute path of dest_dir

    Raises:
        ArchiveNotFound: If archive_path does not exist
        ExtractionFailed: On any decompression or extraction error
    """
    if not os.path.isfile(archive_path):
        raise ArchiveNotFound(f"Backup file not found: {archive_path}", path=archive_path)

    dest_dir = os.path.abspath(dest_dir)

    try:
        os.makedirs(dest_dir, exist_ok=True)
        logger.debug(f"Extracting {archive_path} into {dest_dir}")

        if archive_path.endswith('.zip'):
            _extract_zip(archive_path, dest_dir)
        else:
            _extract_tar(archive_path, dest_dir)

    except (tarfile.TarError, zipfile.BadZipFile, zlib.error, lzma.LZMAError, EOFError, OSError) as e:
        raise ExtractionFailed(f"Failed to restore backup {archive_path}: {e}",
                               path=archive_path) from e

    return dest_dir


def _extract_tar(archive_path: str, dest_dir: str):
    # 'r:*' detects gzip, bzip2, xz or no compression. The 'tar' filter
    # refuses member paths outside dest_dir but keeps absolute link targets.
    with tarfile.open(archive_path, 'r:*') as tar:
        tar.extractall(dest_dir, filter='tar')


def _extract_zip(archive_path: str, dest_dir: str):
    with zipfile.ZipFile(archive_path, 'r') as zipf:
        bad_member = zipf.testzip()
        if bad_member is not None:
            raise zipfile.BadZipFile(f"Corrupt member in archive: {bad_member}")
        zipf.extractall(dest_dir)
