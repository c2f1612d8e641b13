"""
Archive writer.

Builds one compressed snapshot of a source directory in the destination
directory. Supports multiple formats:
- tar.gz: Gzip compressed tar (default)
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- zip: Standard zip compression
- none: No compression (tar only)

The archive is written to a hidden temporary file next to its final name
and renamed into place only after it has been fully written and flushed, so
a partial archive is never visible under the canonical name.
"""

import os
import re
import time
import logging
import tarfile
import tempfile
import zipfile
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterable, Optional

from hostbackup.models import Archive
from .errors import CompressionFailed, SourceNotFound


logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = 'backup-'
TIMESTAMP_FORMAT = '%Y-%m-%d-%H%M'

# Format -> (extension, tarfile mode or None for zip)
FORMATS = {
    'tar.gz': ('tar.gz', 'w:gz'),
    'tar.bz2': ('tar.bz2', 'w:bz2'),
    'tar.xz': ('tar.xz', 'w:xz'),
    'zip': ('zip', None),
    'none': ('tar', 'w'),
}

ARCHIVE_NAME_RE = re.compile(
    r'^backup-(?P<stamp>\d{4}-\d{2}-\d{2}-\d{4})\.(?P<ext>tar\.gz|tar\.bz2|tar\.xz|zip|tar)$'
)


def should_exclude(relative_path: str, exclude_patterns: Iterable[str]) -> bool:
    """
    Check if a path inside the source tree should be excluded.

    Patterns are globs matched against each path component and each run
    of consecutive components ('.git', '*.pyc', 'build/cache'), so a path
    is excluded when it or any of its parent directories matches.

    Args:
        relative_path: Path relative to the source directory
        exclude_patterns: Glob patterns

    Returns:
        True if path matches any exclude pattern, False otherwise
    """
    parts = Path(relative_path).parts
    if not parts:
        return False

    candidates = [
        '/'.join(parts[start:end])
        for end in range(1, len(parts) + 1)
        for start in range(end)
    ]

    for pattern in exclude_patterns:
        pattern = pattern.rstrip('/')
        if pattern.startswith('**/'):
            pattern = pattern[3:]
        if any(fnmatch(candidate, pattern) for candidate in candidates):
            return True

    return False


def generate_archive_filename(compression_format: str, when: Optional[datetime] = None) -> str:
    """
    Generate a standardized archive filename.

    Format: backup-{YYYY-MM-DD-HHMM}.{ext}

    Args:
        compression_format: Compression format
        when: Timestamp to use (default: now)

    Returns:
        Filename (without path)
    """
    when = when or datetime.now()
    extension = FORMATS.get(compression_format, FORMATS['tar.gz'])[0]
    return f"{ARCHIVE_PREFIX}{when.strftime(TIMESTAMP_FORMAT)}.{extension}"


def parse_archive_timestamp(filename: str) -> Optional[datetime]:
    """
    Extract the creation timestamp from an archive filename.

    Returns:
        datetime truncated to the minute, or None if the name is not an archive name
    """
    match = ARCHIVE_NAME_RE.match(os.path.basename(filename))
    if not match:
        return None
    try:
        return datetime.strptime(match.group('stamp'), TIMESTAMP_FORMAT)
    except ValueError:
        return None


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionFailed: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionFailed(f"Archive not found: {archive_path}", path=archive_path)
    except OSError as e:
        raise CompressionFailed(f"Failed to get archive size: {e}", path=archive_path) from e


def create_archive(
    source_dir: str,
    destination_path: str,
    exclude_patterns: Iterable[str] = (),
    compression_format: str = 'tar.gz'
) -> Archive:
    """
    Create a compressed archive of a source directory.

    Args:
        source_dir: Directory to snapshot
        destination_path: Directory where the archive is written
        exclude_patterns: Glob patterns to leave out of the archive
        compression_format: Format to use ('tar.gz', 'tar.bz2', 'tar.xz', 'zip', 'none')

    Returns:
        Archive with path, timestamp, size and duration (digest unset)

    Raises:
        SourceNotFound: If source_dir is missing or not a directory
        CompressionFailed: If archive creation fails
        ValueError: If compression_format is invalid
    """
    if compression_format not in FORMATS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(FORMATS.keys())}"
        )

    source = Path(source_dir).expanduser()
    if not source.is_dir():
        raise SourceNotFound(f"Source folder not found: {source_dir}", path=str(source_dir))
    source = source.resolve()

    exclude_patterns = tuple(exclude_patterns)

    # Never archive the destination into itself
    skip_path = None
    destination = Path(destination_path).resolve()
    if source in destination.parents:
        skip_path = destination.relative_to(source).as_posix()
    elif destination == source:
        exclude_patterns += ('.backup-*.partial',)

    timestamp = datetime.now().replace(second=0, microsecond=0)
    archive_path = os.path.join(destination_path, generate_archive_filename(compression_format, timestamp))

    if os.path.exists(archive_path):
        raise CompressionFailed(f"Archive already exists: {archive_path}", path=archive_path)

    try:
        os.makedirs(destination_path, exist_ok=True)
    except OSError as e:
        raise CompressionFailed(f"Cannot create destination {destination_path}: {e}",
                                path=destination_path) from e

    started = time.monotonic()
    partial_path = None

    try:
        fd, partial_path = tempfile.mkstemp(
            dir=destination_path,
            prefix=f".{os.path.basename(archive_path)}.",
            suffix='.partial'
        )
        os.close(fd)

        mode = FORMATS[compression_format][1]
        if mode is None:
            _create_zip(source, partial_path, exclude_patterns, skip_path)
        else:
            _create_tar(source, partial_path, mode, exclude_patterns, skip_path)

        _fsync_path(partial_path)
        os.replace(partial_path, archive_path)
    except Exception as e:
        raise CompressionFailed(f"Backup failed during compression of {source}: {e}",
                                path=archive_path) from e
    finally:
        # Clean up partial archive on failure or interruption
        if partial_path and os.path.exists(partial_path):
            os.remove(partial_path)

    return Archive(
        path=archive_path,
        timestamp=timestamp,
        size_bytes=get_archive_size(archive_path),
        duration_seconds=time.monotonic() - started,
    )


def _is_excluded(relative: str, exclude_patterns: tuple, skip_path: Optional[str]) -> bool:
    if skip_path and (relative == skip_path or relative.startswith(f"{skip_path}/")):
        return True
    return should_exclude(relative, exclude_patterns)


def _fsync_path(path: str):
    with open(path, 'rb') as f:
        os.fsync(f.fileno())


def _create_tar(source: Path, archive_path: str, mode: str, exclude_patterns: tuple,
                skip_path: Optional[str] = None):
    """
    Create a TAR archive rooted at the source directory's basename.

    Args:
        source: Source directory
        archive_path: Output archive path
        mode: tarfile write mode ('w:gz', 'w:bz2', 'w:xz', 'w')
        exclude_patterns: Glob patterns to skip
        skip_path: Relative path left out exactly (the destination directory)
    """
    root = source.name

    def exclude_filter(tarinfo: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        # Returning None also prunes a directory's whole subtree
        relative = tarinfo.name[len(root):].lstrip('/')
        if relative and _is_excluded(relative, exclude_patterns, skip_path):
            logger.debug(f"Excluding {tarinfo.name}")
            return None
        return tarinfo

    with tarfile.open(archive_path, mode) as tar:
        tar.add(source, arcname=root, recursive=True, filter=exclude_filter)


def _create_zip(source: Path, archive_path: str, exclude_patterns: tuple,
                skip_path: Optional[str] = None):
    """
    Create a ZIP archive rooted at the source directory's basename.

    Args:
        source: Source directory
        archive_path: Output archive path
        exclude_patterns: Glob patterns to skip
        skip_path: Relative path left out exactly (the destination directory)
    """
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for directory, dirnames, filenames in os.walk(source):
            relative_dir = Path(directory).relative_to(source)

            # Prune excluded directories in place so os.walk skips them
            dirnames[:] = sorted(
                name for name in dirnames
                if not _is_excluded(str(relative_dir / name), exclude_patterns, skip_path)
            )

            arc_dir = Path(source.name) / relative_dir
            if not filenames and not dirnames:
                zipf.writestr(f"{arc_dir.as_posix()}/", '')

            for name in sorted(filenames):
                relative = relative_dir / name
                if _is_excluded(str(relative), exclude_patterns, skip_path):
                    continue
                zipf.write(Path(directory) / name, (arc_dir / name).as_posix())
