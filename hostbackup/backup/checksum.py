"""
Checksum ledger for backup archives.

Each archive gets a sidecar file ``<archive>.sha256`` in the standard
``sha256sum`` line format::

    <hex-digest>  <archive filename>

Verification always re-hashes the archive bytes on disk.
"""

import os
import re
import hashlib
import logging
import tempfile

from .errors import (
    ArchiveMissing,
    ChecksumMismatch,
    ChecksumMissing,
    ChecksumWriteFailed,
    VerificationError,
)


logger = logging.getLogger(__name__)

CHECKSUM_SUFFIX = '.sha256'
CHUNK_SIZE = 1024 * 1024  # 1MB

_DIGEST_LINE_RE = re.compile(r'^\\?(?P<digest>[0-9a-fA-F]{64})\s+\*?(?P<name>.+)$')


def checksum_path_for(archive_path: str) -> str:
    """Return the sidecar path for an archive."""
    return f"{archive_path}{CHECKSUM_SUFFIX}"


def hash_file(path: str) -> str:
    """
    Compute the SHA-256 hex digest of a file, reading it in chunks.

    Raises:
        OSError: If the file cannot be read
    """
    sha = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
            sha.update(chunk)
    return sha.hexdigest()


def compute_checksum(archive_path: str) -> str:
    """
    Hash an archive and write its sidecar digest file.

    The sidecar is written to a temporary name and renamed into place, so a
    reader never sees a half-written digest.

    Args:
        archive_path: Path to the archive file

    Returns:
        Path to the sidecar file

    Raises:
        ArchiveMissing: If the archive does not exist
        ChecksumWriteFailed: If the sidecar cannot be written
    """
    if not os.path.isfile(archive_path):
        raise ArchiveMissing(f"Backup file not found: {archive_path}", path=archive_path)

    sidecar_path = checksum_path_for(archive_path)
    directory = os.path.dirname(os.path.abspath(archive_path))
    tmp_path = None

    try:
        digest = hash_file(archive_path)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.', suffix='.sha256.partial')
        with os.fdopen(fd, 'w') as f:
            f.write(f"{digest}  {os.path.basename(archive_path)}\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, sidecar_path)
        tmp_path = None
    except OSError as e:
        raise ChecksumWriteFailed(f"Failed to write checksum for {archive_path}: {e}",
                                  path=sidecar_path) from e
    finally:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)

    logger.debug(f"Wrote checksum {sidecar_path} ({digest})")
    return sidecar_path


def read_recorded_digest(sidecar_path: str) -> str:
    """
    Read the digest recorded in a sidecar file.

    Returns:
        Lower-case hex digest, or '' when the file holds no digest line
    """
    with open(sidecar_path, 'r', encoding='utf-8', errors='replace') as f:
        for line in f:
            match = _DIGEST_LINE_RE.match(line.strip())
            if match:
                return match.group('digest').lower()
    return ''


def verify_checksum(archive_path: str) -> str:
    """
    Verify an archive against its recorded digest.

    Args:
        archive_path: Path to the archive file

    Returns:
        The verified hex digest

    Raises:
        ArchiveMissing: If the archive file is absent
        ChecksumMissing: If the sidecar file is absent
        ChecksumMismatch: If the recomputed digest differs from the recorded one
        VerificationError: If either file cannot be read
    """
    sidecar_path = checksum_path_for(archive_path)

    if not os.path.isfile(archive_path):
        raise ArchiveMissing(f"Backup file not found: {archive_path}", path=archive_path)
    if not os.path.isfile(sidecar_path):
        raise ChecksumMissing(f"Checksum file not found: {sidecar_path}", path=archive_path)

    try:
        expected = read_recorded_digest(sidecar_path)
        actual = hash_file(archive_path)
    except OSError as e:
        raise VerificationError(f"Cannot read {archive_path} or its checksum file: {e}",
                                path=archive_path) from e

    if not expected:
        raise ChecksumMismatch(
            f"Checksum file {sidecar_path} holds no valid digest",
            path=archive_path, expected=None, actual=actual
        )
    if expected != actual:
        raise ChecksumMismatch(
            f"Backup verification failed for {archive_path}: expected {expected}, got {actual}",
            path=archive_path, expected=expected, actual=actual
        )

    return actual
