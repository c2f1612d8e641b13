"""
Domain exceptions for the backup engine.

Every failure an operator can act on maps to one of these classes. Each
carries the path it concerns and the process exit code the CLI uses.
"""

from typing import Optional


class BackupError(Exception):
    """Base exception for all backup lifecycle failures."""

    exit_code = 1

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class AlreadyRunning(BackupError):
    """Raised when another invocation holds the run lock."""

    exit_code = 5


class SourceNotFound(BackupError):
    """Raised when the source directory is missing or not a directory."""

    exit_code = 3


class CompressionFailed(BackupError):
    """Raised when archive creation fails."""

    exit_code = 4


class ChecksumWriteFailed(BackupError):
    """Raised when the sidecar digest file cannot be written."""

    exit_code = 4


class VerificationError(BackupError):
    """Base class for archive verification failures."""


class ArchiveMissing(VerificationError):
    exit_code = 3


class ChecksumMissing(VerificationError):
    exit_code = 3


class ChecksumMismatch(VerificationError):
    """The archive bytes no longer match the recorded digest (corruption)."""

    exit_code = 6

    def __init__(self, message: str, path: Optional[str] = None,
                 expected: Optional[str] = None, actual: Optional[str] = None):
        super().__init__(message, path)
        self.expected = expected
        self.actual = actual


class RestoreError(BackupError):
    """Base class for restore failures."""


class ArchiveNotFound(RestoreError):
    exit_code = 3


class ExtractionFailed(RestoreError):
    exit_code = 4
