"""
Backup engine for hostbackup.

This module handles the backup lifecycle:
- Run lock (one mutating operation per host)
- Archive creation with exclusions
- SHA-256 sidecar checksums and verification
- Archive catalog
- Retention policy enforcement
- Restore
"""

from .executor import BackupExecutor
from .lock import RunLock
from .compression import create_archive
from .checksum import compute_checksum, verify_checksum
from .catalog import BackupCatalog
from .retention import RetentionManager
from .restore import restore_archive
from .errors import BackupError

__all__ = [
    'BackupExecutor',
    'RunLock',
    'create_archive',
    'compute_checksum',
    'verify_checksum',
    'BackupCatalog',
    'RetentionManager',
    'restore_archive',
    'BackupError'
]
