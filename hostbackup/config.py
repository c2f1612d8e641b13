import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from dotenv import dotenv_values

from hostbackup.models import RetentionPolicy


COMPRESSION_FORMATS = ('tar.gz', 'tar.bz2', 'tar.xz', 'zip', 'none')


class ConfigError(ValueError):
    """Raised when configuration values are invalid."""
    pass


class Config:
    """Built-in defaults, overridable from the environment"""

    # Storage
    BACKUP_DESTINATION = os.environ.get('BACKUP_DESTINATION') or os.path.join('~', 'backups')
    COMPRESSION_FORMAT = os.environ.get('COMPRESSION_FORMAT') or 'tar.gz'

    # Exclusions (comma separated globs)
    EXCLUDE_PATTERNS = os.environ.get('EXCLUDE_PATTERNS') or '.git,node_modules,.cache'

    # Retention
    DAILY_KEEP = os.environ.get('DAILY_KEEP') or '7'
    WEEKLY_KEEP = os.environ.get('WEEKLY_KEEP') or '4'
    MONTHLY_KEEP = os.environ.get('MONTHLY_KEEP') or '3'

    # Runtime files
    CONFIG_FILE = os.environ.get('BACKUP_CONFIG') or './backup.config'
    LOG_FILE = os.environ.get('LOG_FILE') or './backup.log'
    LOCK_FILE = os.environ.get('LOCK_FILE') or '/tmp/backup.lock'


@dataclass(frozen=True)
class BackupConfig:
    """
    Immutable configuration for one invocation.

    Built once at startup by load_config() and handed to every component.
    """

    destination_path: str
    exclude_patterns: FrozenSet[str] = field(default_factory=frozenset)
    retention: RetentionPolicy = field(default_factory=RetentionPolicy)
    compression_format: str = 'tar.gz'
    log_file: Optional[str] = None
    lock_file: str = Config.LOCK_FILE

    def __post_init__(self):
        if self.compression_format not in COMPRESSION_FORMATS:
            raise ConfigError(
                f"Invalid compression format: {self.compression_format}. "
                f"Valid options: {list(COMPRESSION_FORMATS)}"
            )

    def ensure_destination(self) -> str:
        """Create the destination directory if needed and return it."""
        os.makedirs(self.destination_path, exist_ok=True)
        return self.destination_path


def _expand_path(value: str) -> str:
    return os.path.abspath(os.path.expanduser(os.path.expandvars(value)))


def _parse_patterns(value: str) -> FrozenSet[str]:
    return frozenset(p.strip() for p in value.split(',') if p.strip())


def _parse_keep(name: str, value) -> int:
    try:
        count = int(str(value).strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if count < 0:
        raise ConfigError(f"{name} must be >= 0, got {count}")
    return count


def read_config_file(path: str) -> dict:
    """
    Read a KEY=VALUE config file (shell syntax, never executed).

    Missing files yield an empty mapping.
    """
    if not path or not os.path.isfile(path):
        return {}
    values = dotenv_values(path)
    return {key: value for key, value in values.items() if value is not None}


def load_config(config_file: Optional[str] = None, **overrides) -> BackupConfig:
    """
    Build the BackupConfig for this run.

    Precedence: keyword overrides, then the config file, then Config
    defaults (which already include environment variables).

    Args:
        config_file: Path to a KEY=VALUE file (default: Config.CONFIG_FILE)
        **overrides: Config keys (e.g. BACKUP_DESTINATION='/srv/backups')

    Returns:
        BackupConfig instance

    Raises:
        ConfigError: If any value is invalid
    """
    values = {
        key: getattr(Config, key)
        for key in dir(Config) if key.isupper()
    }
    values.update(read_config_file(config_file or Config.CONFIG_FILE))
    values.update({key: value for key, value in overrides.items() if value is not None})

    retention = RetentionPolicy(
        daily_keep=_parse_keep('DAILY_KEEP', values['DAILY_KEEP']),
        weekly_keep=_parse_keep('WEEKLY_KEEP', values['WEEKLY_KEEP']),
        monthly_keep=_parse_keep('MONTHLY_KEEP', values['MONTHLY_KEEP']),
    )

    patterns = values['EXCLUDE_PATTERNS']
    if isinstance(patterns, str):
        patterns = _parse_patterns(patterns)

    log_file = values.get('LOG_FILE')

    return BackupConfig(
        destination_path=_expand_path(values['BACKUP_DESTINATION']),
        exclude_patterns=frozenset(patterns),
        retention=retention,
        compression_format=values['COMPRESSION_FORMAT'].strip(),
        log_file=_expand_path(log_file) if log_file else None,
        lock_file=_expand_path(values['LOCK_FILE']),
    )
