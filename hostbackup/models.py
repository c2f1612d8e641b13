import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class RetentionPolicy:
    """Keep counts for the daily, weekly and monthly retention buckets."""

    daily_keep: int = 7
    weekly_keep: int = 4
    monthly_keep: int = 3

    def __post_init__(self):
        for name in ('daily_keep', 'weekly_keep', 'monthly_keep'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")

    def __repr__(self):
        return (f'<RetentionPolicy daily={self.daily_keep} '
                f'weekly={self.weekly_keep} monthly={self.monthly_keep}>')


@dataclass
class Archive:
    """
    A single backup artifact in the destination directory.

    ``size_bytes`` and ``duration_seconds`` are only filled in for archives
    created during the current run; they are reported, never persisted.
    """

    path: str
    timestamp: datetime
    size_bytes: int = 0
    duration_seconds: Optional[float] = None
    digest: Optional[str] = None
    has_checksum: bool = False

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    @property
    def checksum_path(self) -> str:
        return f"{self.path}.sha256"

    def __repr__(self):
        return f'<Archive {self.name}>'
