"""Configuration for timed maps.

Centralises the defaults that would otherwise be scattered across
constructor arguments and environment variable reads.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

# Default class-level TTL: 30 minutes
TTL_30_MINS = 30 * 60 * 1000


def _env_max_entry_age() -> int:
    raw = os.environ.get("TIMED_MAP_MAX_ENTRY_AGE_MS")
    if raw is None:
        return TTL_30_MINS
    try:
        value = int(raw.strip())
    except ValueError:
        return TTL_30_MINS
    return value if value > 0 else TTL_30_MINS


@dataclass
class Settings:
    """Library-wide configuration.

    Values come from environment variables with sensible defaults.
    """

    # Entry aging
    default_max_entry_age_ms: int = field(default_factory=_env_max_entry_age)

    # Logging
    log_dir: str = field(
        default_factory=lambda: os.environ.get(
            "TIMED_MAP_LOG_DIR",
            os.path.expanduser("~/.timed-map/logs"),
        )
    )
    log_level: str = field(
        default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO")
    )
    log_max_bytes: int = 10 * 1024 * 1024  # 10 MB
    log_backup_count: int = 5
