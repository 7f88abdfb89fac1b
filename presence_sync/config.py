"""
Configuration for presence sync.

Configuration can be provided directly, read from the ``sync:`` section of a
YAML settings file, or taken from environment variables. Environment
variables win over the file.

Environment Variables:
    PRESENCE_SUPABASE_URL: Supabase project URL
    PRESENCE_SUPABASE_KEY: Supabase publishable (anon) key
    PRESENCE_DATA_DIR: Directory for the local database and auth tokens
    PRESENCE_SESSION_CACHE_TTL: Seconds a fetched auth session is reused
    PRESENCE_MIN_SYNC_INTERVAL: Minimum seconds between sync cycle starts
    PRESENCE_SYNC_INTERVAL: Seconds between automatic sync cycles
    PRESENCE_REMOTE_TIMEOUT: Seconds before a single remote call times out

Settings file (~/.presence/settings.yaml):

```yaml
sync:
  supabase_url: "https://xyzcompany.supabase.co"
  supabase_key: "sb_publishable_..."
  auto_sync_interval: 60
```
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".presence"

_ENV_VARS: dict[str, str] = {
    "supabase_url": "PRESENCE_SUPABASE_URL",
    "supabase_key": "PRESENCE_SUPABASE_KEY",
    "data_dir": "PRESENCE_DATA_DIR",
    "session_cache_ttl": "PRESENCE_SESSION_CACHE_TTL",
    "min_sync_interval": "PRESENCE_MIN_SYNC_INTERVAL",
    "auto_sync_interval": "PRESENCE_SYNC_INTERVAL",
    "remote_timeout": "PRESENCE_REMOTE_TIMEOUT",
}


@dataclass
class SyncConfig:
    """Configuration for the local store, auth cache and sync engine.

    Attributes:
        supabase_url: Supabase project URL (remote sync disabled when empty)
        supabase_key: Supabase publishable key sent as ``apikey``
        data_dir: Directory holding the local database and token file
        db_filename: SQLite file for the local key-value store
        token_filename: File holding the device's auth tokens
        session_cache_ttl: Seconds a fetched session is served from cache
        min_sync_interval: Debounce between sync cycle starts
        auto_sync_interval: Period of the automatic sync loop
        remote_timeout: Timeout for each remote call
    """

    supabase_url: str = ""
    supabase_key: str = ""
    data_dir: Path = DEFAULT_DATA_DIR
    db_filename: str = "presence.db"
    token_filename: str = ".auth-token"
    session_cache_ttl: float = 5.0
    min_sync_interval: float = 5.0
    auto_sync_interval: float = 60.0
    remote_timeout: float = 10.0

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_filename

    @property
    def token_path(self) -> Path:
        return self.data_dir / self.token_filename

    @property
    def remote_enabled(self) -> bool:
        """Remote sync needs both a project URL and a key."""
        return bool(self.supabase_url and self.supabase_key)

    @classmethod
    def from_environment(cls, base: SyncConfig | None = None) -> SyncConfig:
        """Create configuration from environment variables.

        Args:
            base: Optional configuration whose values are used where the
                environment is silent.
        """
        values = _as_dict(base or cls())
        for name, env_var in _ENV_VARS.items():
            raw = os.environ.get(env_var)
            if raw is None or raw == "":
                continue
            values[name] = raw
        return cls(**_coerce(values))

    @classmethod
    def from_file(cls, config_path: Path) -> SyncConfig:
        """Load configuration from the ``sync:`` section of a YAML file.

        A missing or unreadable file yields the defaults.
        """
        section = _load_yaml(config_path).get("sync", {}) or {}
        known = {f.name for f in fields(cls)}
        values = _as_dict(cls())
        values.update({k: v for k, v in section.items() if k in known})
        return cls(**_coerce(values))

    @classmethod
    def load(cls, config_path: Path | None = None) -> SyncConfig:
        """File first (if given), then environment overrides."""
        base = cls.from_file(config_path) if config_path else None
        return cls.from_environment(base)


def _as_dict(config: SyncConfig) -> dict[str, Any]:
    return {f.name: getattr(config, f.name) for f in fields(config)}


def _coerce(values: dict[str, Any]) -> dict[str, Any]:
    """Convert raw (string) values to the declared field types."""
    for name in ("session_cache_ttl", "min_sync_interval", "auto_sync_interval", "remote_timeout"):
        values[name] = float(values[name])
    values["data_dir"] = Path(values["data_dir"])
    for name in ("supabase_url", "supabase_key", "db_filename", "token_filename"):
        values[name] = str(values[name] or "")
    return values


def _load_yaml(config_path: Path) -> dict[str, Any]:
    """Load configuration from YAML file."""
    if not config_path.exists():
        return {}

    try:
        content = config_path.read_text()
        return yaml.safe_load(content) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not read settings file {config_path}: {e}")
        return {}
