"""
Configuration management for property stores.

The configuration is stored as a TOML file in the store directory.
It selects the key/value backend and sets storage and backup limits.
User preferences (theme, auto-save, backup interval) are not kept here;
they live in the settings envelope inside the store itself.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import tomli_w

from .kvstore import DEFAULT_QUOTA_BYTES


CONFIG_FILENAME = "immotrack.toml"
CONFIG_VERSION = 1

DEFAULT_BACKEND = "sqlite"
DEFAULT_RETENTION_DAYS = 30


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    backend: str = DEFAULT_BACKEND
    quota_bytes: int = DEFAULT_QUOTA_BYTES  # 0 = unlimited
    backup_retention_days: int = DEFAULT_RETENTION_DAYS
    include_demo: bool = True

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        """Path to the SQLite key/value database."""
        return self.path / "store.db"

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """
    Resolve the store directory.

    Priority:
    1. IMMOTRACK_STORE_PATH environment variable
    2. ~/.immotrack
    """
    env_path = os.environ.get("IMMOTRACK_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".immotrack"


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    storage = data.get("storage", {})
    backup = data.get("backup", {})
    display = data.get("display", {})

    quota = storage.get("quota_bytes", DEFAULT_QUOTA_BYTES)
    retention = backup.get("retention_days", DEFAULT_RETENTION_DAYS)
    if not isinstance(quota, int) or quota < 0:
        raise ValueError(f"storage.quota_bytes must be a non-negative integer, got {quota!r}")
    if not isinstance(retention, int) or retention <= 0:
        raise ValueError(f"backup.retention_days must be a positive integer, got {retention!r}")

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        backend=store.get("backend", DEFAULT_BACKEND),
        quota_bytes=quota,
        backup_retention_days=retention,
        include_demo=bool(display.get("include_demo", True)),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
        },
        "storage": {
            "quota_bytes": config.quota_bytes,
        },
        "backup": {
            "retention_days": config.backup_retention_days,
        },
        "display": {
            "include_demo": config.include_demo,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return config
