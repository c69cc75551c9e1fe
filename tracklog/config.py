"""Configuration loading for tracklog."""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class StorageConfig:
    db_path: str = "~/.tracklog/tracker.db"


@dataclass
class SyncConfig:
    """Configuration for syncing with the remote Gist document."""

    enabled: bool = True
    token: str = ""
    gist_id: str | None = None
    backup_gist_id: str | None = None
    api_base: str = "https://api.github.com"
    filename: str = "tracker-data.json"
    sync_interval_minutes: int = 5
    timeout_seconds: float = 15.0
    max_retries: int = 2
    backoff_seconds: float = 1.0
    error_display_seconds: float = 2.5

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.token) and bool(self.gist_id)


@dataclass
class Config:
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with TRACKLOG_ prefix."""
    return os.environ.get(f"TRACKLOG_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path

    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = sync_enabled.lower() in ("true", "1", "yes")
    if token := _get_env("GITHUB_TOKEN"):
        config.sync.token = token
    if gist_id := _get_env("GIST_ID"):
        config.sync.gist_id = gist_id
    if backup_gist_id := _get_env("BACKUP_GIST_ID"):
        config.sync.backup_gist_id = backup_gist_id
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_minutes = int(sync_interval)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path).expanduser()
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "storage" in data:
                config.storage = StorageConfig(
                    db_path=data["storage"].get("db_path", config.storage.db_path)
                )

            if "sync" in data:
                sync_data = data["sync"]
                defaults = config.sync
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", defaults.enabled),
                    token=sync_data.get("token") or defaults.token,
                    gist_id=sync_data.get("gist_id", defaults.gist_id),
                    backup_gist_id=sync_data.get(
                        "backup_gist_id", defaults.backup_gist_id
                    ),
                    api_base=sync_data.get("api_base", defaults.api_base),
                    filename=sync_data.get("filename", defaults.filename),
                    sync_interval_minutes=sync_data.get(
                        "sync_interval_minutes", defaults.sync_interval_minutes
                    ),
                    timeout_seconds=sync_data.get(
                        "timeout_seconds", defaults.timeout_seconds
                    ),
                    max_retries=sync_data.get("max_retries", defaults.max_retries),
                    backoff_seconds=sync_data.get(
                        "backoff_seconds", defaults.backoff_seconds
                    ),
                    error_display_seconds=sync_data.get(
                        "error_display_seconds", defaults.error_display_seconds
                    ),
                )

    return _apply_env_overrides(config)


def save_config(config: Config, config_path: str | Path) -> Path:
    """Write configuration as YAML, creating parent directories.

    Returns:
        The path written.
    """
    path = Path(config_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(asdict(config), f, sort_keys=False)
    return path
