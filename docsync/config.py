"""Configuration loading for docsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class UserConfig:
    """Acting user that edits and merges are attributed to."""

    user_name: str = "docsync"
    organisation: str = ""


@dataclass
class StoreConfig:
    db_path: str = "~/.docsync/records.db"


@dataclass
class RemoteConfig:
    base_url: str = ""
    timeout: float = 30.0
    max_retries: int = 3
    backoff_seconds: float = 1.0


@dataclass
class SyncConfig:
    """Configuration for the synchronization pass."""

    enabled: bool = True
    record_types: list[str] = field(default_factory=lambda: ["records"])
    max_concurrency: int = 4
    sync_interval_minutes: int = 5


@dataclass
class HistoryConfig:
    excluded_keys: list[str] = field(default_factory=list)
    """Keys never recorded in histories, on top of sync bookkeeping"""


@dataclass
class Config:
    user: UserConfig = field(default_factory=UserConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with DOCSYNC_ prefix."""
    return os.environ.get(f"DOCSYNC_{key}", default)


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # User overrides
    if user_name := _get_env("USER_NAME"):
        config.user.user_name = user_name
    if organisation := _get_env("USER_ORGANISATION"):
        config.user.organisation = organisation

    # Store overrides
    if db_path := _get_env("DB_PATH"):
        config.store.db_path = db_path

    # Remote overrides
    if base_url := _get_env("REMOTE_URL"):
        config.remote.base_url = base_url
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout = float(timeout)
    if max_retries := _get_env("REMOTE_MAX_RETRIES"):
        config.remote.max_retries = int(max_retries)
    if backoff := _get_env("REMOTE_BACKOFF_SECONDS"):
        config.remote.backoff_seconds = float(backoff)

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = sync_enabled.lower() in ("true", "1", "yes")
    if record_types := _get_env("SYNC_RECORD_TYPES"):
        config.sync.record_types = _split_list(record_types)
    if max_concurrency := _get_env("SYNC_MAX_CONCURRENCY"):
        config.sync.max_concurrency = int(max_concurrency)
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_minutes = int(sync_interval)

    # History overrides
    if excluded := _get_env("HISTORY_EXCLUDED_KEYS"):
        config.history.excluded_keys = _split_list(excluded)

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
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse user config
            if "user" in data:
                user_data = data["user"]
                config.user = UserConfig(
                    user_name=user_data.get("user_name", config.user.user_name),
                    organisation=user_data.get(
                        "organisation", config.user.organisation
                    ),
                )

            # Parse store config
            if "store" in data:
                config.store = StoreConfig(
                    db_path=data["store"].get("db_path", config.store.db_path)
                )

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    base_url=remote_data.get("base_url", config.remote.base_url),
                    timeout=remote_data.get("timeout", config.remote.timeout),
                    max_retries=remote_data.get(
                        "max_retries", config.remote.max_retries
                    ),
                    backoff_seconds=remote_data.get(
                        "backoff_seconds", config.remote.backoff_seconds
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    record_types=sync_data.get(
                        "record_types", config.sync.record_types
                    ),
                    max_concurrency=sync_data.get(
                        "max_concurrency", config.sync.max_concurrency
                    ),
                    sync_interval_minutes=sync_data.get(
                        "sync_interval_minutes", config.sync.sync_interval_minutes
                    ),
                )

            # Parse history config
            if "history" in data:
                config.history = HistoryConfig(
                    excluded_keys=data["history"].get("excluded_keys", [])
                )

    return _apply_env_overrides(config)
