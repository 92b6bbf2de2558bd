"""Configuration loading for ActionSync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class DeviceConfig:
    origin: str = ""  # generated when empty
    max_queue_size: int = 1000


@dataclass
class SyncConfig:
    """Configuration for the device-side sync client."""

    server_url: str = ""
    auto_sync: bool = True
    sync_interval_seconds: float = 30.0
    debounce_seconds: float = 1.0
    retry_attempts: int = 3
    backoff_seconds: float = 1.0  # delay before retry n is backoff * 2**n
    timeout_seconds: float = 10.0


@dataclass
class PersistenceConfig:
    enabled: bool = True
    db_path: str = "~/.actionsync/state.db"


@dataclass
class ServerConfig:
    """Configuration for the log authority HTTP server."""

    host: str = "0.0.0.0"
    port: int = 3000
    recent_records: int = 10


@dataclass
class Config:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with ACTIONSYNC_ prefix."""
    return os.environ.get(f"ACTIONSYNC_{key}", default)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Device overrides
    if origin := _get_env("ORIGIN"):
        config.device.origin = origin
    if max_queue := _get_env("MAX_QUEUE_SIZE"):
        config.device.max_queue_size = int(max_queue)

    # Sync overrides
    if server_url := _get_env("SERVER_URL"):
        config.sync.server_url = server_url
    if auto_sync := _get_env("AUTO_SYNC"):
        config.sync.auto_sync = _parse_bool(auto_sync)
    if interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_seconds = float(interval)
    if debounce := _get_env("DEBOUNCE"):
        config.sync.debounce_seconds = float(debounce)
    if retry := _get_env("RETRY_ATTEMPTS"):
        config.sync.retry_attempts = int(retry)
    if backoff := _get_env("BACKOFF"):
        config.sync.backoff_seconds = float(backoff)
    if timeout := _get_env("TIMEOUT"):
        config.sync.timeout_seconds = float(timeout)

    # Persistence overrides
    if enabled := _get_env("PERSISTENCE_ENABLED"):
        config.persistence.enabled = _parse_bool(enabled)
    if db_path := _get_env("STATE_DB_PATH"):
        config.persistence.db_path = db_path

    # Server overrides
    if host := _get_env("HOST"):
        config.server.host = host
    if port := _get_env("PORT"):
        config.server.port = int(port)

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

            if "device" in data:
                device_data = data["device"]
                config.device = DeviceConfig(
                    origin=device_data.get("origin", config.device.origin),
                    max_queue_size=device_data.get(
                        "max_queue_size", config.device.max_queue_size
                    ),
                )

            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    server_url=sync_data.get("server_url", config.sync.server_url),
                    auto_sync=sync_data.get("auto_sync", config.sync.auto_sync),
                    sync_interval_seconds=sync_data.get(
                        "sync_interval_seconds", config.sync.sync_interval_seconds
                    ),
                    debounce_seconds=sync_data.get(
                        "debounce_seconds", config.sync.debounce_seconds
                    ),
                    retry_attempts=sync_data.get(
                        "retry_attempts", config.sync.retry_attempts
                    ),
                    backoff_seconds=sync_data.get(
                        "backoff_seconds", config.sync.backoff_seconds
                    ),
                    timeout_seconds=sync_data.get(
                        "timeout_seconds", config.sync.timeout_seconds
                    ),
                )

            if "persistence" in data:
                persistence_data = data["persistence"]
                config.persistence = PersistenceConfig(
                    enabled=persistence_data.get(
                        "enabled", config.persistence.enabled
                    ),
                    db_path=persistence_data.get(
                        "db_path", config.persistence.db_path
                    ),
                )

            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    recent_records=server_data.get(
                        "recent_records", config.server.recent_records
                    ),
                )

    return _apply_env_overrides(config)
