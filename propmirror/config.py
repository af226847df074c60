"""Configuration loading for propmirror."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class PoliteiaConfig:
    """Remote proposal service connection settings."""

    host: str = "https://proposals.decred.org"
    api_path: str = "/api/v1"
    timeout_seconds: float = 10.0
    verify_tls: bool = True
    csrf_token_ttl_seconds: int = 86400  # Trust a fetched CSRF token for a day

    @property
    def base_url(self) -> str:
        return f"{self.host.rstrip('/')}{self.api_path}"


@dataclass
class SyncConfig:
    """Configuration for the background sync loop."""

    enabled: bool = True
    interval_minutes: float = 10


@dataclass
class StoreConfig:
    """Locations of the local SQLite databases."""

    proposals_db_path: str = "~/.propmirror/proposals.db"
    session_db_path: str = "~/.propmirror/politeia_config.db"


@dataclass
class Config:
    politeia: PoliteiaConfig = field(default_factory=PoliteiaConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    store: StoreConfig = field(default_factory=StoreConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with PROPMIRROR_ prefix."""
    return os.environ.get(f"PROPMIRROR_{key}", default)


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Politeia overrides
    if host := _get_env("HOST"):
        config.politeia.host = host
    if api_path := _get_env("API_PATH"):
        config.politeia.api_path = api_path
    if timeout := _get_env("TIMEOUT"):
        config.politeia.timeout_seconds = float(timeout)
    if verify_tls := _get_env("VERIFY_TLS"):
        config.politeia.verify_tls = _as_bool(verify_tls)
    if csrf_ttl := _get_env("CSRF_TOKEN_TTL"):
        config.politeia.csrf_token_ttl_seconds = int(csrf_ttl)

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _as_bool(sync_enabled)
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.interval_minutes = float(sync_interval)

    # Store overrides
    if proposals_db := _get_env("PROPOSALS_DB_PATH"):
        config.store.proposals_db_path = proposals_db
    if session_db := _get_env("SESSION_DB_PATH"):
        config.store.session_db_path = session_db

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None or missing, uses defaults.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse politeia config
            if "politeia" in data:
                politeia_data = data["politeia"]
                config.politeia = PoliteiaConfig(
                    host=politeia_data.get("host", config.politeia.host),
                    api_path=politeia_data.get("api_path", config.politeia.api_path),
                    timeout_seconds=politeia_data.get(
                        "timeout_seconds", config.politeia.timeout_seconds
                    ),
                    verify_tls=politeia_data.get("verify_tls", config.politeia.verify_tls),
                    csrf_token_ttl_seconds=politeia_data.get(
                        "csrf_token_ttl_seconds", config.politeia.csrf_token_ttl_seconds
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    interval_minutes=sync_data.get(
                        "interval_minutes", config.sync.interval_minutes
                    ),
                )

            # Parse store config
            if "store" in data:
                store_data = data["store"]
                config.store = StoreConfig(
                    proposals_db_path=store_data.get(
                        "proposals_db_path", config.store.proposals_db_path
                    ),
                    session_db_path=store_data.get(
                        "session_db_path", config.store.session_db_path
                    ),
                )

    # Apply environment variable overrides
    return _apply_env_overrides(config)
