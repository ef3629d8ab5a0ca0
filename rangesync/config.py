"""Configuration loading for rangesync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .log.sync_task import SyncMode


@dataclass
class NodeConfig:
    name: str = "rangesync-node"
    data_dir: str = "~/.rangesync"


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class LogChannelConfig:
    """One event log channel, served at ``/<name>``."""

    name: str
    db_path: str | None = None  # defaults to <data_dir>/<name>.db
    max_events: int = 0  # 0 = keep everything


@dataclass
class SyncConfig:
    """Configuration for periodic log synchronization."""

    enabled: bool = False
    remote_url: str = ""
    interval_seconds: int = 300
    data_mode: str = "push"
    lowest_id_mode: str = "none"
    target_id: str | None = None
    channels: list[str] = field(default_factory=list)  # empty = all channels
    timeout_seconds: float = 30.0
    retry_max_attempts: int = 3

    @property
    def data_sync_mode(self) -> SyncMode:
        return SyncMode.from_string(self.data_mode)

    @property
    def lowest_id_sync_mode(self) -> SyncMode:
        return SyncMode.from_string(self.lowest_id_mode)


@dataclass
class RepositoryConfig:
    customer: str
    name: str
    master: bool = False
    limit: int | None = None
    file_extension: str = ""
    directory: str | None = None
    initial_content_file: str | None = None


@dataclass
class ReplicationConfig:
    """Configuration for periodic repository replication."""

    enabled: bool = False
    remote_url: str = ""
    interval_seconds: int = 300
    timeout_seconds: float = 30.0
    retry_max_attempts: int = 3


def _default_logs() -> list[LogChannelConfig]:
    return [LogChannelConfig(name="auditlog")]


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logs: list[LogChannelConfig] = field(default_factory=_default_logs)
    sync: SyncConfig = field(default_factory=SyncConfig)
    repositories: list[RepositoryConfig] = field(default_factory=list)
    replication: ReplicationConfig = field(default_factory=ReplicationConfig)

    def log_db_path(self, channel: LogChannelConfig) -> Path:
        if channel.db_path:
            return Path(channel.db_path).expanduser()
        return Path(self.node.data_dir).expanduser() / f"{channel.name}.db"

    def get_log_channel(self, name: str) -> LogChannelConfig:
        for channel in self.logs:
            if channel.name == name:
                return channel
        raise KeyError(f"Unknown log channel: {name}")


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with RANGESYNC_ prefix."""
    return os.environ.get(f"RANGESYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Node overrides
    if name := _get_env("NODE_NAME"):
        config.node.name = name
    if data_dir := _get_env("DATA_DIR"):
        config.node.data_dir = data_dir

    # Server overrides
    if host := _get_env("SERVER_HOST"):
        config.server.host = host
    if port := _get_env("SERVER_PORT"):
        config.server.port = int(port)

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _is_true(sync_enabled)
    if remote_url := _get_env("SYNC_REMOTE_URL"):
        config.sync.remote_url = remote_url
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.interval_seconds = int(sync_interval)

    # Replication overrides
    if replication_enabled := _get_env("REPLICATION_ENABLED"):
        config.replication.enabled = _is_true(replication_enabled)
    if remote_url := _get_env("REPLICATION_REMOTE_URL"):
        config.replication.remote_url = remote_url
    if replication_interval := _get_env("REPLICATION_INTERVAL"):
        config.replication.interval_seconds = int(replication_interval)

    return config


def _parse_logs(data: list) -> list[LogChannelConfig]:
    """Parse log channel configurations."""
    channels = []
    for channel_data in data:
        if isinstance(channel_data, str):
            channels.append(LogChannelConfig(name=channel_data))
            continue
        channels.append(
            LogChannelConfig(
                name=channel_data["name"],
                db_path=channel_data.get("db_path"),
                max_events=channel_data.get("max_events", 0),
            )
        )
    return channels


def _parse_repositories(data: list) -> list[RepositoryConfig]:
    """Parse repository configurations."""
    repositories = []
    for repo_data in data:
        repositories.append(
            RepositoryConfig(
                customer=repo_data["customer"],
                name=repo_data["name"],
                master=repo_data.get("master", False),
                limit=repo_data.get("limit"),
                file_extension=repo_data.get("file_extension", ""),
                directory=repo_data.get("directory"),
                initial_content_file=repo_data.get("initial_content_file"),
            )
        )
    return repositories


def _validate(config: Config) -> None:
    # Raises ValueError on an unknown mode
    config.sync.data_sync_mode
    config.sync.lowest_id_sync_mode

    names = [channel.name for channel in config.logs]
    if len(names) != len(set(names)):
        raise ValueError(f"Duplicate log channel names: {names}")
    for channel in config.sync.channels:
        if channel not in names:
            raise ValueError(f"Sync channel {channel!r} is not a configured log")
    for repo in config.repositories:
        if repo.limit is not None and repo.limit < 1:
            raise ValueError(f"Repository {repo.customer}/{repo.name}: limit must be at least 1")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ValueError: If the configuration holds invalid values.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse node config
            if "node" in data:
                node_data = data["node"]
                config.node = NodeConfig(
                    name=node_data.get("name", config.node.name),
                    data_dir=node_data.get("data_dir", config.node.data_dir),
                )

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                )

            # Parse log channels
            if "logs" in data:
                config.logs = _parse_logs(data["logs"] or [])

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    remote_url=sync_data.get("remote_url", config.sync.remote_url),
                    interval_seconds=sync_data.get(
                        "interval_seconds", config.sync.interval_seconds
                    ),
                    data_mode=sync_data.get("data_mode", config.sync.data_mode),
                    lowest_id_mode=sync_data.get(
                        "lowest_id_mode", config.sync.lowest_id_mode
                    ),
                    target_id=sync_data.get("target_id"),
                    channels=sync_data.get("channels", []),
                    timeout_seconds=sync_data.get(
                        "timeout_seconds", config.sync.timeout_seconds
                    ),
                    retry_max_attempts=sync_data.get(
                        "retry_max_attempts", config.sync.retry_max_attempts
                    ),
                )

            # Parse repositories
            if "repositories" in data:
                config.repositories = _parse_repositories(data["repositories"] or [])

            # Parse replication config
            if "replication" in data:
                rep_data = data["replication"]
                config.replication = ReplicationConfig(
                    enabled=rep_data.get("enabled", config.replication.enabled),
                    remote_url=rep_data.get("remote_url", config.replication.remote_url),
                    interval_seconds=rep_data.get(
                        "interval_seconds", config.replication.interval_seconds
                    ),
                    timeout_seconds=rep_data.get(
                        "timeout_seconds", config.replication.timeout_seconds
                    ),
                    retry_max_attempts=rep_data.get(
                        "retry_max_attempts", config.replication.retry_max_attempts
                    ),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    _validate(config)
    return config
