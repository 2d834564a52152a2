"""Configuration loading for notesync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class StoreConfig:
    """Configuration for the server-side note store."""

    db_path: str = "~/.notesync/notes.db"
    encoding: str = "base64"  # "base64" or "plain"


@dataclass
class AuthConfig:
    """Static bearer tokens accepted by the server."""

    tokens: dict[str, str] = field(default_factory=dict)
    """Maps bearer token to user id"""


@dataclass
class ClientConfig:
    """Configuration for the client replica and its sync loop."""

    server_url: str = "http://localhost:8080"
    token: str = ""
    db_path: str = "~/.notesync/replica.db"
    sync_interval_minutes: int = 5
    retry_max_attempts: int = 3
    batch_size: int = 100
    timeout_seconds: float = 30.0


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    client: ClientConfig = field(default_factory=ClientConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with NOTESYNC_ prefix."""
    return os.environ.get(f"NOTESYNC_{key}", default)


def _parse_tokens(value: str) -> dict[str, str]:
    """Parse "token1:user1,token2:user2" into a token map."""
    tokens = {}
    for pair in value.split(","):
        token, sep, user_id = pair.strip().partition(":")
        if sep and token and user_id:
            tokens[token] = user_id
    return tokens


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Server overrides
    if host := _get_env("SERVER_HOST"):
        config.server.host = host
    if port := _get_env("SERVER_PORT"):
        config.server.port = int(port)

    # Store overrides
    if db_path := _get_env("STORE_DB_PATH"):
        config.store.db_path = db_path
    if encoding := _get_env("STORE_ENCODING"):
        config.store.encoding = encoding

    # Auth overrides
    if tokens := _get_env("AUTH_TOKENS"):
        config.auth.tokens.update(_parse_tokens(tokens))

    # Client overrides
    if server_url := _get_env("CLIENT_SERVER_URL"):
        config.client.server_url = server_url
    if token := _get_env("CLIENT_TOKEN"):
        config.client.token = token
    if client_db := _get_env("CLIENT_DB_PATH"):
        config.client.db_path = client_db
    if interval := _get_env("CLIENT_SYNC_INTERVAL"):
        config.client.sync_interval_minutes = int(interval)
    if batch_size := _get_env("CLIENT_BATCH_SIZE"):
        config.client.batch_size = int(batch_size)

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

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                )

            # Parse store config
            if "store" in data:
                store_data = data["store"]
                config.store = StoreConfig(
                    db_path=store_data.get("db_path", config.store.db_path),
                    encoding=store_data.get("encoding", config.store.encoding),
                )

            # Parse auth config
            if "auth" in data:
                auth_data = data["auth"]
                config.auth = AuthConfig(
                    tokens={
                        str(token): str(user_id)
                        for token, user_id in (auth_data.get("tokens") or {}).items()
                    },
                )

            # Parse client config
            if "client" in data:
                client_data = data["client"]
                config.client = ClientConfig(
                    server_url=client_data.get("server_url", config.client.server_url),
                    token=client_data.get("token", config.client.token),
                    db_path=client_data.get("db_path", config.client.db_path),
                    sync_interval_minutes=client_data.get(
                        "sync_interval_minutes", config.client.sync_interval_minutes
                    ),
                    retry_max_attempts=client_data.get(
                        "retry_max_attempts", config.client.retry_max_attempts
                    ),
                    batch_size=client_data.get("batch_size", config.client.batch_size),
                    timeout_seconds=client_data.get(
                        "timeout_seconds", config.client.timeout_seconds
                    ),
                )

    # Apply environment variable overrides
    return _apply_env_overrides(config)
