"""Configuration via environment variables with cloud-native secret support.

Credentials may be plain values (local dev, ``.env``) or secret references
(``aws-secret://...``, ``gcp-secret://...``) resolved at load time.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from baton_databricks.databricks.endpoints import DEFAULT_HOSTNAME
from baton_databricks.secrets import resolve_database_url, resolve_secret, resolve_secret_list


class ConfigError(ValueError):
    """Invalid or incomplete configuration."""


@dataclass(frozen=True)
class DatabricksConfig:
    account_id: str
    hostname: str = DEFAULT_HOSTNAME
    account_hostname: str = ""  # "" = accounts.<hostname>
    client_id: str = ""
    client_secret: str = ""
    username: str = ""
    password: str = ""
    workspaces: tuple[str, ...] = ()
    workspace_tokens: tuple[str, ...] = ()
    http_timeout: float = 30.0

    @property
    def uses_oauth(self) -> bool:
        return bool(self.client_id or self.client_secret)

    @property
    def uses_basic_auth(self) -> bool:
        return bool(self.username or self.password)

    @property
    def uses_tokens(self) -> bool:
        return bool(self.workspace_tokens)


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    min_connections: int = 2
    max_connections: int = 10


@dataclass(frozen=True)
class SchedulerConfig:
    databricks_interval_min: int = 60
    misfire_grace_time: int = 300
    max_retries: int = 3


@dataclass(frozen=True)
class ConnectorConfig:
    tenant_id: str
    databricks: DatabricksConfig
    database: Optional[DatabaseConfig] = None
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    batch_size: int = 500


def _split(raw: str) -> tuple[str, ...]:
    return tuple(s.strip() for s in raw.split(",") if s.strip())


def validate_config(cfg: DatabricksConfig) -> None:
    """Check the auth settings before anything talks to the platform.

    Exactly one of OAuth (client id + secret), basic auth (username +
    password) or workspace tokens must be configured.
    """
    if not cfg.account_id:
        raise ConfigError("DATABRICKS_ACCOUNT_ID is required")

    if bool(cfg.client_id) != bool(cfg.client_secret):
        raise ConfigError("DATABRICKS_CLIENT_ID and DATABRICKS_CLIENT_SECRET must be set together")
    if bool(cfg.username) != bool(cfg.password):
        raise ConfigError("DATABRICKS_USERNAME and DATABRICKS_PASSWORD must be set together")

    modes = [m for m, on in (
        ("oauth", cfg.uses_oauth),
        ("basic", cfg.uses_basic_auth),
        ("token", cfg.uses_tokens),
    ) if on]
    if not modes:
        raise ConfigError(
            "no authentication configured: set DATABRICKS_CLIENT_ID/DATABRICKS_CLIENT_SECRET, "
            "DATABRICKS_USERNAME/DATABRICKS_PASSWORD, or DATABRICKS_WORKSPACES/DATABRICKS_WORKSPACE_TOKENS"
        )
    if len(modes) > 1:
        raise ConfigError(f"authentication methods are mutually exclusive, got: {', '.join(modes)}")

    if cfg.workspace_tokens and not cfg.workspaces:
        raise ConfigError("DATABRICKS_WORKSPACE_TOKENS requires DATABRICKS_WORKSPACES")
    if cfg.workspace_tokens and len(cfg.workspaces) != len(cfg.workspace_tokens):
        raise ConfigError(
            "comma-separated list of workspaces and tokens must be the same length. "
            f"Received {len(cfg.workspaces)} workspaces and {len(cfg.workspace_tokens)} tokens"
        )
    if cfg.http_timeout <= 0:
        raise ConfigError("DATABRICKS_HTTP_TIMEOUT must be positive")


def load_databricks_config() -> DatabricksConfig:
    load_dotenv()

    try:
        http_timeout = float(os.environ.get("DATABRICKS_HTTP_TIMEOUT", "30"))
    except ValueError as exc:
        raise ConfigError("DATABRICKS_HTTP_TIMEOUT must be a number") from exc

    cfg = DatabricksConfig(
        account_id=os.environ.get("DATABRICKS_ACCOUNT_ID", ""),
        hostname=os.environ.get("DATABRICKS_HOSTNAME", "") or DEFAULT_HOSTNAME,
        account_hostname=os.environ.get("DATABRICKS_ACCOUNT_HOSTNAME", ""),
        client_id=os.environ.get("DATABRICKS_CLIENT_ID", ""),
        client_secret=resolve_secret(os.environ.get("DATABRICKS_CLIENT_SECRET", "")),
        username=os.environ.get("DATABRICKS_USERNAME", ""),
        password=resolve_secret(os.environ.get("DATABRICKS_PASSWORD", "")),
        workspaces=_split(os.environ.get("DATABRICKS_WORKSPACES", "")),
        workspace_tokens=tuple(resolve_secret_list(os.environ.get("DATABRICKS_WORKSPACE_TOKENS", ""))),
        http_timeout=http_timeout,
    )
    validate_config(cfg)
    return cfg


def load_config(require_database: bool = True) -> ConnectorConfig:
    """Load the full runtime configuration from the environment."""
    load_dotenv()

    tenant_id = os.environ.get("TENANT_ID", "")
    if not tenant_id:
        raise ConfigError("TENANT_ID environment variable is required")

    database = None
    if require_database:
        database = DatabaseConfig(
            url=resolve_database_url(),
            min_connections=int(os.environ.get("DB_MIN_CONNECTIONS", "2")),
            max_connections=int(os.environ.get("DB_MAX_CONNECTIONS", "10")),
        )

    scheduler = SchedulerConfig(
        databricks_interval_min=int(os.environ.get("DATABRICKS_SYNC_INTERVAL_MIN", "60")),
        misfire_grace_time=int(os.environ.get("SCHEDULER_MISFIRE_GRACE_TIME", "300")),
        max_retries=int(os.environ.get("SCHEDULER_MAX_RETRIES", "3")),
    )

    return ConnectorConfig(
        tenant_id=tenant_id,
        databricks=load_databricks_config(),
        database=database,
        scheduler=scheduler,
        batch_size=int(os.environ.get("INGESTION_BATCH_SIZE", "500")),
    )
