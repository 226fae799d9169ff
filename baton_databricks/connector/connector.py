"""Connector assembly: auth selection, validation and the syncer set."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from baton_databricks.config import DatabricksConfig, validate_config
from baton_databricks.connector.account import AccountSyncer
from baton_databricks.connector.groups import GroupSyncer
from baton_databricks.connector.helpers import APIAvailability, GroupResourceCache
from baton_databricks.connector.resources import ResourceSyncer
from baton_databricks.connector.roles import RoleSyncer
from baton_databricks.connector.service_principals import ServicePrincipalSyncer
from baton_databricks.connector.users import UserSyncer
from baton_databricks.connector.workspaces import WorkspaceSyncer
from baton_databricks.databricks.auth import Auth, BasicAuth, NoAuth, OAuth2, TokenAuth
from baton_databricks.databricks.client import DatabricksClient
from baton_databricks.databricks.endpoints import EndpointResolver, get_account_hostname
from baton_databricks.databricks.errors import ConnectorError, DatabricksError
from baton_databricks.databricks.transport import Transport

logger = logging.getLogger("baton_databricks.connector")


@dataclass(frozen=True)
class SchemaField:
    display_name: str
    description: str
    placeholder: str
    order: int
    required: bool = False
    kind: str = "string"


@dataclass(frozen=True)
class ConnectorMetadata:
    display_name: str
    description: str
    account_creation_schema: dict[str, SchemaField] = field(default_factory=dict)


ACCOUNT_CREATION_SCHEMA = {
    "email": SchemaField("Email", "The email address of the user.", "Email", 1, required=True),
    "displayName": SchemaField("Display Name", "User's display name", "Display Name", 2, required=True),
    "givenName": SchemaField("Given Name", "User's given name", "Given Name", 3),
    "familyName": SchemaField("Family Name", "User's family name", "Family Name", 4),
    "active": SchemaField("Active", "if the user is active", "active", 5, kind="bool"),
}


class DatabricksConnector:
    def __init__(self, client: DatabricksClient, workspaces: Optional[list[str]] = None) -> None:
        self.client = client
        self.workspaces = list(workspaces or [])
        self.availability = APIAvailability()
        self.cache = GroupResourceCache()
        self._syncers: Optional[dict[str, ResourceSyncer]] = None

    @property
    def token_auth(self) -> bool:
        return isinstance(self.client.transport.auth, TokenAuth)

    def resource_syncers(self) -> dict[str, ResourceSyncer]:
        """Syncers keyed by resource type id; built once so they share the group cache."""
        if self._syncers is None:
            syncers: list[ResourceSyncer] = [
                AccountSyncer(self.client, self.availability, self.cache),
                GroupSyncer(self.client, self.cache),
                ServicePrincipalSyncer(self.client, self.cache),
                UserSyncer(self.client),
                WorkspaceSyncer(
                    self.client,
                    self.availability,
                    self.cache,
                    workspaces=self.workspaces,
                    token_auth=self.token_auth,
                ),
                RoleSyncer(self.client, self.cache),
            ]
            self._syncers = {s.resource_type.id: s for s in syncers}
        return self._syncers

    def metadata(self) -> ConnectorMetadata:
        return ConnectorMetadata(
            display_name="Databricks",
            description="Connector syncing Databricks workspaces, users, groups, service principals and roles to Baton",
            account_creation_schema=dict(ACCOUNT_CREATION_SCHEMA),
        )

    def _probe_workspace(self, workspace: str, account_available: bool) -> None:
        try:
            self.client.list_roles(self.client.scope(workspace))
        except DatabricksError as exc:
            if not account_available:
                raise ConnectorError(f"failed to validate credentials for workspace {workspace}") from exc
            logger.warning(
                "Workspace API probe failed, relying on the account API: %s",
                exc,
                extra={"workspace": workspace},
            )

    def validate(self) -> APIAvailability:
        """Probe which APIs the credentials reach and record the result.

        Workspace tokens never reach the account API, so the account probe is
        skipped for them. A failing workspace probe is fatal only when the
        account API is unavailable too.
        """
        account_available = False
        workspace_available = False

        if not self.token_auth:
            try:
                self.client.list_roles(self.client.scope())
                account_available = True
            except DatabricksError as exc:
                logger.info("Account API not available: %s", exc)

        if self.workspaces:
            targets = self.workspaces
        else:
            try:
                workspaces, _ = self.client.list_workspaces(self.client.scope())
            except DatabricksError as exc:
                raise ConnectorError("failed to list workspaces") from exc
            targets = [w.deployment_name for w in workspaces]

        for workspace in targets:
            self._probe_workspace(workspace, account_available)
            workspace_available = True

        if not account_available and not workspace_available:
            raise ConnectorError("failed to validate credentials")

        self.availability.account = account_available
        self.availability.workspace = workspace_available
        logger.info(
            "Validated credentials (account API: %s, workspace API: %s)",
            account_available,
            workspace_available,
        )
        return self.availability

    def close(self) -> None:
        self.client.transport.close()


def _tokens_set(workspaces: tuple[str, ...], tokens: tuple[str, ...]) -> bool:
    return len(tokens) > 0 and len(workspaces) == len(tokens)


def prepare_client_auth(cfg: DatabricksConfig) -> Auth:
    """Pick the credential strategy: basic, then OAuth2, then workspace tokens."""
    account_hostname = get_account_hostname(cfg.hostname, cfg.account_hostname)

    if cfg.username and cfg.password:
        logger.info("Using basic auth for account %s as %s", cfg.account_id, cfg.username)
        return BasicAuth(cfg.username, cfg.password)
    if cfg.client_id and cfg.client_secret:
        logger.info("Using OAuth for account %s with client %s", cfg.account_id, cfg.client_id)
        return OAuth2(cfg.account_id, cfg.client_id, cfg.client_secret, account_hostname)
    if _tokens_set(cfg.workspaces, cfg.workspace_tokens):
        logger.info("Using access tokens for account %s", cfg.account_id)
        return TokenAuth(list(cfg.workspaces), list(cfg.workspace_tokens))

    logger.warning(
        "no valid authentication method detected, falling back to NoAuth. "
        "This will likely cause API calls to fail. "
        "Please configure one of: OAuth (client-id + client-secret), "
        "username/password, or personal access token (workspace-tokens + workspaces)"
    )
    return NoAuth()


def new_connector(cfg: DatabricksConfig, **transport_kwargs: Any) -> DatabricksConnector:
    """Validate ``cfg`` and build a connector; call ``validate()`` before syncing."""
    validate_config(cfg)
    resolver = EndpointResolver(cfg.account_id, cfg.hostname, cfg.account_hostname)
    transport = Transport(prepare_client_auth(cfg), timeout=cfg.http_timeout, **transport_kwargs)
    return DatabricksConnector(DatabricksClient(transport, resolver), list(cfg.workspaces))
