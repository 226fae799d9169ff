"""Endpoint resolution for account-scoped and workspace-scoped calls.

A single table maps ``(endpoint, scope kind)`` to a path template; a
missing entry means the endpoint does not exist in that scope.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from baton_databricks.databricks.errors import UnknownEndpointError

DEFAULT_HOSTNAME = "cloud.databricks.com"


class Endpoint(enum.Enum):
    USERS = "Users"
    GROUPS = "Groups"
    SERVICE_PRINCIPALS = "ServicePrincipals"
    ROLES = "assignable-roles"
    RULE_SETS = "rule-sets"
    WORKSPACES = "workspaces"
    WORKSPACE_ASSIGNMENTS = "permissionassignments"


ACCOUNT = "account"
WORKSPACE = "workspace"

_PATHS: dict[tuple[Endpoint, str], str] = {
    (Endpoint.USERS, ACCOUNT): "/api/2.0/accounts/{account}/scim/v2/Users",
    (Endpoint.USERS, WORKSPACE): "/api/2.0/preview/scim/v2/Users",
    (Endpoint.GROUPS, ACCOUNT): "/api/2.0/accounts/{account}/scim/v2/Groups",
    (Endpoint.GROUPS, WORKSPACE): "/api/2.0/preview/scim/v2/Groups",
    (Endpoint.SERVICE_PRINCIPALS, ACCOUNT): "/api/2.0/accounts/{account}/scim/v2/ServicePrincipals",
    (Endpoint.SERVICE_PRINCIPALS, WORKSPACE): "/api/2.0/preview/scim/v2/ServicePrincipals",
    (Endpoint.ROLES, ACCOUNT): "/api/2.0/preview/accounts/{account}/access-control/assignable-roles",
    (Endpoint.ROLES, WORKSPACE): "/api/2.0/preview/accounts/access-control/assignable-roles",
    (Endpoint.RULE_SETS, ACCOUNT): "/api/2.0/preview/accounts/{account}/access-control/rule-sets",
    (Endpoint.RULE_SETS, WORKSPACE): "/api/2.0/preview/accounts/access-control/rule-sets",
    (Endpoint.WORKSPACES, ACCOUNT): "/api/2.0/accounts/{account}/workspaces",
    (Endpoint.WORKSPACE_ASSIGNMENTS, ACCOUNT): (
        "/api/2.0/accounts/{account}/workspaces/{workspace_id}/permissionassignments"
    ),
}


@dataclass(frozen=True)
class Scope:
    """Target of one call: the account (``workspace == ""``) or one workspace."""

    workspace: str
    base_url: str

    @property
    def is_account(self) -> bool:
        return not self.workspace

    @property
    def kind(self) -> str:
        return ACCOUNT if self.is_account else WORKSPACE


def get_account_hostname(hostname: str, override: str = "") -> str:
    if override:
        return override
    return f"accounts.{hostname or DEFAULT_HOSTNAME}"


class EndpointResolver:
    """Builds scopes and full URLs for one Databricks account."""

    def __init__(self, account_id: str, hostname: str = DEFAULT_HOSTNAME, account_hostname: str = "") -> None:
        self.account_id = account_id
        self.hostname = hostname or DEFAULT_HOSTNAME
        self.account_hostname = get_account_hostname(self.hostname, account_hostname)

    def scope(self, workspace: str = "") -> Scope:
        if workspace:
            return Scope(workspace=workspace, base_url=f"https://{workspace}.{self.hostname}")
        return Scope(workspace="", base_url=f"https://{self.account_hostname}")

    def account_scope(self) -> Scope:
        return self.scope()

    def url(self, scope: Scope, endpoint: Endpoint, *segments: str, **params: str) -> str:
        """Resolve ``endpoint`` in ``scope`` and append any extra path segments."""
        template = _PATHS.get((endpoint, scope.kind))
        if template is None:
            raise UnknownEndpointError(
                f"unknown endpoint {endpoint.value} for {scope.kind} scope"
            )
        path = template.format(account=self.account_id, **params)
        if segments:
            path = "/".join([path.rstrip("/"), *(s.strip("/") for s in segments if s)])
        return scope.base_url + path
