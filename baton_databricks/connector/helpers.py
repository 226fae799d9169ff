"""Shared helpers for the resource syncers."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from baton_databricks.connector.resources import (
    ACCOUNT,
    GROUP,
    PRINCIPAL_TYPES,
    SERVICE_PRINCIPAL,
    USER,
    WORKSPACE,
    Entitlement,
    Grant,
    Resource,
    ResourceId,
)
from baton_databricks.databricks.client import (
    GROUPS_TYPE,
    SERVICE_PRINCIPALS_TYPE,
    USERS_TYPE,
    DatabricksClient,
)
from baton_databricks.databricks.endpoints import Scope
from baton_databricks.databricks.errors import ConnectorError, NotFoundError
from baton_databricks.databricks.models import RuleSet, WorkspacePrincipal

logger = logging.getLogger("baton_databricks.connector")

# Roles relevant to the account API.
ACCOUNT_ADMIN_ROLE = "account_admin"
MARKETPLACE_ADMIN_ROLE = "marketplace.admin"

# Entitlements relevant to the workspace API.
WORKSPACE_ACCESS_ROLE = "workspace-access"
SQL_ACCESS_ROLE = "databricks-sql-access"
CLUSTER_CREATE_ROLE = "allow-cluster-create"
INSTANCE_POOL_CREATE_ROLE = "allow-instance-pool-create"

MEMBER_ENTITLEMENT = "member"

# Member ``$ref`` kinds.
USERS_REF = "Users"
GROUPS_REF = "Groups"
SERVICE_PRINCIPALS_REF = "ServicePrincipals"


@dataclass
class APIAvailability:
    """Which APIs the configured credentials reached during validation."""

    account: bool = False
    workspace: bool = False


class GroupResourceCache:
    """Synced group resources, for nested-group expansion.

    Account groups reappear in workspace listings under the same id, so
    entries are keyed by the listing scope (workspace name, or "" for the
    account) as well as the group id.
    """

    def __init__(self) -> None:
        self._items: dict[tuple[str, str], Resource] = {}
        self._lock = threading.Lock()

    def set(self, group_id: str, resource: Resource) -> None:
        key = (workspace_of(resource.parent_id), group_id)
        with self._lock:
            self._items[key] = resource

    def get(self, group_id: str, parent: Optional[ResourceId] = None) -> Optional[Resource]:
        with self._lock:
            return self._items.get((workspace_of(parent), group_id))


def parse_resource_id(resource_id: str) -> tuple[Optional[ResourceId], ResourceId]:
    """Split ``type/id`` or ``parentType/parentId/type/id``."""
    parts = resource_id.split("/")
    if len(parts) == 2:
        return None, ResourceId(parts[0], parts[1])
    if len(parts) == 4:
        return ResourceId(parts[0], parts[1]), ResourceId(parts[2], parts[3])
    raise ConnectorError(f"invalid resource ID: {resource_id}")


def bare_id(principal: ResourceId) -> str:
    """Platform id of a principal; group resource ids are compound."""
    if principal.resource_type == GROUP.id and "/" in principal.resource:
        return parse_resource_id(principal.resource)[1].resource
    return principal.resource


def group_resource_id(group_id: str, parent: Optional[ResourceId] = None) -> str:
    if parent is not None and parent.resource_type == WORKSPACE.id:
        return "/".join([parent.resource_type, parent.resource, GROUP.id, group_id])
    return "/".join([GROUP.id, group_id])


def group_grant_expansion(
    cache: GroupResourceCache,
    group_id: str,
    parent: Optional[ResourceId] = None,
) -> tuple[ResourceId, list[str]]:
    """Principal id for a group and the member entitlement its grants expand through."""
    cached = cache.get(group_id, parent)
    resource = cached.id.resource if cached else group_resource_id(group_id, parent)
    return ResourceId(GROUP.id, resource), [f"{GROUP.id}:{resource}:{MEMBER_ENTITLEMENT}"]


def is_valid_principal(principal: ResourceId) -> bool:
    return principal.resource_type in PRINCIPAL_TYPES


def workspace_of(resource_id: Optional[ResourceId]) -> str:
    if resource_id is not None and resource_id.resource_type == WORKSPACE.id:
        return resource_id.resource
    return ""


def get_parent_info(resource: Resource) -> tuple[str, str]:
    parent_type = resource.profile_str("parent_type")
    if parent_type is None:
        raise ConnectorError("parent type not found")
    parent_id = resource.profile_str("parent_id")
    if parent_id is None:
        raise ConnectorError("parent id not found")
    return parent_type, parent_id


def prepare_workspace_role(role_resource_id: str) -> str:
    """``<workspace>:<entitlement>`` -> ``<entitlement>``."""
    parts = role_resource_id.split(":")
    if len(parts) != 2:
        return ""
    return parts[1]


def prepare_resource_id(client: DatabricksClient, scope: Scope, principal: str) -> ResourceId:
    """Rule-set principal (``users/<name>`` etc.) -> principal resource id."""
    parts = principal.split("/")
    if len(parts) != 2:
        raise ConnectorError(f"invalid principal format: {principal}")
    kind, key = parts
    # Accept both the API casing (users/...) and member-ref casing (Users/...).
    kind = kind.lower()
    if kind == USERS_TYPE.lower():
        user_id, _ = client.find_user_id(scope, key)
        return ResourceId(USER.id, user_id)
    if kind == GROUPS_TYPE.lower():
        group_id, _ = client.find_group_id(scope, key)
        return ResourceId(GROUP.id, group_id)
    if kind == SERVICE_PRINCIPALS_TYPE.lower():
        sp_id, _ = client.find_service_principal_id(scope, key)
        return ResourceId(SERVICE_PRINCIPAL.id, sp_id)
    raise ConnectorError(f"invalid principal type: {kind}")


def prepare_principal_id(client: DatabricksClient, scope: Scope, principal: ResourceId) -> str:
    """Principal resource id -> rule-set principal (``users/<name>`` etc.)."""
    platform_id = bare_id(principal)
    if principal.resource_type == USER.id:
        user_name, _ = client.find_username(scope, platform_id)
        return f"{USERS_TYPE}/{user_name}"
    if principal.resource_type == GROUP.id:
        display_name, _ = client.find_group_display_name(scope, platform_id)
        return f"{GROUPS_TYPE}/{display_name}"
    if principal.resource_type == SERVICE_PRINCIPAL.id:
        app_id, _ = client.find_service_principal_app_id(scope, platform_id)
        return f"{SERVICE_PRINCIPALS_TYPE}/{app_id}"
    raise ConnectorError(f"invalid principal type: {principal.resource_type}")


def prepare_resource_type(principal: WorkspacePrincipal) -> str:
    if principal.user_name:
        return USER.id
    if principal.group_display_name:
        return GROUP.id
    if principal.service_principal_app_id:
        return SERVICE_PRINCIPAL.id
    raise ConnectorError(f"invalid principal: {principal}")


def account_resource_id(account_id: str) -> ResourceId:
    return ResourceId(ACCOUNT.id, account_id)


def grants_from_rule_sets(
    client: DatabricksClient,
    scope: Scope,
    cache: GroupResourceCache,
    rule_sets: list[RuleSet],
    entitlement_for: Callable[[RuleSet], Optional[Entitlement]],
) -> list[Grant]:
    """One grant per rule-set principal; rule sets mapped to None are skipped.

    Principals whose natural key no longer resolves are logged and skipped.
    """
    grants: list[Grant] = []
    for rule_set in rule_sets:
        entitlement = entitlement_for(rule_set)
        if entitlement is None:
            continue
        for principal in rule_set.principals:
            try:
                principal_id = prepare_resource_id(client, scope, principal)
            except NotFoundError as exc:
                logger.warning(
                    "Rule-set principal not found, skipping: %s",
                    exc,
                    extra={"principal_id": principal, "entitlement": entitlement.id},
                )
                continue
            expandable: list[str] = []
            if principal_id.resource_type == GROUP.id:
                principal_id, expandable = group_grant_expansion(cache, principal_id.resource)
            grants.append(Grant(entitlement, principal_id, expandable))
    return grants
