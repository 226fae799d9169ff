"""Role syncer: account roles and workspace entitlements held directly by principals."""

from __future__ import annotations

import logging
from typing import Optional

from baton_databricks.connector.helpers import (
    ACCOUNT_ADMIN_ROLE,
    CLUSTER_CREATE_ROLE,
    INSTANCE_POOL_CREATE_ROLE,
    MEMBER_ENTITLEMENT,
    SQL_ACCESS_ROLE,
    WORKSPACE_ACCESS_ROLE,
    GroupResourceCache,
    bare_id,
    get_parent_info,
    group_grant_expansion,
    is_valid_principal,
    prepare_workspace_role,
)
from baton_databricks.connector.pagination import (
    RESOURCES_PAGE_SIZE,
    PageState,
    parse_page_token,
    prepare_next_token,
)
from baton_databricks.connector.resources import (
    ACCOUNT,
    GROUP,
    ROLE,
    SERVICE_PRINCIPAL,
    USER,
    WORKSPACE,
    Entitlement,
    Grant,
    Resource,
    ResourceId,
    ResourceSyncer,
    SyncPage,
    assignment_entitlement,
)
from baton_databricks.databricks.client import DatabricksClient
from baton_databricks.databricks.endpoints import Scope
from baton_databricks.databricks.errors import ConnectorError, DatabricksError
from baton_databricks.databricks.models import has_permission
from baton_databricks.databricks.vars import (
    PaginationVars,
    group_roles_attr_vars,
    service_principal_roles_attr_vars,
    user_roles_attr_vars,
)

logger = logging.getLogger("baton_databricks.connector.roles")

ACCOUNT_ROLES = (ACCOUNT_ADMIN_ROLE,)

WORKSPACE_ENTITLEMENTS = (
    WORKSPACE_ACCESS_ROLE,
    SQL_ACCESS_ROLE,
    CLUSTER_CREATE_ROLE,
    INSTANCE_POOL_CREATE_ROLE,
)


def role_resource(role: str, parent: ResourceId) -> Resource:
    # Workspace roles are prefixed so the same entitlement stays distinct per workspace.
    if parent.resource_type == WORKSPACE.id:
        role_id = f"{parent.resource}:{role}"
    else:
        role_id = role
    return Resource(
        id=ResourceId(ROLE.id, role_id),
        display_name=role,
        parent_id=parent,
        profile={
            "role_name": role,
            "parent_type": parent.resource_type,
            "parent_id": parent.resource,
        },
    )


class RoleSyncer(ResourceSyncer):
    resource_type = ROLE

    def __init__(self, client: DatabricksClient, cache: GroupResourceCache) -> None:
        self.client = client
        self.cache = cache

    def list(self, parent_id: Optional[ResourceId], token: str = "") -> SyncPage:
        if parent_id is None:
            return SyncPage([])
        if parent_id.resource_type == ACCOUNT.id:
            return SyncPage([role_resource(r, parent_id) for r in ACCOUNT_ROLES])
        if parent_id.resource_type == WORKSPACE.id:
            return SyncPage([role_resource(e, parent_id) for e in WORKSPACE_ENTITLEMENTS])
        return SyncPage([])

    def _member_entitlement(self, resource: Resource) -> Entitlement:
        return assignment_entitlement(
            resource,
            MEMBER_ENTITLEMENT,
            display_name=f"{resource.display_name} role",
            description=f"{resource.display_name} Databricks role",
        )

    def entitlements(self, resource: Resource, token: str = "") -> SyncPage:
        return SyncPage([self._member_entitlement(resource)])

    def _context(self, resource: Resource) -> tuple[Scope, bool, Optional[ResourceId]]:
        parent_type, parent_id = get_parent_info(resource)
        if parent_type == WORKSPACE.id:
            return self.client.scope(parent_id), True, ResourceId(WORKSPACE.id, parent_id)
        return self.client.scope(), False, None

    def grants(self, resource: Resource, token: str = "") -> SyncPage:
        """Walk users, groups and service principals, one page per call.

        The platform has no "who holds this role" listing, so each principal
        kind is paged through and checked for the role. The page token stacks
        the remaining kinds.
        """
        scope, workspace_level, workspace = self._context(resource)
        role_name = resource.profile_str("role_name")
        if not role_name:
            raise ConnectorError("failed to get role name from role profile")

        bag, page = parse_page_token(token, ROLE.id)
        entitlement = self._member_entitlement(resource)
        rv: list[Grant] = []
        rate_limit = None
        state = bag.resource_type_id

        if state == ROLE.id:
            bag.pop()
            bag.push(PageState(resource_type_id=USER.id))
            bag.push(PageState(resource_type_id=GROUP.id))
            bag.push(PageState(resource_type_id=SERVICE_PRINCIPAL.id))
            return SyncPage(rv, bag.marshal())

        if state not in (USER.id, GROUP.id, SERVICE_PRINCIPAL.id):
            raise ConnectorError(f"invalid resource type: {state}")

        pagination = PaginationVars(page, RESOURCES_PAGE_SIZE)
        try:
            if state == USER.id:
                items, total, rate_limit = self.client.list_users(scope, pagination, user_roles_attr_vars())
                for user in items:
                    if has_permission(user, role_name, workspace_level):
                        rv.append(Grant(entitlement, ResourceId(USER.id, user.id)))
            elif state == GROUP.id:
                items, total, rate_limit = self.client.list_groups(scope, pagination, group_roles_attr_vars())
                for group in items:
                    # Workspace-local groups (admins, users) are not governed here.
                    if not group.is_account_group:
                        continue
                    if has_permission(group, role_name, workspace_level):
                        principal, expandable = group_grant_expansion(self.cache, group.id, workspace)
                        rv.append(Grant(entitlement, principal, expandable))
            else:
                items, total, rate_limit = self.client.list_service_principals(
                    scope, pagination, service_principal_roles_attr_vars()
                )
                for sp in items:
                    if has_permission(sp, role_name, workspace_level):
                        rv.append(Grant(entitlement, ResourceId(SERVICE_PRINCIPAL.id, sp.id)))
        except DatabricksError as exc:
            raise ConnectorError(f"failed to list {state} principals for role {role_name}") from exc

        bag.next(prepare_next_token(page, len(items), total))
        return SyncPage(rv, bag.marshal(), rate_limit)

    def _accessors(self, resource_type: str):
        if resource_type == USER.id:
            return self.client.get_user, self.client.update_user
        if resource_type == GROUP.id:
            return self.client.get_group, self.client.update_group
        if resource_type == SERVICE_PRINCIPAL.id:
            return self.client.get_service_principal, self.client.update_service_principal
        raise ConnectorError(f"invalid principal type: {resource_type}")

    def _change(self, principal: ResourceId, entitlement: Entitlement, grant: bool) -> None:
        """Read the principal, edit its permissions and write it back when changed."""
        scope, workspace_level, _ = self._context(entitlement.resource)
        permission = entitlement.resource.id.resource
        if workspace_level:
            permission = prepare_workspace_role(permission)
        get, update = self._accessors(principal.resource_type)

        try:
            target, _ = get(scope, bare_id(principal))
            if grant:
                changed = target.permissions.add(permission, workspace_level)
            else:
                changed = target.permissions.remove(permission, workspace_level)
            if not changed:
                logger.info(
                    "Role %s already %s, nothing to do",
                    permission,
                    "held" if grant else "absent",
                    extra={"principal_id": str(principal), "entitlement": entitlement.id},
                )
                return
            update(scope, target)
        except DatabricksError as exc:
            raise ConnectorError(f"failed to {'add' if grant else 'remove'} role {permission}") from exc

    def grant(self, principal: ResourceId, entitlement: Entitlement) -> None:
        if not is_valid_principal(principal):
            logger.warning(
                "Only users, groups and service principals can be granted role membership",
                extra={"principal_id": str(principal)},
            )
            raise ConnectorError("only users, groups and service principals can be granted role membership")
        self._change(principal, entitlement, grant=True)

    def revoke(self, grant: Grant) -> None:
        if not is_valid_principal(grant.principal):
            logger.warning(
                "Only users, groups and service principals can have role membership revoked",
                extra={"principal_id": str(grant.principal)},
            )
            raise ConnectorError("only users, groups and service principals can have role membership revoked")
        self._change(grant.principal, grant.entitlement, grant=False)
