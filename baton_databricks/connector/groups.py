"""Group syncer: membership and group-scoped role rule sets."""

from __future__ import annotations

import logging
from typing import Optional

from baton_databricks.connector.helpers import (
    GROUPS_REF,
    MEMBER_ENTITLEMENT,
    SERVICE_PRINCIPALS_REF,
    USERS_REF,
    GroupResourceCache,
    bare_id,
    group_grant_expansion,
    group_resource_id,
    grants_from_rule_sets,
    is_valid_principal,
    parse_resource_id,
    prepare_principal_id,
    workspace_of,
)
from baton_databricks.connector.pagination import (
    RESOURCES_PAGE_SIZE,
    parse_page_token,
    prepare_next_token,
)
from baton_databricks.connector.resources import (
    GROUP,
    SERVICE_PRINCIPAL,
    USER,
    Entitlement,
    Grant,
    Resource,
    ResourceId,
    ResourceSyncer,
    SyncPage,
    assignment_entitlement,
    permission_entitlement,
)
from baton_databricks.databricks import rulesets
from baton_databricks.databricks.client import GROUPS_TYPE, DatabricksClient
from baton_databricks.databricks.errors import ConnectorError, DatabricksError
from baton_databricks.databricks.models import Group
from baton_databricks.databricks.vars import PaginationVars, group_attr_vars

logger = logging.getLogger("baton_databricks.connector.groups")


class GroupSyncer(ResourceSyncer):
    resource_type = GROUP

    def __init__(self, client: DatabricksClient, cache: GroupResourceCache) -> None:
        self.client = client
        self.cache = cache

    def group_resource(self, group: Group, parent: Optional[ResourceId]) -> Resource:
        profile = {
            "display_name": group.display_name,
            "group_id": group.id,
            "parent_type": parent.resource_type if parent else "",
            "parent_id": parent.resource if parent else "",
        }
        # Each ref carries both the member kind and its id.
        refs = [m.ref for m in group.members]
        if refs:
            profile["members"] = ",".join(refs)

        resource = Resource(
            id=ResourceId(GROUP.id, group_resource_id(group.id, parent)),
            display_name=group.display_name,
            parent_id=parent,
            profile=profile,
        )
        self.cache.set(group.id, resource)
        return resource

    def list(self, parent_id: Optional[ResourceId], token: str = "") -> SyncPage:
        if parent_id is None:
            return SyncPage([])

        scope = self.client.scope(workspace_of(parent_id))
        bag, page = parse_page_token(token, GROUP.id)
        try:
            groups, total, rate_limit = self.client.list_groups(
                scope, PaginationVars(page, RESOURCES_PAGE_SIZE), group_attr_vars()
            )
        except DatabricksError as exc:
            raise ConnectorError("failed to list groups") from exc

        resources = [self.group_resource(g, parent_id) for g in groups]
        next_token = bag.next_token(prepare_next_token(page, len(groups), total))
        return SyncPage(resources, next_token, rate_limit)

    def _role_entitlement(self, resource: Resource, role: str) -> Entitlement:
        return permission_entitlement(
            resource,
            role,
            display_name=f"{role} role",
            description=f"{role} role in Databricks",
        )

    def entitlements(self, resource: Resource, token: str = "") -> SyncPage:
        """Membership plus one permission per role assignable on this group."""
        scope = self.client.scope(workspace_of(resource.parent_id))
        _, group_id = parse_resource_id(resource.id.resource)

        rv: list[Entitlement] = [
            assignment_entitlement(
                resource,
                MEMBER_ENTITLEMENT,
                display_name=f"{resource.display_name} {MEMBER_ENTITLEMENT}",
                description=f"{resource.display_name} {MEMBER_ENTITLEMENT} in Databricks",
            )
        ]
        try:
            roles, rate_limit = self.client.list_roles(scope, GROUPS_TYPE, group_id.resource)
        except DatabricksError as exc:
            raise ConnectorError(f"failed to list roles for group {group_id.resource}") from exc

        rv.extend(self._role_entitlement(resource, role.name) for role in roles)
        return SyncPage(rv, "", rate_limit)

    def _member_grants(self, resource: Resource, member_entitlement: Entitlement) -> list[Grant]:
        members = resource.profile_str("members")
        if not members:
            return []

        grants: list[Grant] = []
        for ref in members.split(","):
            parts = ref.split("/")
            if len(parts) != 2:
                raise ConnectorError(f"invalid member format of {ref}")
            kind, member_id = parts
            expandable: list[str] = []
            if kind == USERS_REF:
                principal = ResourceId(USER.id, member_id)
            elif kind == GROUPS_REF:
                principal, expandable = group_grant_expansion(self.cache, member_id, resource.parent_id)
            elif kind == SERVICE_PRINCIPALS_REF:
                principal = ResourceId(SERVICE_PRINCIPAL.id, member_id)
            else:
                raise ConnectorError(f"invalid member type: {kind}")
            grants.append(Grant(member_entitlement, principal, expandable))
        return grants

    def grants(self, resource: Resource, token: str = "") -> SyncPage:
        """Members from the synced profile, then role holders from the rule set."""
        parent, group_id = parse_resource_id(resource.id.resource)
        scope = self.client.scope(workspace_of(parent))

        member_entitlement = assignment_entitlement(
            resource,
            MEMBER_ENTITLEMENT,
            display_name=f"{resource.display_name} {MEMBER_ENTITLEMENT}",
            description=f"{resource.display_name} {MEMBER_ENTITLEMENT} in Databricks",
        )
        rv = self._member_grants(resource, member_entitlement)

        try:
            rule_sets, rate_limit = self.client.list_rule_sets(scope, GROUPS_TYPE, group_id.resource)
        except DatabricksError as exc:
            raise ConnectorError(f"failed to list role rule sets for group {resource.id.resource}") from exc

        rv.extend(
            grants_from_rule_sets(
                self.client,
                scope,
                self.cache,
                rule_sets,
                lambda rs: self._role_entitlement(resource, rs.role),
            )
        )
        return SyncPage(rv, "", rate_limit)

    def _target(self, entitlement: Entitlement):
        parent, group_id = parse_resource_id(entitlement.resource.id.resource)
        return self.client.scope(workspace_of(parent)), group_id.resource

    def grant(self, principal: ResourceId, entitlement: Entitlement) -> None:
        if not is_valid_principal(principal):
            logger.warning(
                "Only users, groups and service principals can be granted group permissions",
                extra={"principal_id": str(principal)},
            )
            raise ConnectorError("only users, groups and service principals can be granted group permissions")

        scope, group_id = self._target(entitlement)
        try:
            if entitlement.slug == MEMBER_ENTITLEMENT:
                group, _ = self.client.get_group(scope, group_id)
                if not rulesets.add_member(group, bare_id(principal)):
                    logger.info(
                        "Group already has the member",
                        extra={"principal_id": principal.resource, "entitlement": entitlement.id},
                    )
                    return
                self.client.update_group(scope, group)
                return

            principal_key = prepare_principal_id(self.client, scope, principal)
            rulesets.grant_rule(self.client, scope, GROUPS_TYPE, group_id, entitlement.slug, principal_key)
        except DatabricksError as exc:
            raise ConnectorError(f"failed to grant {entitlement.slug} on group {group_id}") from exc

    def revoke(self, grant: Grant) -> None:
        principal = grant.principal
        entitlement = grant.entitlement
        if not is_valid_principal(principal):
            logger.warning(
                "Only users, groups and service principals can have group permissions revoked",
                extra={"principal_id": str(principal)},
            )
            raise ConnectorError("only users, groups and service principals can have group permissions revoked")

        scope, group_id = self._target(entitlement)
        try:
            if entitlement.slug == MEMBER_ENTITLEMENT:
                group, _ = self.client.get_group(scope, group_id)
                if not rulesets.remove_member(group, bare_id(principal)):
                    logger.info(
                        "Group does not have the member",
                        extra={"principal_id": principal.resource, "entitlement": entitlement.id},
                    )
                    return
                self.client.update_group(scope, group)
                return

            principal_key = prepare_principal_id(self.client, scope, principal)
            rulesets.revoke_rule(self.client, scope, GROUPS_TYPE, group_id, entitlement.slug, principal_key)
        except DatabricksError as exc:
            raise ConnectorError(f"failed to revoke {entitlement.slug} on group {group_id}") from exc
