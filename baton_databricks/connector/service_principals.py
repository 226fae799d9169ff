"""Service principal syncer: roles assignable on a service principal via rule sets."""

from __future__ import annotations

import logging
from typing import Optional

from baton_databricks.connector.helpers import (
    GroupResourceCache,
    get_parent_info,
    grants_from_rule_sets,
    is_valid_principal,
    prepare_principal_id,
    workspace_of,
)
from baton_databricks.connector.pagination import (
    RESOURCES_PAGE_SIZE,
    parse_page_token,
    prepare_next_token,
)
from baton_databricks.connector.resources import (
    ACCOUNT,
    SERVICE_PRINCIPAL,
    WORKSPACE,
    Entitlement,
    Grant,
    Resource,
    ResourceId,
    ResourceSyncer,
    SyncPage,
    permission_entitlement,
)
from baton_databricks.databricks import rulesets
from baton_databricks.databricks.client import SERVICE_PRINCIPALS_TYPE, DatabricksClient
from baton_databricks.databricks.endpoints import Scope
from baton_databricks.databricks.errors import ConnectorError, DatabricksError
from baton_databricks.databricks.models import ServicePrincipal
from baton_databricks.databricks.vars import PaginationVars, service_principal_attr_vars

logger = logging.getLogger("baton_databricks.connector.service_principals")


class ServicePrincipalSyncer(ResourceSyncer):
    resource_type = SERVICE_PRINCIPAL

    def __init__(self, client: DatabricksClient, cache: GroupResourceCache) -> None:
        self.client = client
        self.cache = cache

    @staticmethod
    def service_principal_resource(sp: ServicePrincipal, parent: ResourceId) -> Resource:
        return Resource(
            id=ResourceId(SERVICE_PRINCIPAL.id, sp.id),
            display_name=sp.display_name,
            # Only account parents are kept; workspace listings repeat account principals.
            parent_id=parent if parent.resource_type == ACCOUNT.id else None,
            profile={
                "application_id": sp.application_id,
                "display_name": sp.display_name,
                "parent_type": parent.resource_type,
                "parent_id": parent.resource,
            },
        )

    def list(self, parent_id: Optional[ResourceId], token: str = "") -> SyncPage:
        if parent_id is None:
            return SyncPage([])

        scope = self.client.scope(workspace_of(parent_id))
        bag, page = parse_page_token(token, SERVICE_PRINCIPAL.id)
        try:
            sps, total, rate_limit = self.client.list_service_principals(
                scope, PaginationVars(page, RESOURCES_PAGE_SIZE), service_principal_attr_vars()
            )
        except DatabricksError as exc:
            raise ConnectorError("failed to list service principals") from exc

        resources = [self.service_principal_resource(sp, parent_id) for sp in sps]
        next_token = bag.next_token(prepare_next_token(page, len(sps), total))
        return SyncPage(resources, next_token, rate_limit)

    def _context(self, resource: Resource) -> tuple[Scope, str]:
        parent_type, parent_id = get_parent_info(resource)
        workspace = parent_id if parent_type == WORKSPACE.id else ""
        application_id = resource.profile_str("application_id")
        if not application_id:
            raise ConnectorError("failed to get application_id from service principal profile")
        return self.client.scope(workspace), application_id

    def _role_entitlement(self, resource: Resource, role: str) -> Entitlement:
        return permission_entitlement(
            resource,
            role,
            display_name=f"{role} role",
            description=f"{role} role in Databricks",
        )

    def entitlements(self, resource: Resource, token: str = "") -> SyncPage:
        scope, application_id = self._context(resource)
        try:
            roles, rate_limit = self.client.list_roles(scope, SERVICE_PRINCIPALS_TYPE, application_id)
        except DatabricksError as exc:
            raise ConnectorError(
                f"failed to list roles for service principal {resource.id.resource} ({application_id})"
            ) from exc
        return SyncPage([self._role_entitlement(resource, r.name) for r in roles], "", rate_limit)

    def grants(self, resource: Resource, token: str = "") -> SyncPage:
        scope, application_id = self._context(resource)
        try:
            rule_sets, rate_limit = self.client.list_rule_sets(scope, SERVICE_PRINCIPALS_TYPE, application_id)
        except DatabricksError as exc:
            raise ConnectorError(
                f"failed to list rule sets for service principal {resource.id.resource} ({application_id})"
            ) from exc

        grants = grants_from_rule_sets(
            self.client,
            scope,
            self.cache,
            rule_sets,
            lambda rs: self._role_entitlement(resource, rs.role),
        )
        return SyncPage(grants, "", rate_limit)

    def grant(self, principal: ResourceId, entitlement: Entitlement) -> None:
        if not is_valid_principal(principal):
            logger.warning(
                "Only users, groups and service principals can be granted service principal permissions",
                extra={"principal_id": str(principal)},
            )
            raise ConnectorError(
                "only users, groups and service principals can be granted service principal permissions"
            )

        scope, application_id = self._context(entitlement.resource)
        try:
            principal_key = prepare_principal_id(self.client, scope, principal)
            rulesets.grant_rule(
                self.client, scope, SERVICE_PRINCIPALS_TYPE, application_id, entitlement.slug, principal_key
            )
        except DatabricksError as exc:
            raise ConnectorError(
                f"failed to grant {entitlement.slug} on service principal {application_id}"
            ) from exc

    def revoke(self, grant: Grant) -> None:
        principal = grant.principal
        entitlement = grant.entitlement
        if not is_valid_principal(principal):
            logger.warning(
                "Only users, groups and service principals can have service principal permissions revoked",
                extra={"principal_id": str(principal)},
            )
            raise ConnectorError(
                "only users, groups and service principals can have service principal permissions revoked"
            )

        scope, application_id = self._context(entitlement.resource)
        try:
            principal_key = prepare_principal_id(self.client, scope, principal)
            rulesets.revoke_rule(
                self.client, scope, SERVICE_PRINCIPALS_TYPE, application_id, entitlement.slug, principal_key
            )
        except DatabricksError as exc:
            raise ConnectorError(
                f"failed to revoke {entitlement.slug} on service principal {application_id}"
            ) from exc
