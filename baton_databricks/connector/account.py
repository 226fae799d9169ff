"""Account syncer: the root resource and its marketplace-admin rule set."""

from __future__ import annotations

import logging
from typing import Optional

from baton_databricks.connector.helpers import (
    MARKETPLACE_ADMIN_ROLE,
    APIAvailability,
    GroupResourceCache,
    account_resource_id,
    grants_from_rule_sets,
    is_valid_principal,
    prepare_principal_id,
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
    permission_entitlement,
)
from baton_databricks.databricks import rulesets
from baton_databricks.databricks.client import DatabricksClient
from baton_databricks.databricks.errors import ConnectorError, DatabricksError

logger = logging.getLogger("baton_databricks.connector.account")


class AccountSyncer(ResourceSyncer):
    resource_type = ACCOUNT

    def __init__(self, client: DatabricksClient, availability: APIAvailability, cache: GroupResourceCache) -> None:
        self.client = client
        self.availability = availability
        self.cache = cache

    def account_resource(self) -> Resource:
        children = [WORKSPACE.id]
        if self.availability.account:
            children += [USER.id, GROUP.id, SERVICE_PRINCIPAL.id, ROLE.id]
        return Resource(
            id=account_resource_id(self.client.account_id),
            display_name=self.client.account_id,
            child_resource_types=children,
        )

    def list(self, parent_id: Optional[ResourceId], token: str = "") -> SyncPage:
        return SyncPage([self.account_resource()])

    def _marketplace_entitlement(self, resource: Resource) -> Entitlement:
        return permission_entitlement(
            resource,
            MARKETPLACE_ADMIN_ROLE,
            display_name=f"{resource.display_name} {MARKETPLACE_ADMIN_ROLE} role",
            description=f"{resource.display_name} {MARKETPLACE_ADMIN_ROLE} role in Databricks",
        )

    def entitlements(self, resource: Resource, token: str = "") -> SyncPage:
        if not self.availability.account:
            return SyncPage([])
        return SyncPage([self._marketplace_entitlement(resource)])

    def grants(self, resource: Resource, token: str = "") -> SyncPage:
        """Marketplace admins; only the account API exposes them."""
        if not self.availability.account:
            return SyncPage([])

        scope = self.client.scope()
        try:
            rule_sets, rate_limit = self.client.list_rule_sets(scope)
        except DatabricksError as exc:
            raise ConnectorError(f"failed to list rule sets for account {resource.id.resource}") from exc

        entitlement = self._marketplace_entitlement(resource)
        grants = grants_from_rule_sets(
            self.client,
            scope,
            self.cache,
            rule_sets,
            lambda rs: entitlement if MARKETPLACE_ADMIN_ROLE in rs.role else None,
        )
        return SyncPage(grants, "", rate_limit)

    def grant(self, principal: ResourceId, entitlement: Entitlement) -> None:
        if not is_valid_principal(principal):
            logger.warning(
                "Only users, groups and service principals can be granted account permissions",
                extra={"principal_id": str(principal)},
            )
            raise ConnectorError("only users, groups and service principals can be granted account permissions")

        scope = self.client.scope()
        try:
            principal_key = prepare_principal_id(self.client, scope, principal)
            rulesets.grant_rule(
                self.client,
                scope,
                "",
                "",
                entitlement.slug,
                principal_key,
                new_role=f"roles/{entitlement.slug}",
                match=rulesets.substring,
            )
        except DatabricksError as exc:
            raise ConnectorError(
                f"failed to grant {entitlement.slug} on account {entitlement.resource.id.resource}"
            ) from exc

    def revoke(self, grant: Grant) -> None:
        principal = grant.principal
        entitlement = grant.entitlement
        if not is_valid_principal(principal):
            logger.warning(
                "Only users, groups and service principals can have account permissions revoked",
                extra={"principal_id": str(principal)},
            )
            raise ConnectorError("only users, groups and service principals can have account permissions revoked")

        scope = self.client.scope()
        try:
            principal_key = prepare_principal_id(self.client, scope, principal)
            rulesets.revoke_rule(
                self.client,
                scope,
                "",
                "",
                entitlement.slug,
                principal_key,
                match=rulesets.substring,
            )
        except DatabricksError as exc:
            raise ConnectorError(
                f"failed to revoke {entitlement.slug} on account {entitlement.resource.id.resource}"
            ) from exc
