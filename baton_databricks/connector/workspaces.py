"""Workspace syncer: workspaces under the account and their membership assignments."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from baton_databricks.connector.helpers import (
    MEMBER_ENTITLEMENT,
    APIAvailability,
    GroupResourceCache,
    bare_id,
    group_grant_expansion,
    is_valid_principal,
    prepare_resource_type,
)
from baton_databricks.connector.resources import (
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
from baton_databricks.databricks.errors import APIError, ConnectorError, DatabricksError
from baton_databricks.databricks.models import Workspace

logger = logging.getLogger("baton_databricks.connector.workspaces")

PERMISSIONS_API_UNAVAILABLE = "Permission assignment APIs are not available for this workspace"


class WorkspaceSyncer(ResourceSyncer):
    resource_type = WORKSPACE

    def __init__(
        self,
        client: DatabricksClient,
        availability: APIAvailability,
        cache: GroupResourceCache,
        workspaces: Iterable[str] = (),
        token_auth: bool = False,
    ) -> None:
        self.client = client
        self.availability = availability
        self.cache = cache
        self.workspaces = [w for w in workspaces if w]
        self.token_auth = token_auth

    def workspace_resource(self, workspace: Workspace, parent: ResourceId) -> Resource:
        children = [ROLE.id]
        if self.availability.workspace:
            children += [USER.id, GROUP.id, SERVICE_PRINCIPAL.id]
        return Resource(
            id=ResourceId(WORKSPACE.id, workspace.deployment_name),
            display_name=workspace.name or workspace.deployment_name,
            parent_id=parent,
            profile={"workspace_id": workspace.id},
            child_resource_types=children,
        )

    def _list_workspaces(self) -> list[Workspace]:
        # Workspace tokens cannot call the account API; the configured
        # deployment names are all there is to go on.
        if self.token_auth or not self.availability.account:
            return [Workspace(id=0, name=w, deployment_name=w) for w in self.workspaces]

        try:
            workspaces, _ = self.client.list_workspaces(self.client.scope())
        except DatabricksError as exc:
            raise ConnectorError("failed to list workspaces") from exc
        if self.workspaces:
            allowed = set(self.workspaces)
            workspaces = [w for w in workspaces if w.deployment_name in allowed]
        return workspaces

    def list(self, parent_id: Optional[ResourceId], token: str = "") -> SyncPage:
        if parent_id is None:
            return SyncPage([])
        return SyncPage([self.workspace_resource(w, parent_id) for w in self._list_workspaces()])

    def _member_entitlement(self, resource: Resource) -> Entitlement:
        return assignment_entitlement(
            resource,
            MEMBER_ENTITLEMENT,
            display_name=f"{resource.display_name} {MEMBER_ENTITLEMENT}",
            description=f"{resource.display_name} {MEMBER_ENTITLEMENT} in Databricks",
        )

    def entitlements(self, resource: Resource, token: str = "") -> SyncPage:
        # Membership is only visible through the account API.
        if not self.availability.account:
            return SyncPage([])
        return SyncPage([self._member_entitlement(resource)])

    @staticmethod
    def _workspace_id(resource: Resource) -> int:
        value = resource.profile.get("workspace_id")
        if value is None:
            raise ConnectorError("failed to get workspace ID from workspace profile")
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConnectorError(f"invalid workspace ID: {value!r}") from exc

    def grants(self, resource: Resource, token: str = "") -> SyncPage:
        if not self.availability.account:
            return SyncPage([])

        workspace_id = self._workspace_id(resource)
        try:
            assignments, rate_limit = self.client.list_workspace_members(workspace_id)
        except APIError as exc:
            if exc.status_code == 400:
                if exc.mentions(PERMISSIONS_API_UNAVAILABLE):
                    logger.info(
                        "Workspace does not have permissions API available, skipping",
                        extra={"workspace": resource.id.resource, "status_code": exc.status_code},
                    )
                    return SyncPage([], "", exc.rate_limit)
                logger.warning(
                    "Unexpected 400 from workspace assignments API: %s %s",
                    exc.detail,
                    exc.message,
                    extra={"workspace": resource.id.resource, "status_code": exc.status_code},
                )
            raise ConnectorError(f"failed to list workspace members for {resource.id.resource}") from exc
        except DatabricksError as exc:
            raise ConnectorError(f"failed to list workspace members for {resource.id.resource}") from exc

        logger.debug(
            "Workspace assignments listed",
            extra={"workspace": resource.id.resource, "records": len(assignments)},
        )
        entitlement = self._member_entitlement(resource)
        rv: list[Grant] = []
        for assignment in assignments:
            if assignment.principal is None:
                continue
            resource_type = prepare_resource_type(assignment.principal)
            principal_id = str(assignment.principal.id)
            expandable: list[str] = []
            if resource_type == GROUP.id:
                principal, expandable = group_grant_expansion(self.cache, principal_id, resource.parent_id)
            else:
                principal = ResourceId(resource_type, principal_id)
            rv.append(Grant(entitlement, principal, expandable))
        return SyncPage(rv, "", rate_limit)

    def grant(self, principal: ResourceId, entitlement: Entitlement) -> None:
        if not is_valid_principal(principal):
            logger.warning(
                "Only users, groups and service principals can be granted workspace membership",
                extra={"principal_id": str(principal)},
            )
            raise ConnectorError("only users, groups and service principals can be granted workspace membership")

        workspace_id = self._workspace_id(entitlement.resource)
        try:
            self.client.create_or_update_workspace_member(workspace_id, bare_id(principal))
        except DatabricksError as exc:
            raise ConnectorError("failed to create or update workspace member") from exc

    def revoke(self, grant: Grant) -> None:
        principal = grant.principal
        if not is_valid_principal(principal):
            logger.warning(
                "Only users, groups and service principals can have workspace membership revoked",
                extra={"principal_id": str(principal)},
            )
            raise ConnectorError("only users, groups and service principals can have workspace membership revoked")

        workspace_id = self._workspace_id(grant.entitlement.resource)
        try:
            self.client.remove_workspace_member(workspace_id, bare_id(principal))
        except DatabricksError as exc:
            raise ConnectorError("failed to remove workspace member") from exc
