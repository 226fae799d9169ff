"""Databricks provider: walks the connector's resource tree and stores the result."""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Optional

import psycopg2.extras

from baton_databricks.base_provider import BaseProvider
from baton_databricks.config import ConnectorConfig
from baton_databricks.connector.connector import DatabricksConnector, new_connector
from baton_databricks.connector.resources import (
    ACCOUNT,
    RESOURCE_TYPES,
    USER,
    Entitlement,
    Grant,
    Resource,
    ResourceId,
    ResourceSyncer,
    SyncPage,
)
from baton_databricks.databricks.errors import APIError
from baton_databricks.db import Database

logger = logging.getLogger("baton_databricks.providers.databricks")

MAX_RATE_LIMIT_RETRIES = 5


def _rate_limited(exc: BaseException) -> Optional[APIError]:
    """The 429 APIError behind ``exc``, following the ``from`` chain."""
    seen: Optional[BaseException] = exc
    while seen is not None:
        if isinstance(seen, APIError) and seen.status_code == 429:
            return seen
        seen = seen.__cause__
    return None


class DatabricksProvider(BaseProvider):
    PROVIDER_NAME = "databricks"

    def __init__(
        self,
        config: ConnectorConfig,
        db: Database,
        connector: Optional[DatabricksConnector] = None,
    ) -> None:
        super().__init__(config, db)
        self.connector = connector or new_connector(config.databricks)

    # ------------------------------------------------------------------
    # Paging
    # ------------------------------------------------------------------

    def _call(self, fn: Callable[[str], SyncPage], token: str) -> SyncPage:
        attempt = 0
        while True:
            try:
                return fn(token)
            except Exception as exc:
                api_error = _rate_limited(exc)
                if api_error is None or attempt >= MAX_RATE_LIMIT_RETRIES:
                    raise
                retry_after = api_error.rate_limit.retry_after if api_error.rate_limit else None
                self._rate_limit_sleep(attempt, retry_after=retry_after)
                attempt += 1

    def _drain(self, fn: Callable[[str], SyncPage]) -> list:
        """Every item from ``fn`` across all pages."""
        items: list = []
        token = ""
        while True:
            page = self._call(fn, token)
            items.extend(page.items)
            if not page.next_token:
                return items
            token = page.next_token

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def _walk(self) -> tuple[list[Resource], list[Entitlement], list[Grant]]:
        """Breadth-first from the account through each resource's child types."""
        syncers = self.connector.resource_syncers()
        resources: dict[tuple[str, str], Resource] = {}
        queue: deque[Resource] = deque()

        def visit(found: list[Resource]) -> None:
            for resource in found:
                key = (resource.id.resource_type, resource.id.resource)
                if key in resources:
                    continue
                resources[key] = resource
                queue.append(resource)

        visit(self._drain(lambda t: syncers[ACCOUNT.id].list(None, t)))
        while queue:
            parent = queue.popleft()
            for child_type in parent.child_resource_types:
                syncer = syncers[child_type]
                visit(self._drain(lambda t, s=syncer, p=parent.id: s.list(p, t)))

        entitlements: dict[str, Entitlement] = {}
        grants: dict[str, Grant] = {}
        for resource in resources.values():
            resource_type = RESOURCE_TYPES[resource.id.resource_type]
            if resource_type.skip_entitlements_and_grants:
                continue
            syncer = syncers[resource_type.id]
            for ent in self._drain(lambda t, s=syncer, r=resource: s.entitlements(r, t)):
                entitlements[ent.id] = ent
            for grant in self._drain(lambda t, s=syncer, r=resource: s.grants(r, t)):
                grants[grant.id] = grant

        return list(resources.values()), list(entitlements.values()), list(grants.values())

    def sync(self) -> dict[str, int]:
        self.connector.validate()
        resources, entitlements, grants = self._walk()
        logger.info(
            "Walked Databricks resource tree",
            extra={"provider": self.PROVIDER_NAME, "records": len(resources) + len(entitlements) + len(grants)},
        )
        return {
            "resources": self._upsert_resources(resources),
            "entitlements": self._upsert_entitlements(entitlements),
            "grants": self._upsert_grants(grants),
        }

    # ------------------------------------------------------------------
    # Upserts
    # ------------------------------------------------------------------

    def _upsert(
        self,
        table: str,
        columns: list[str],
        rows: list[tuple],
        conflict_columns: list[str],
    ) -> int:
        update_columns = [c for c in columns if c not in conflict_columns]
        total = 0
        for batch in self._batch_rows(rows):
            with self.db.transaction() as cur:
                total += self.db.upsert_batch(cur, table, columns, batch, conflict_columns, update_columns)
        logger.info(
            "Upserted %s",
            table,
            extra={"provider": self.PROVIDER_NAME, "resource_type": table, "records": total},
        )
        return total

    def _upsert_resources(self, resources: list[Resource]) -> int:
        rows = [
            (
                self.tenant_id,
                r.id.resource_type,
                r.id.resource,
                r.display_name,
                r.parent_id.resource_type if r.parent_id else None,
                r.parent_id.resource if r.parent_id else None,
                psycopg2.extras.Json(r.to_dict()),
            )
            for r in resources
        ]
        return self._upsert(
            "connector_resources",
            ["tenant_id", "resource_type", "resource_id", "display_name", "parent_type", "parent_id", "payload"],
            rows,
            ["tenant_id", "resource_type", "resource_id"],
        )

    def _upsert_entitlements(self, entitlements: list[Entitlement]) -> int:
        rows = [
            (
                self.tenant_id,
                e.id,
                e.resource.id.resource_type,
                e.resource.id.resource,
                e.slug,
                e.purpose,
                psycopg2.extras.Json(e.to_dict()),
            )
            for e in entitlements
        ]
        return self._upsert(
            "connector_entitlements",
            ["tenant_id", "entitlement_id", "resource_type", "resource_id", "slug", "purpose", "payload"],
            rows,
            ["tenant_id", "entitlement_id"],
        )

    def _upsert_grants(self, grants: list[Grant]) -> int:
        rows = [
            (
                self.tenant_id,
                g.id,
                g.entitlement.id,
                g.principal.resource_type,
                g.principal.resource,
                psycopg2.extras.Json(g.to_dict()),
            )
            for g in grants
        ]
        return self._upsert(
            "connector_grants",
            ["tenant_id", "grant_id", "entitlement_id", "principal_type", "principal_id", "payload"],
            rows,
            ["tenant_id", "grant_id"],
        )

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def _syncer_for(self, resource: Resource) -> ResourceSyncer:
        syncers = self.connector.resource_syncers()
        try:
            return syncers[resource.id.resource_type]
        except KeyError:
            raise ValueError(f"no syncer for resource type {resource.id.resource_type}") from None

    def grant(self, entitlement_id: str, principal_type: str, principal_id: str) -> Grant:
        """Grant a stored entitlement to a principal and record the grant."""
        payload = self.db.load_entitlement(self.tenant_id, entitlement_id)
        if payload is None:
            raise LookupError(f"entitlement not synced: {entitlement_id}")
        entitlement = Entitlement.from_dict(payload)
        principal = ResourceId(principal_type, principal_id)

        self._syncer_for(entitlement.resource).grant(principal, entitlement)
        grant = Grant(entitlement, principal)
        self._upsert_grants([grant])
        logger.info(
            "Granted %s",
            entitlement_id,
            extra={"provider": self.PROVIDER_NAME, "principal_id": str(principal), "entitlement": entitlement_id},
        )
        return grant

    def revoke(self, grant_id: str) -> Grant:
        """Revoke a stored grant and drop it from storage."""
        payload = self.db.load_grant(self.tenant_id, grant_id)
        if payload is None:
            raise LookupError(f"grant not synced: {grant_id}")
        grant = Grant.from_dict(payload)

        self._syncer_for(grant.entitlement.resource).revoke(grant)
        self.db.delete_grant(self.tenant_id, grant_id)
        logger.info(
            "Revoked %s",
            grant_id,
            extra={
                "provider": self.PROVIDER_NAME,
                "principal_id": str(grant.principal),
                "entitlement": grant.entitlement.id,
            },
        )
        return grant

    def create_account(self, profile: dict) -> Optional[Resource]:
        """Provision an account-level user and store it when it reads back."""
        resource = self.connector.resource_syncers()[USER.id].create_account(profile)
        if resource is not None:
            self._upsert_resources([resource])
        return resource

    def delete_user(self, user_id: str) -> None:
        principal = ResourceId(USER.id, user_id)
        self.connector.resource_syncers()[USER.id].delete(principal)
        self.db.delete_principal(self.tenant_id, USER.id, user_id)
        logger.info(
            "Deleted user %s",
            user_id,
            extra={"provider": self.PROVIDER_NAME, "principal_id": str(principal)},
        )
