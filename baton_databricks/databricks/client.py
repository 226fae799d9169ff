"""Typed Databricks account and workspace API client.

Every call takes an explicit ``Scope``; the client itself holds no notion
of a current workspace. The only mutable state is the per-rule-set etag
table, guarded by a lock.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from baton_databricks.databricks.endpoints import Endpoint, EndpointResolver, Scope
from baton_databricks.databricks.errors import NotFoundError, ScopeError
from baton_databricks.databricks.models import (
    CreateUserBody,
    Group,
    ListResult,
    RateLimitInfo,
    Role,
    RuleSet,
    ServicePrincipal,
    User,
    Workspace,
    WorkspaceAssignment,
)
from baton_databricks.databricks.transport import Transport
from baton_databricks.databricks.vars import (
    NameVars,
    PaginationVars,
    ResourceVars,
    Vars,
    eq_filter,
)

logger = logging.getLogger("baton_databricks.client")

# Rule-set resource kinds, also used in ``accounts/<acct>/<kind>/<id>`` names.
USERS_TYPE = "users"
GROUPS_TYPE = "groups"
SERVICE_PRINCIPALS_TYPE = "servicePrincipals"


class DatabricksClient:
    """Resource operations for users, groups, service principals, roles,
    rule sets and workspaces."""

    def __init__(self, transport: Transport, resolver: EndpointResolver) -> None:
        self.transport = transport
        self.resolver = resolver
        self._etags: dict[str, str] = {}
        self._etag_lock = threading.Lock()

    @property
    def account_id(self) -> str:
        return self.resolver.account_id

    def scope(self, workspace: str = "") -> Scope:
        return self.resolver.scope(workspace)

    # ------------------------------------------------------------------
    # Generic SCIM helpers
    # ------------------------------------------------------------------

    def _list(self, scope: Scope, endpoint: Endpoint, parse: Callable[[dict], Any], *vars: Vars) -> ListResult:
        payload, rate_limit = self.transport.get(scope, self.resolver.url(scope, endpoint), *vars)
        payload = payload or {}
        items = [parse(r) for r in payload.get("Resources") or []]
        return ListResult(items, int(payload.get("totalResults", 0)), rate_limit)

    def _get(self, scope: Scope, endpoint: Endpoint, parse: Callable[[dict], Any], resource_id: str):
        payload, rate_limit = self.transport.get(scope, self.resolver.url(scope, endpoint, resource_id))
        return parse(payload or {}), rate_limit

    def _update(self, scope: Scope, endpoint: Endpoint, resource_id: str, body: dict) -> RateLimitInfo:
        _, rate_limit = self.transport.put(scope, self.resolver.url(scope, endpoint, resource_id), body)
        return rate_limit

    def _find(
        self,
        scope: Scope,
        endpoint: Endpoint,
        parse: Callable[[dict], Any],
        attribute: str,
        value: str,
        result: Callable[[Any], str],
    ) -> tuple[str, RateLimitInfo]:
        items, _, rate_limit = self._list(
            scope, endpoint, parse, PaginationVars(count=1), eq_filter(attribute, value)
        )
        if not items:
            raise NotFoundError(endpoint.value, f"{attribute}={value}", rate_limit)
        return result(items[0]), rate_limit

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def list_users(self, scope: Scope, *vars: Vars) -> ListResult:
        return self._list(scope, Endpoint.USERS, User.from_dict, *vars)

    def get_user(self, scope: Scope, user_id: str) -> tuple[User, RateLimitInfo]:
        return self._get(scope, Endpoint.USERS, User.from_dict, user_id)

    def update_user(self, scope: Scope, user: User) -> RateLimitInfo:
        return self._update(scope, Endpoint.USERS, user.id, user.to_dict())

    def find_user_id(self, scope: Scope, user_name: str) -> tuple[str, RateLimitInfo]:
        return self._find(scope, Endpoint.USERS, User.from_dict, "userName", user_name, lambda u: u.id)

    def find_username(self, scope: Scope, user_id: str) -> tuple[str, RateLimitInfo]:
        return self._find(scope, Endpoint.USERS, User.from_dict, "id", user_id, lambda u: u.user_name)

    def create_user(self, scope: Scope, body: CreateUserBody) -> tuple[User, RateLimitInfo]:
        """Provision an account user. Account scope only."""
        if not scope.is_account:
            raise ScopeError("create_user is only available at account scope")
        payload, rate_limit = self.transport.post(
            scope, self.resolver.url(scope, Endpoint.USERS), body.to_dict()
        )
        return User.from_dict(payload or {}), rate_limit

    def delete_user(self, scope: Scope, user_id: str) -> RateLimitInfo:
        """Remove an account user. Account scope only."""
        if not scope.is_account:
            raise ScopeError("delete_user is only available at account scope")
        return self.transport.delete(scope, self.resolver.url(scope, Endpoint.USERS, user_id))

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def list_groups(self, scope: Scope, *vars: Vars) -> ListResult:
        return self._list(scope, Endpoint.GROUPS, Group.from_dict, *vars)

    def get_group(self, scope: Scope, group_id: str) -> tuple[Group, RateLimitInfo]:
        return self._get(scope, Endpoint.GROUPS, Group.from_dict, group_id)

    def update_group(self, scope: Scope, group: Group) -> RateLimitInfo:
        return self._update(scope, Endpoint.GROUPS, group.id, group.to_dict())

    def find_group_id(self, scope: Scope, display_name: str) -> tuple[str, RateLimitInfo]:
        return self._find(scope, Endpoint.GROUPS, Group.from_dict, "displayName", display_name, lambda g: g.id)

    def find_group_display_name(self, scope: Scope, group_id: str) -> tuple[str, RateLimitInfo]:
        return self._find(scope, Endpoint.GROUPS, Group.from_dict, "id", group_id, lambda g: g.display_name)

    # ------------------------------------------------------------------
    # Service principals
    # ------------------------------------------------------------------

    def list_service_principals(self, scope: Scope, *vars: Vars) -> ListResult:
        return self._list(scope, Endpoint.SERVICE_PRINCIPALS, ServicePrincipal.from_dict, *vars)

    def get_service_principal(self, scope: Scope, sp_id: str) -> tuple[ServicePrincipal, RateLimitInfo]:
        return self._get(scope, Endpoint.SERVICE_PRINCIPALS, ServicePrincipal.from_dict, sp_id)

    def update_service_principal(self, scope: Scope, sp: ServicePrincipal) -> RateLimitInfo:
        return self._update(scope, Endpoint.SERVICE_PRINCIPALS, sp.id, sp.to_dict())

    def find_service_principal_id(self, scope: Scope, application_id: str) -> tuple[str, RateLimitInfo]:
        return self._find(
            scope, Endpoint.SERVICE_PRINCIPALS, ServicePrincipal.from_dict,
            "applicationId", application_id, lambda s: s.id,
        )

    def find_service_principal_app_id(self, scope: Scope, sp_id: str) -> tuple[str, RateLimitInfo]:
        return self._find(
            scope, Endpoint.SERVICE_PRINCIPALS, ServicePrincipal.from_dict,
            "id", sp_id, lambda s: s.application_id,
        )

    # ------------------------------------------------------------------
    # Roles and rule sets
    # ------------------------------------------------------------------

    def resource_name(self, resource_type: str = "", resource_id: str = "") -> str:
        """``accounts/<acct>[/<type>/<id>]``, skipping empty parts."""
        return "/".join(p for p in ("accounts", self.account_id, resource_type, resource_id) if p)

    def rule_set_name(self, resource_type: str = "", resource_id: str = "") -> str:
        return f"{self.resource_name(resource_type, resource_id)}/ruleSets/default"

    def list_roles(
        self, scope: Scope, resource_type: str = "", resource_id: str = ""
    ) -> tuple[list[Role], RateLimitInfo]:
        """Assignable roles for the account or for one group/service principal."""
        payload, rate_limit = self.transport.get(
            scope,
            self.resolver.url(scope, Endpoint.ROLES),
            ResourceVars(self.resource_name(resource_type, resource_id)),
        )
        roles = [Role.from_dict(r) for r in (payload or {}).get("roles") or []]
        return roles, rate_limit

    def held_etag(self, resource_type: str = "", resource_id: str = "") -> str:
        with self._etag_lock:
            return self._etags.get(self.rule_set_name(resource_type, resource_id), "")

    def _record_etag(self, name: str, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        etag = payload.get("etag")
        if etag is None and isinstance(payload.get("rule_set"), dict):
            etag = payload["rule_set"].get("etag")
        if etag is None:
            return
        with self._etag_lock:
            self._etags[name] = etag

    def list_rule_sets(
        self, scope: Scope, resource_type: str = "", resource_id: str = ""
    ) -> tuple[list[RuleSet], RateLimitInfo]:
        """Read the default rule set and record its etag."""
        name = self.rule_set_name(resource_type, resource_id)
        with self._etag_lock:
            etag = self._etags.get(name, "")
        payload, rate_limit = self.transport.get(
            scope, self.resolver.url(scope, Endpoint.RULE_SETS), NameVars(name, etag)
        )
        self._record_etag(name, payload)
        rule_sets = [RuleSet.from_dict(r) for r in (payload or {}).get("grant_rules") or []]
        return rule_sets, rate_limit

    def update_rule_sets(
        self,
        scope: Scope,
        resource_type: str,
        resource_id: str,
        rule_sets: list[RuleSet],
        etag: Optional[str] = None,
    ) -> RateLimitInfo:
        """Replace the whole rule set. Sends the last recorded etag unless
        ``etag`` is given; a stale etag is rejected by the platform."""
        name = self.rule_set_name(resource_type, resource_id)
        if etag is None:
            with self._etag_lock:
                etag = self._etags.get(name, "")
        body = {
            "name": name,
            "rule_set": {
                "name": name,
                "etag": etag,
                "grant_rules": [r.to_dict() for r in rule_sets],
            },
        }
        payload, rate_limit = self.transport.put(
            scope, self.resolver.url(scope, Endpoint.RULE_SETS), body, NameVars(name, etag)
        )
        self._record_etag(name, payload)
        return rate_limit

    # ------------------------------------------------------------------
    # Workspaces
    # ------------------------------------------------------------------

    def list_workspaces(self, scope: Scope) -> tuple[list[Workspace], RateLimitInfo]:
        payload, rate_limit = self.transport.get(scope, self.resolver.url(scope, Endpoint.WORKSPACES))
        return [Workspace.from_dict(w) for w in payload or []], rate_limit

    def _assignments_url(self, workspace_id: int, *segments: str) -> tuple[Scope, str]:
        scope = self.resolver.account_scope()
        url = self.resolver.url(
            scope, Endpoint.WORKSPACE_ASSIGNMENTS, *segments, workspace_id=str(workspace_id)
        )
        return scope, url

    def list_workspace_members(self, workspace_id: int) -> tuple[list[WorkspaceAssignment], RateLimitInfo]:
        scope, url = self._assignments_url(workspace_id)
        payload, rate_limit = self.transport.get(scope, url)
        assignments = [
            WorkspaceAssignment.from_dict(a)
            for a in (payload or {}).get("permission_assignments") or []
        ]
        return assignments, rate_limit

    def create_or_update_workspace_member(self, workspace_id: int, principal_id: str) -> RateLimitInfo:
        scope, url = self._assignments_url(workspace_id, "principals", principal_id)
        _, rate_limit = self.transport.put(scope, url, {"permissions": ["USER"]})
        return rate_limit

    def remove_workspace_member(self, workspace_id: int, principal_id: str) -> RateLimitInfo:
        # The platform removes an assignment with an empty-bodied PUT.
        scope, url = self._assignments_url(workspace_id, "principals", principal_id)
        _, rate_limit = self.transport.put(scope, url)
        return rate_limit
