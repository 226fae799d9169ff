"""Databricks API payload models.

SCIM identities (users, groups, service principals) share a ``Permissions``
value: ``roles`` hold account-level roles, ``entitlements`` hold
workspace-level entitlements.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Mapping, NamedTuple, Optional

SCIM_USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate-limit metadata read from response headers."""

    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[float] = None
    retry_after: Optional[float] = None
    overlimit: bool = False

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], status_code: int = 200) -> "RateLimitInfo":
        retry_after = _float_or_none(headers.get("Retry-After"))
        reset_at = _float_or_none(headers.get("X-RateLimit-Reset"))
        if reset_at is None and retry_after is not None:
            reset_at = time.time() + retry_after
        return cls(
            limit=_int_or_none(headers.get("X-RateLimit-Limit")),
            remaining=_int_or_none(headers.get("X-RateLimit-Remaining")),
            reset_at=reset_at,
            retry_after=retry_after,
            overlimit=status_code == 429,
        )


def _int_or_none(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def _float_or_none(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Permissions shared by every principal kind
# ---------------------------------------------------------------------------


@dataclass
class Permissions:
    roles: list[str] = field(default_factory=list)
    entitlements: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Permissions":
        return cls(
            roles=[r.get("value", "") for r in data.get("roles") or []],
            entitlements=[e.get("value", "") for e in data.get("entitlements") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.roles:
            out["roles"] = [{"value": r} for r in self.roles]
        if self.entitlements:
            out["entitlements"] = [{"value": e} for e in self.entitlements]
        return out

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_entitlement(self, entitlement: str) -> bool:
        return entitlement in self.entitlements

    def holds(self, name: str, workspace_level: bool) -> bool:
        """Workspace-level permissions are entitlements, account-level ones are roles."""
        if workspace_level:
            return self.has_entitlement(name)
        return self.has_role(name)

    def add(self, name: str, workspace_level: bool) -> bool:
        """Append ``name``; returns False when it was already present."""
        target = self.entitlements if workspace_level else self.roles
        if name in target:
            return False
        target.append(name)
        return True

    def remove(self, name: str, workspace_level: bool) -> bool:
        """Drop ``name``; returns False when it was not present."""
        target = self.entitlements if workspace_level else self.roles
        if name not in target:
            return False
        target[:] = [v for v in target if v != name]
        return True


@dataclass
class Principal:
    id: str = ""
    display_name: str = ""
    permissions: Permissions = field(default_factory=Permissions)


def has_permission(principal: Principal, name: str, workspace_level: bool) -> bool:
    return principal.permissions.holds(name, workspace_level)


# ---------------------------------------------------------------------------
# SCIM identities
# ---------------------------------------------------------------------------


@dataclass
class Email:
    value: str
    primary: bool = False


@dataclass
class User(Principal):
    user_name: str = ""
    emails: list[Email] = field(default_factory=list)
    active: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "User":
        return cls(
            id=str(data.get("id", "")),
            display_name=data.get("displayName", ""),
            permissions=Permissions.from_dict(data),
            user_name=data.get("userName", ""),
            emails=[
                Email(value=e.get("value", ""), primary=bool(e.get("primary", False)))
                for e in data.get("emails") or []
            ],
            active=bool(data.get("active", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "userName": self.user_name,
            "displayName": self.display_name,
            "emails": [{"primary": e.primary, "value": e.value} for e in self.emails],
        }
        out["active"] = self.active
        out.update(self.permissions.to_dict())
        return out

    @property
    def primary_email(self) -> str:
        for email in self.emails:
            if email.primary:
                return email.value
        return self.emails[0].value if self.emails else ""


@dataclass
class Member:
    """Group member reference; ``ref`` is ``"<Kind>/<id>"``."""

    id: str
    display: str = ""
    ref: str = ""

    @property
    def kind(self) -> str:
        return self.ref.split("/", 1)[0] if "/" in self.ref else ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Member":
        return cls(
            id=str(data.get("value", "")),
            display=data.get("display", ""),
            ref=data.get("$ref", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.id, "display": self.display, "$ref": self.ref}


@dataclass
class Group(Principal):
    members: list[Member] = field(default_factory=list)
    resource_type: str = ""
    schemas: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Group":
        return cls(
            id=str(data.get("id", "")),
            display_name=data.get("displayName", ""),
            permissions=Permissions.from_dict(data),
            members=[Member.from_dict(m) for m in data.get("members") or []],
            resource_type=(data.get("meta") or {}).get("resourceType", ""),
            schemas=list(data.get("schemas") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "displayName": self.display_name}
        if self.members:
            out["members"] = [m.to_dict() for m in self.members]
        if self.resource_type:
            out["meta"] = {"resourceType": self.resource_type}
        if self.schemas:
            out["schemas"] = list(self.schemas)
        out.update(self.permissions.to_dict())
        return out

    @property
    def is_account_group(self) -> bool:
        return self.resource_type == "Group"


@dataclass
class ServicePrincipal(Principal):
    application_id: str = ""
    active: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ServicePrincipal":
        return cls(
            id=str(data.get("id", "")),
            display_name=data.get("displayName", ""),
            permissions=Permissions.from_dict(data),
            application_id=data.get("applicationId", ""),
            active=bool(data.get("active", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "displayName": self.display_name,
            "active": self.active,
            "applicationId": self.application_id,
        }
        out.update(self.permissions.to_dict())
        return out


@dataclass
class CreateUserBody:
    user_name: str
    display_name: str
    given_name: str = ""
    family_name: str = ""
    id: str = ""
    active: bool = True

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "schemas": [SCIM_USER_SCHEMA],
            "userName": self.user_name,
            "displayName": self.display_name,
            "active": self.active,
        }
        if self.given_name or self.family_name:
            out["name"] = {"givenName": self.given_name, "familyName": self.family_name}
        if self.id:
            out["id"] = self.id
        return out


# ---------------------------------------------------------------------------
# Workspaces, roles, rule sets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Workspace:
    id: int
    name: str = ""
    status: str = ""
    deployment_name: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Workspace":
        return cls(
            id=int(data.get("workspace_id", 0)),
            name=data.get("workspace_name", ""),
            status=data.get("workspace_status", ""),
            deployment_name=data.get("deployment_name", ""),
        )


@dataclass(frozen=True)
class WorkspacePrincipal:
    id: int = 0
    user_name: str = ""
    group_display_name: str = ""
    service_principal_app_id: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkspacePrincipal":
        return cls(
            id=int(data.get("principal_id", 0)),
            user_name=data.get("user_name", ""),
            group_display_name=data.get("group_name", ""),
            service_principal_app_id=data.get("service_principal_name", ""),
        )


@dataclass(frozen=True)
class WorkspaceAssignment:
    principal: Optional[WorkspacePrincipal] = None
    permissions: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkspaceAssignment":
        principal = data.get("principal")
        return cls(
            principal=WorkspacePrincipal.from_dict(principal) if principal else None,
            permissions=tuple(data.get("permissions") or ()),
        )


@dataclass(frozen=True)
class Role:
    name: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Role":
        return cls(name=data.get("name", ""))


@dataclass
class RuleSet:
    """One grant rule: a role and the principals (``"<kind>/<key>"``) holding it."""

    role: str
    principals: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleSet":
        return cls(role=data.get("role", ""), principals=list(data.get("principals") or []))

    def to_dict(self) -> dict[str, Any]:
        return {"principals": list(self.principals), "role": self.role}


class ListResult(NamedTuple):
    items: list
    total: int
    rate_limit: RateLimitInfo
