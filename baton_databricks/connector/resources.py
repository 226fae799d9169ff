"""Resource, entitlement and grant vocabulary produced by the syncers.

These are plain JSON-serialisable values: the sync driver stores their
``to_dict`` form and rebuilds them with ``from_dict`` for grant/revoke.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Optional

from baton_databricks.databricks.models import RateLimitInfo

TRAIT_USER = "user"
TRAIT_GROUP = "group"
TRAIT_ROLE = "role"

PURPOSE_ASSIGNMENT = "assignment"
PURPOSE_PERMISSION = "permission"

STATUS_ENABLED = "enabled"
STATUS_DISABLED = "disabled"


@dataclass(frozen=True)
class ResourceType:
    id: str
    display_name: str
    traits: tuple[str, ...] = ()
    skip_entitlements_and_grants: bool = False


USER = ResourceType("user", "User", (TRAIT_USER,), skip_entitlements_and_grants=True)
GROUP = ResourceType("group", "Group", (TRAIT_GROUP,))
SERVICE_PRINCIPAL = ResourceType("service_principal", "Service Principal", (TRAIT_GROUP,))
ROLE = ResourceType("role", "Role", (TRAIT_ROLE,))
WORKSPACE = ResourceType("workspace", "Workspace", (TRAIT_GROUP,))
ACCOUNT = ResourceType("account", "Account")

RESOURCE_TYPES = {rt.id: rt for rt in (ACCOUNT, WORKSPACE, USER, GROUP, SERVICE_PRINCIPAL, ROLE)}

PRINCIPAL_TYPES = (USER.id, GROUP.id, SERVICE_PRINCIPAL.id)


@dataclass(frozen=True)
class ResourceId:
    resource_type: str
    resource: str

    def to_dict(self) -> dict[str, str]:
        return {"resource_type": self.resource_type, "resource": self.resource}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResourceId":
        return cls(resource_type=data["resource_type"], resource=data["resource"])

    def __str__(self) -> str:
        return f"{self.resource_type}:{self.resource}"


@dataclass
class Resource:
    id: ResourceId
    display_name: str
    parent_id: Optional[ResourceId] = None
    profile: dict[str, Any] = field(default_factory=dict)
    child_resource_types: list[str] = field(default_factory=list)
    # User trait fields
    login: str = ""
    status: str = ""
    emails: list[tuple[str, bool]] = field(default_factory=list)

    def profile_str(self, key: str) -> Optional[str]:
        value = self.profile.get(key)
        return str(value) if value is not None else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id.to_dict(),
            "display_name": self.display_name,
            "parent_id": self.parent_id.to_dict() if self.parent_id else None,
            "profile": dict(self.profile),
            "child_resource_types": list(self.child_resource_types),
            "login": self.login,
            "status": self.status,
            "emails": [{"address": a, "primary": p} for a, p in self.emails],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Resource":
        parent = data.get("parent_id")
        return cls(
            id=ResourceId.from_dict(data["id"]),
            display_name=data.get("display_name", ""),
            parent_id=ResourceId.from_dict(parent) if parent else None,
            profile=dict(data.get("profile") or {}),
            child_resource_types=list(data.get("child_resource_types") or []),
            login=data.get("login", ""),
            status=data.get("status", ""),
            emails=[(e["address"], bool(e.get("primary"))) for e in data.get("emails") or []],
        )


@dataclass
class Entitlement:
    resource: Resource
    slug: str
    purpose: str = PURPOSE_ASSIGNMENT
    display_name: str = ""
    description: str = ""
    grantable_to: tuple[str, ...] = PRINCIPAL_TYPES

    @property
    def id(self) -> str:
        return f"{self.resource.id.resource_type}:{self.resource.id.resource}:{self.slug}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resource": self.resource.to_dict(),
            "slug": self.slug,
            "purpose": self.purpose,
            "display_name": self.display_name,
            "description": self.description,
            "grantable_to": list(self.grantable_to),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Entitlement":
        return cls(
            resource=Resource.from_dict(data["resource"]),
            slug=data["slug"],
            purpose=data.get("purpose", PURPOSE_ASSIGNMENT),
            display_name=data.get("display_name", ""),
            description=data.get("description", ""),
            grantable_to=tuple(data.get("grantable_to") or PRINCIPAL_TYPES),
        )


def assignment_entitlement(resource: Resource, slug: str, display_name: str, description: str) -> Entitlement:
    return Entitlement(resource, slug, PURPOSE_ASSIGNMENT, display_name, description)


def permission_entitlement(resource: Resource, slug: str, display_name: str, description: str) -> Entitlement:
    return Entitlement(resource, slug, PURPOSE_PERMISSION, display_name, description)


@dataclass
class Grant:
    entitlement: Entitlement
    principal: ResourceId
    # Entitlement ids whose grants the principal's members inherit.
    expandable: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return f"{self.entitlement.id}:{self.principal.resource_type}:{self.principal.resource}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entitlement": self.entitlement.to_dict(),
            "principal": self.principal.to_dict(),
            "expandable": list(self.expandable),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Grant":
        return cls(
            entitlement=Entitlement.from_dict(data["entitlement"]),
            principal=ResourceId.from_dict(data["principal"]),
            expandable=list(data.get("expandable") or []),
        )


class SyncPage(NamedTuple):
    items: list
    next_token: str = ""
    rate_limit: Optional[RateLimitInfo] = None


class ResourceSyncer(ABC):
    """List, entitlements and grants for one resource type, plus grant/revoke."""

    resource_type: ResourceType

    @abstractmethod
    def list(self, parent_id: Optional[ResourceId], token: str = "") -> SyncPage:
        """Resources under ``parent_id``."""

    def entitlements(self, resource: Resource, token: str = "") -> SyncPage:
        return SyncPage([])

    def grants(self, resource: Resource, token: str = "") -> SyncPage:
        return SyncPage([])

    def grant(self, principal: ResourceId, entitlement: Entitlement) -> None:
        raise NotImplementedError(f"{self.resource_type.id} does not support grant")

    def revoke(self, grant: Grant) -> None:
        raise NotImplementedError(f"{self.resource_type.id} does not support revoke")
