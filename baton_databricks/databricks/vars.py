"""Query-string parameter sets.

Each ``Vars`` serialises itself to ordered ``(key, value)`` pairs and only
emits non-empty fields. ``NameVars`` is the exception: the rule-set API
requires ``etag`` on every call, so it is always sent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class Vars(ABC):
    @abstractmethod
    def to_params(self) -> list[tuple[str, str]]:
        """Ordered query pairs; empty fields are left out."""


@dataclass(frozen=True)
class PaginationVars(Vars):
    start: int = 0
    count: int = 0

    def to_params(self) -> list[tuple[str, str]]:
        params = []
        if self.start > 0:
            params.append(("startIndex", str(self.start)))
        if self.count > 0:
            params.append(("count", str(self.count)))
        return params


@dataclass(frozen=True)
class FilterVars(Vars):
    filter: str = ""

    def to_params(self) -> list[tuple[str, str]]:
        return [("filter", self.filter)] if self.filter else []


def eq_filter(attribute: str, value: str) -> FilterVars:
    return FilterVars(f"{attribute} eq '{value}'")


@dataclass(frozen=True)
class AttrVars(Vars):
    attrs: tuple[str, ...] = field(default_factory=tuple)

    def to_params(self) -> list[tuple[str, str]]:
        return [("attributes", a) for a in self.attrs]


def user_attr_vars() -> AttrVars:
    return AttrVars(("id", "emails", "userName", "displayName", "active"))


def user_roles_attr_vars() -> AttrVars:
    return AttrVars(("roles", "entitlements"))


def group_attr_vars() -> AttrVars:
    return AttrVars(("id", "displayName", "members"))


def group_roles_attr_vars() -> AttrVars:
    return AttrVars(("roles", "entitlements", "meta"))


def service_principal_attr_vars() -> AttrVars:
    return AttrVars(("id", "displayName", "active", "applicationId"))


def service_principal_roles_attr_vars() -> AttrVars:
    return AttrVars(("roles", "entitlements"))


@dataclass(frozen=True)
class ResourceVars(Vars):
    resource: str = ""

    def to_params(self) -> list[tuple[str, str]]:
        return [("resource", self.resource)] if self.resource else []


@dataclass(frozen=True)
class NameVars(Vars):
    name: str = ""
    etag: str = ""

    def to_params(self) -> list[tuple[str, str]]:
        params = [("etag", self.etag)]
        if self.name:
            params.append(("name", self.name))
        return params


def encode_vars(*vars: Vars) -> list[tuple[str, str]]:
    params: list[tuple[str, str]] = []
    for v in vars:
        params.extend(v.to_params())
    return params
