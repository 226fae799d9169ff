"""Rule-set reconciliation for grant and revoke.

Rule sets are read, edited in memory and written back whole under the
etag recorded by the read. Conflicting writes fail with an APIError;
nothing here retries.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from baton_databricks.databricks.client import DatabricksClient
from baton_databricks.databricks.endpoints import Scope
from baton_databricks.databricks.models import Group, Member, RuleSet

logger = logging.getLogger("baton_databricks.rulesets")

RoleMatcher = Callable[[str, str], bool]


def exact(entry_role: str, role: str) -> bool:
    return entry_role == role


def substring(entry_role: str, role: str) -> bool:
    """Account rule sets return qualified names such as ``roles/marketplace.admin``."""
    return role in entry_role


def _copy(rule_sets: list[RuleSet]) -> list[RuleSet]:
    return [RuleSet(role=r.role, principals=list(r.principals)) for r in rule_sets]


def add_principal(
    rule_sets: list[RuleSet],
    role: str,
    principal: str,
    new_role: Optional[str] = None,
    match: RoleMatcher = exact,
) -> tuple[list[RuleSet], bool]:
    """Grant ``role`` to ``principal``; returns ``(updated, changed)``.

    Appends to the first entry for the role, or creates ``new_role`` (default
    ``role``) when there is none. The input list is not modified.
    """
    updated = _copy(rule_sets)
    matching = [r for r in updated if match(r.role, role)]
    if any(principal in r.principals for r in matching):
        return updated, False
    if matching:
        matching[0].principals.append(principal)
    else:
        updated.append(RuleSet(role=new_role or role, principals=[principal]))
    return updated, True


def remove_principal(
    rule_sets: list[RuleSet],
    role: str,
    principal: str,
    match: RoleMatcher = exact,
) -> tuple[list[RuleSet], bool]:
    """Revoke ``role`` from ``principal``; entries left empty are dropped."""
    updated: list[RuleSet] = []
    changed = False
    for r in _copy(rule_sets):
        if match(r.role, role) and principal in r.principals:
            r.principals = [p for p in r.principals if p != principal]
            changed = True
            if not r.principals:
                continue
        updated.append(r)
    return updated, changed


def grant_rule(
    client: DatabricksClient,
    scope: Scope,
    resource_type: str,
    resource_id: str,
    role: str,
    principal: str,
    new_role: Optional[str] = None,
    match: RoleMatcher = exact,
) -> bool:
    """Read, add ``principal`` under ``role``, write back. Returns whether a write happened."""
    rule_sets, _ = client.list_rule_sets(scope, resource_type, resource_id)
    updated, changed = add_principal(rule_sets, role, principal, new_role=new_role, match=match)
    if not changed:
        logger.info(
            "Principal already holds role, nothing to grant",
            extra={"principal_id": principal, "entitlement": role},
        )
        return False
    client.update_rule_sets(scope, resource_type, resource_id, updated)
    return True


def revoke_rule(
    client: DatabricksClient,
    scope: Scope,
    resource_type: str,
    resource_id: str,
    role: str,
    principal: str,
    match: RoleMatcher = exact,
) -> bool:
    """Read, remove ``principal`` from ``role``, write back. Returns whether a write happened."""
    rule_sets, _ = client.list_rule_sets(scope, resource_type, resource_id)
    updated, changed = remove_principal(rule_sets, role, principal, match=match)
    if not changed:
        logger.info(
            "Principal does not hold role, nothing to revoke",
            extra={"principal_id": principal, "entitlement": role},
        )
        return False
    client.update_rule_sets(scope, resource_type, resource_id, updated)
    return True


# ---------------------------------------------------------------------------
# Flat membership lists
# ---------------------------------------------------------------------------


def add_member(group: Group, member_id: str) -> bool:
    if any(m.id == member_id for m in group.members):
        return False
    group.members.append(Member(id=member_id))
    return True


def remove_member(group: Group, member_id: str) -> bool:
    kept = [m for m in group.members if m.id != member_id]
    if len(kept) == len(group.members):
        return False
    group.members = kept
    return True
