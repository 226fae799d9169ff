"""User syncer: listing plus account provisioning and deletion."""

from __future__ import annotations

import logging
from typing import Any, Optional

from baton_databricks.connector.helpers import account_resource_id, workspace_of
from baton_databricks.connector.pagination import (
    RESOURCES_PAGE_SIZE,
    parse_page_token,
    prepare_next_token,
)
from baton_databricks.connector.resources import (
    ACCOUNT,
    STATUS_DISABLED,
    STATUS_ENABLED,
    USER,
    Resource,
    ResourceId,
    ResourceSyncer,
    SyncPage,
)
from baton_databricks.databricks.client import DatabricksClient
from baton_databricks.databricks.errors import ConnectorError, DatabricksError
from baton_databricks.databricks.models import CreateUserBody, User
from baton_databricks.databricks.vars import PaginationVars, user_attr_vars

logger = logging.getLogger("baton_databricks.connector.users")


def split_full_name(name: str) -> tuple[str, str]:
    first, _, last = name.strip().partition(" ")
    return first, last.strip()


def user_resource(user: User, parent: Optional[ResourceId]) -> Resource:
    primary_email = user.primary_email
    first_name, last_name = split_full_name(user.display_name)
    emails = [(e.value, e.primary) for e in user.emails]
    if primary_email and (primary_email, True) not in emails:
        emails.insert(0, (primary_email, True))

    return Resource(
        id=ResourceId(USER.id, user.id),
        display_name=user.display_name,
        # Only account parents are kept; workspace listings repeat account users.
        parent_id=parent if parent is not None and parent.resource_type == ACCOUNT.id else None,
        profile={
            "first_name": first_name,
            "last_name": last_name,
            "email": primary_email,
            "user_id": user.id,
            "login": user.user_name,
        },
        login=user.user_name,
        status=STATUS_ENABLED if user.active else STATUS_DISABLED,
        emails=emails,
    )


class UserSyncer(ResourceSyncer):
    resource_type = USER

    def __init__(self, client: DatabricksClient) -> None:
        self.client = client

    def list(self, parent_id: Optional[ResourceId], token: str = "") -> SyncPage:
        if parent_id is None:
            return SyncPage([])

        scope = self.client.scope(workspace_of(parent_id))
        bag, page = parse_page_token(token, USER.id)
        try:
            users, total, rate_limit = self.client.list_users(
                scope, PaginationVars(page, RESOURCES_PAGE_SIZE), user_attr_vars()
            )
        except DatabricksError as exc:
            raise ConnectorError("failed to list users") from exc

        resources = [user_resource(u, parent_id) for u in users]
        next_token = bag.next_token(prepare_next_token(page, len(users), total))
        return SyncPage(resources, next_token, rate_limit)

    def create_account(self, profile: dict[str, Any]) -> Optional[Resource]:
        """Provision an account-level user.

        ``userName`` (falling back to ``email``) and ``displayName`` are
        required. Returns None when the user was created but could not be
        read back yet.
        """
        user_name = profile.get("userName") or profile.get("email") or ""
        if not user_name:
            raise ConnectorError("username is required to create a user")
        display_name = profile.get("displayName") or ""
        if not display_name:
            raise ConnectorError("displayName is required to create a user")

        body = CreateUserBody(
            user_name=str(user_name),
            display_name=str(display_name),
            given_name=str(profile.get("givenName") or ""),
            family_name=str(profile.get("familyName") or ""),
            id=str(profile.get("id") or ""),
            active=bool(profile.get("active", True)),
        )
        scope = self.client.scope()
        try:
            created, _ = self.client.create_user(scope, body)
        except DatabricksError as exc:
            raise ConnectorError("failed to create user") from exc

        try:
            user, _ = self.client.get_user(scope, created.id)
        except DatabricksError as exc:
            logger.warning("Created user %s is not readable yet: %s", created.id, exc)
            return None

        logger.info("Created user", extra={"principal_id": user.id})
        return user_resource(user, account_resource_id(self.client.account_id))

    def delete(self, resource_id: ResourceId) -> None:
        try:
            self.client.delete_user(self.client.scope(), resource_id.resource)
        except DatabricksError as exc:
            raise ConnectorError("failed to delete user") from exc
        logger.info("Deleted user", extra={"principal_id": resource_id.resource})
