"""Tests for the role syncer and its multi-principal page walk."""

import json

import pytest

from baton_databricks.connector.helpers import GroupResourceCache
from baton_databricks.connector.resources import (
    ACCOUNT,
    GROUP,
    ROLE,
    SERVICE_PRINCIPAL,
    USER,
    WORKSPACE,
    Grant,
    ResourceId,
)
from baton_databricks.connector.roles import RoleSyncer, role_resource
from baton_databricks.databricks.errors import APIError, ConnectorError
from baton_databricks.databricks.models import (
    Group,
    Permissions,
    RateLimitInfo,
    ServicePrincipal,
    User,
)

RL = RateLimitInfo()
ACCOUNT_RID = ResourceId(ACCOUNT.id, "acct-1")
WORKSPACE_RID = ResourceId(WORKSPACE.id, "dbc-1")


class TestListing:
    def test_account_roles(self, mock_client):
        roles = RoleSyncer(mock_client, GroupResourceCache()).list(ACCOUNT_RID).items

        assert [r.id for r in roles] == [ResourceId(ROLE.id, "account_admin")]

    def test_workspace_entitlements_are_prefixed(self, mock_client):
        roles = RoleSyncer(mock_client, GroupResourceCache()).list(WORKSPACE_RID).items

        assert [r.id.resource for r in roles] == [
            "dbc-1:workspace-access",
            "dbc-1:databricks-sql-access",
            "dbc-1:allow-cluster-create",
            "dbc-1:allow-instance-pool-create",
        ]
        assert roles[0].display_name == "workspace-access"

    def test_member_entitlement(self, mock_client):
        role = role_resource("account_admin", ACCOUNT_RID)

        entitlement = RoleSyncer(mock_client, GroupResourceCache()).entitlements(role).items[0]

        assert entitlement.slug == "member"
        assert entitlement.display_name == "account_admin role"


class TestGrantWalk:
    def test_walks_every_principal_kind(self, mock_client):
        mock_client.list_service_principals.return_value = (
            [ServicePrincipal(id="s1", permissions=Permissions(roles=["account_admin"]))],
            1,
            RL,
        )
        mock_client.list_groups.return_value = (
            [
                Group(id="g1", resource_type="Group", permissions=Permissions(roles=["account_admin"])),
                Group(id="g2", resource_type="WorkspaceGroup", permissions=Permissions(roles=["account_admin"])),
            ],
            2,
            RL,
        )
        mock_client.list_users.return_value = (
            [User(id="u1", permissions=Permissions(roles=["account_admin"])), User(id="u2")],
            2,
            RL,
        )
        syncer = RoleSyncer(mock_client, GroupResourceCache())
        role = role_resource("account_admin", ACCOUNT_RID)

        principals = []
        token, calls = "", 0
        while True:
            page = syncer.grants(role, token)
            calls += 1
            principals.extend(g.principal for g in page.items)
            token = page.next_token
            if not token:
                break

        assert calls == 4
        assert principals == [
            ResourceId(SERVICE_PRINCIPAL.id, "s1"),
            ResourceId(GROUP.id, "group/g1"),
            ResourceId(USER.id, "u1"),
        ]

    def test_first_call_seeds_principal_kinds(self, mock_client):
        role = role_resource("account_admin", ACCOUNT_RID)

        page = RoleSyncer(mock_client, GroupResourceCache()).grants(role)

        token = json.loads(page.next_token)
        assert page.items == []
        assert token["current_state"]["resource_type_id"] == SERVICE_PRINCIPAL.id
        assert [s["resource_type_id"] for s in token["states"]] == [USER.id, GROUP.id]

    def test_workspace_role_checks_entitlements(self, mock_client):
        mock_client.list_service_principals.return_value = (
            [
                ServicePrincipal(id="s1", permissions=Permissions(entitlements=["workspace-access"])),
                ServicePrincipal(id="s2", permissions=Permissions(roles=["workspace-access"])),
            ],
            2,
            RL,
        )
        syncer = RoleSyncer(mock_client, GroupResourceCache())
        role = role_resource("workspace-access", WORKSPACE_RID)
        token = syncer.grants(role).next_token

        page = syncer.grants(role, token)

        assert [g.principal.resource for g in page.items] == ["s1"]
        assert mock_client.list_service_principals.call_args[0][0].workspace == "dbc-1"

    def test_listing_failure(self, mock_client):
        mock_client.list_service_principals.side_effect = APIError(500, message="boom")
        syncer = RoleSyncer(mock_client, GroupResourceCache())
        role = role_resource("account_admin", ACCOUNT_RID)
        token = syncer.grants(role).next_token

        with pytest.raises(ConnectorError, match="failed to list service_principal principals"):
            syncer.grants(role, token)


class TestGrantRevoke:
    def test_grant_workspace_entitlement(self, mock_client):
        mock_client.get_user.return_value = (User(id="u1"), RL)
        syncer = RoleSyncer(mock_client, GroupResourceCache())
        entitlement = syncer.entitlements(role_resource("workspace-access", WORKSPACE_RID)).items[0]

        syncer.grant(ResourceId(USER.id, "u1"), entitlement)

        scope, user = mock_client.update_user.call_args[0]
        assert scope.workspace == "dbc-1"
        assert user.permissions.entitlements == ["workspace-access"]

    def test_grant_account_role_to_compound_group(self, mock_client):
        mock_client.get_group.return_value = (Group(id="g1"), RL)
        syncer = RoleSyncer(mock_client, GroupResourceCache())
        entitlement = syncer.entitlements(role_resource("account_admin", ACCOUNT_RID)).items[0]

        syncer.grant(ResourceId(GROUP.id, "group/g1"), entitlement)

        assert mock_client.get_group.call_args[0][1] == "g1"
        assert mock_client.update_group.call_args[0][1].permissions.roles == ["account_admin"]

    def test_grant_already_held_is_no_op(self, mock_client):
        mock_client.get_service_principal.return_value = (
            ServicePrincipal(id="s1", permissions=Permissions(roles=["account_admin"])),
            RL,
        )
        syncer = RoleSyncer(mock_client, GroupResourceCache())
        entitlement = syncer.entitlements(role_resource("account_admin", ACCOUNT_RID)).items[0]

        syncer.grant(ResourceId(SERVICE_PRINCIPAL.id, "s1"), entitlement)

        mock_client.update_service_principal.assert_not_called()

    def test_revoke(self, mock_client):
        mock_client.get_user.return_value = (
            User(id="u1", permissions=Permissions(roles=["account_admin"])),
            RL,
        )
        syncer = RoleSyncer(mock_client, GroupResourceCache())
        entitlement = syncer.entitlements(role_resource("account_admin", ACCOUNT_RID)).items[0]

        syncer.revoke(Grant(entitlement, ResourceId(USER.id, "u1")))

        assert mock_client.update_user.call_args[0][1].permissions.roles == []

    def test_invalid_principal(self, mock_client):
        syncer = RoleSyncer(mock_client, GroupResourceCache())
        entitlement = syncer.entitlements(role_resource("account_admin", ACCOUNT_RID)).items[0]

        with pytest.raises(ConnectorError, match="role membership"):
            syncer.grant(ResourceId(WORKSPACE.id, "dbc-1"), entitlement)
