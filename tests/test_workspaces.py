"""Tests for the workspace syncer."""

import pytest

from baton_databricks.connector.helpers import APIAvailability, GroupResourceCache
from baton_databricks.connector.resources import (
    ACCOUNT,
    GROUP,
    ROLE,
    SERVICE_PRINCIPAL,
    USER,
    Grant,
    ResourceId,
)
from baton_databricks.connector.workspaces import PERMISSIONS_API_UNAVAILABLE, WorkspaceSyncer
from baton_databricks.databricks.errors import APIError, ConnectorError
from baton_databricks.databricks.models import (
    RateLimitInfo,
    Workspace,
    WorkspaceAssignment,
    WorkspacePrincipal,
)

RL = RateLimitInfo()
ACCOUNT_RID = ResourceId(ACCOUNT.id, "acct-1")


def _syncer(client, account=True, workspace=True, **kwargs):
    return WorkspaceSyncer(
        client, APIAvailability(account=account, workspace=workspace), GroupResourceCache(), **kwargs
    )


def _workspace_resource(client):
    return _syncer(client).workspace_resource(Workspace(id=123, name="prod", deployment_name="dbc-1"), ACCOUNT_RID)


class TestListing:
    def test_list_filters_by_allow_list(self, mock_client):
        mock_client.list_workspaces.return_value = (
            [Workspace(1, "prod", deployment_name="dbc-1"), Workspace(2, "dev", deployment_name="dbc-2")],
            RL,
        )

        items = _syncer(mock_client, workspaces=["dbc-1"]).list(ACCOUNT_RID).items

        assert [w.id.resource for w in items] == ["dbc-1"]
        assert items[0].display_name == "prod"
        assert items[0].profile == {"workspace_id": 1}
        assert items[0].child_resource_types == [ROLE.id, USER.id, GROUP.id, SERVICE_PRINCIPAL.id]

    def test_token_auth_uses_configured_workspaces(self, mock_client):
        items = _syncer(mock_client, workspaces=["dbc-1", "dbc-2"], token_auth=True).list(ACCOUNT_RID).items

        assert [w.id.resource for w in items] == ["dbc-1", "dbc-2"]
        mock_client.list_workspaces.assert_not_called()

    def test_roles_only_without_workspace_api(self, mock_client):
        mock_client.list_workspaces.return_value = ([Workspace(1, deployment_name="dbc-1")], RL)

        items = _syncer(mock_client, workspace=False).list(ACCOUNT_RID).items

        assert items[0].child_resource_types == [ROLE.id]
        assert items[0].display_name == "dbc-1"

    def test_listing_failure(self, mock_client):
        mock_client.list_workspaces.side_effect = APIError(403, message="forbidden")

        with pytest.raises(ConnectorError, match="failed to list workspaces"):
            _syncer(mock_client).list(ACCOUNT_RID)


class TestGrants:
    def test_assignments_become_member_grants(self, mock_client):
        mock_client.list_workspace_members.return_value = (
            [
                WorkspaceAssignment(WorkspacePrincipal(id=5, user_name="a@x"), ("USER",)),
                WorkspaceAssignment(WorkspacePrincipal(id=6, group_display_name="eng"), ("USER",)),
                WorkspaceAssignment(WorkspacePrincipal(id=7, service_principal_app_id="app"), ("ADMIN",)),
                WorkspaceAssignment(None),
            ],
            RL,
        )
        resource = _workspace_resource(mock_client)

        grants = _syncer(mock_client).grants(resource).items

        mock_client.list_workspace_members.assert_called_once_with(123)
        assert [(g.principal, g.expandable) for g in grants] == [
            (ResourceId(USER.id, "5"), []),
            (ResourceId(GROUP.id, "group/6"), ["group:group/6:member"]),
            (ResourceId(SERVICE_PRINCIPAL.id, "7"), []),
        ]

    def test_permissions_api_unavailable_is_skipped(self, mock_client):
        mock_client.list_workspace_members.side_effect = APIError(
            400, detail="", message=PERMISSIONS_API_UNAVAILABLE, rate_limit=RL
        )

        page = _syncer(mock_client).grants(_workspace_resource(mock_client))

        assert page.items == []
        assert page.next_token == ""

    def test_other_bad_request_fails(self, mock_client):
        mock_client.list_workspace_members.side_effect = APIError(400, message="malformed request")

        with pytest.raises(ConnectorError, match="failed to list workspace members"):
            _syncer(mock_client).grants(_workspace_resource(mock_client))

    def test_no_grants_without_account_api(self, mock_client):
        syncer = _syncer(mock_client, account=False)
        resource = _workspace_resource(mock_client)

        assert syncer.entitlements(resource).items == []
        assert syncer.grants(resource).items == []
        mock_client.list_workspace_members.assert_not_called()


class TestMembership:
    def test_grant_uses_bare_group_id(self, mock_client):
        syncer = _syncer(mock_client)
        entitlement = syncer.entitlements(_workspace_resource(mock_client)).items[0]

        syncer.grant(ResourceId(GROUP.id, "workspace/dbc-1/group/6"), entitlement)

        mock_client.create_or_update_workspace_member.assert_called_once_with(123, "6")

    def test_revoke(self, mock_client):
        syncer = _syncer(mock_client)
        entitlement = syncer.entitlements(_workspace_resource(mock_client)).items[0]

        syncer.revoke(Grant(entitlement, ResourceId(USER.id, "5")))

        mock_client.remove_workspace_member.assert_called_once_with(123, "5")

    def test_revoke_failure(self, mock_client):
        mock_client.remove_workspace_member.side_effect = APIError(500, message="boom")
        syncer = _syncer(mock_client)
        entitlement = syncer.entitlements(_workspace_resource(mock_client)).items[0]

        with pytest.raises(ConnectorError, match="failed to remove workspace member"):
            syncer.revoke(Grant(entitlement, ResourceId(USER.id, "5")))
