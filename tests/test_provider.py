"""Tests for the Databricks sync provider."""

from unittest.mock import MagicMock, patch

import pytest

from baton_databricks.config import ConnectorConfig, DatabricksConfig
from baton_databricks.connector.resources import (
    ACCOUNT,
    USER,
    WORKSPACE,
    Grant,
    Resource,
    ResourceId,
    SyncPage,
    assignment_entitlement,
)
from baton_databricks.databricks.errors import APIError, ConnectorError
from baton_databricks.databricks.models import RateLimitInfo
from baton_databricks.providers.databricks import DatabricksProvider

ACCOUNT_RES = Resource(
    ResourceId(ACCOUNT.id, "acct-1"), "acct-1", child_resource_types=[WORKSPACE.id, USER.id]
)
WORKSPACE_RES = Resource(
    ResourceId(WORKSPACE.id, "dbc-1"), "prod", parent_id=ACCOUNT_RES.id, child_resource_types=[USER.id]
)
USER_RES = Resource(ResourceId(USER.id, "u1"), "Ada", parent_id=ACCOUNT_RES.id)
MEMBER = assignment_entitlement(WORKSPACE_RES, "member", "prod member", "prod member in Databricks")
MEMBER_GRANT = Grant(MEMBER, USER_RES.id)


def _syncer():
    syncer = MagicMock()
    syncer.entitlements.return_value = SyncPage([])
    syncer.grants.return_value = SyncPage([])
    return syncer


@pytest.fixture
def syncers():
    account, workspace, user = _syncer(), _syncer(), _syncer()
    account.list.return_value = SyncPage([ACCOUNT_RES])
    workspace.list.return_value = SyncPage([WORKSPACE_RES])
    workspace.entitlements.return_value = SyncPage([MEMBER])
    workspace.grants.return_value = SyncPage([MEMBER_GRANT])
    # Users are listed under the account and again under the workspace.
    user.list.return_value = SyncPage([USER_RES])
    return {ACCOUNT.id: account, WORKSPACE.id: workspace, USER.id: user}


@pytest.fixture
def db():
    database = MagicMock()
    database.upsert_batch.side_effect = lambda cur, table, columns, rows, *args: len(rows)
    return database


@pytest.fixture
def provider(syncers, db):
    connector = MagicMock()
    connector.resource_syncers.return_value = syncers
    config = ConnectorConfig(tenant_id="t-1", databricks=DatabricksConfig("acct-1"), batch_size=2)
    return DatabricksProvider(config, db, connector=connector)


def _rate_limited_error(retry_after=3.0):
    err = ConnectorError("failed to list users")
    err.__cause__ = APIError(429, message="slow down", rate_limit=RateLimitInfo(retry_after=retry_after))
    return err


class TestWalk:
    def test_breadth_first_with_dedup(self, provider, syncers):
        resources, entitlements, grants = provider._walk()

        assert [r.id for r in resources] == [ACCOUNT_RES.id, WORKSPACE_RES.id, USER_RES.id]
        assert entitlements == [MEMBER]
        assert grants == [MEMBER_GRANT]
        syncers[USER.id].entitlements.assert_not_called()
        assert syncers[USER.id].list.call_count == 2

    def test_follows_page_tokens(self, provider, syncers):
        other = Resource(ResourceId(USER.id, "u2"), "Bob", parent_id=ACCOUNT_RES.id)
        syncers[USER.id].list.side_effect = [
            SyncPage([USER_RES], "next"),
            SyncPage([other]),
            SyncPage([]),
        ]

        resources, _, _ = provider._walk()

        assert [r.id.resource for r in resources] == ["acct-1", "dbc-1", "u1", "u2"]
        assert syncers[USER.id].list.call_args_list[1][0] == (ACCOUNT_RES.id, "next")

    @patch.object(DatabricksProvider, "_rate_limit_sleep")
    def test_rate_limited_page_is_retried(self, sleep, provider, syncers):
        syncers[USER.id].list.side_effect = [_rate_limited_error(), SyncPage([USER_RES]), SyncPage([])]

        resources, _, _ = provider._walk()

        sleep.assert_called_once_with(0, retry_after=3.0)
        assert USER_RES.id in [r.id for r in resources]

    @patch.object(DatabricksProvider, "_rate_limit_sleep")
    def test_other_errors_propagate(self, sleep, provider, syncers):
        syncers[USER.id].list.side_effect = ConnectorError("failed to list users")

        with pytest.raises(ConnectorError):
            provider._walk()
        sleep.assert_not_called()

    @patch.object(DatabricksProvider, "_rate_limit_sleep")
    def test_retries_are_bounded(self, sleep, provider, syncers):
        syncers[ACCOUNT.id].list.side_effect = _rate_limited_error()

        with pytest.raises(ConnectorError):
            provider._walk()
        assert sleep.call_count == 5


class TestSync:
    def test_validates_then_upserts(self, provider, db):
        results = provider.sync()

        provider.connector.validate.assert_called_once()
        assert results == {"resources": 3, "entitlements": 1, "grants": 1}
        tables = [c[0][1] for c in db.upsert_batch.call_args_list]
        # Three resources at batch size 2 take two batches.
        assert tables == ["connector_resources", "connector_resources", "connector_entitlements", "connector_grants"]

    def test_grant_rows(self, provider, db):
        provider.sync()

        _, table, columns, rows, conflict, update = db.upsert_batch.call_args_list[-1][0]
        assert columns == ["tenant_id", "grant_id", "entitlement_id", "principal_type", "principal_id", "payload"]
        assert rows[0][:5] == ("t-1", MEMBER_GRANT.id, MEMBER.id, "user", "u1")
        assert conflict == ["tenant_id", "grant_id"]
        assert "grant_id" not in update

    def test_tracked_run(self, provider, db):
        db.record_run_start.return_value = "run-1"

        provider.sync_with_tracking()

        db.record_run_end.assert_called_once_with(
            run_id="run-1", tenant_id="t-1", status="SUCCESS", records_upserted=5
        )

    def test_failed_run_recorded(self, provider, db):
        db.record_run_start.return_value = "run-1"
        provider.connector.validate.side_effect = ConnectorError("failed to validate credentials")

        with pytest.raises(ConnectorError):
            provider.sync_with_tracking()

        assert db.record_run_end.call_args[1]["status"] == "FAILED"


class TestProvisioning:
    def test_grant(self, provider, syncers, db):
        db.load_entitlement.return_value = MEMBER.to_dict()

        grant = provider.grant(MEMBER.id, USER.id, "u1")

        principal, entitlement = syncers[WORKSPACE.id].grant.call_args[0]
        assert principal == ResourceId(USER.id, "u1")
        assert entitlement.id == MEMBER.id
        assert grant.id == MEMBER_GRANT.id
        assert db.upsert_batch.call_args[0][1] == "connector_grants"

    def test_grant_unknown_entitlement(self, provider, db):
        db.load_entitlement.return_value = None

        with pytest.raises(LookupError, match="entitlement not synced"):
            provider.grant("workspace:dbc-1:member", USER.id, "u1")

    def test_revoke(self, provider, syncers, db):
        db.load_grant.return_value = MEMBER_GRANT.to_dict()

        provider.revoke(MEMBER_GRANT.id)

        revoked = syncers[WORKSPACE.id].revoke.call_args[0][0]
        assert revoked.principal == USER_RES.id
        db.delete_grant.assert_called_once_with("t-1", MEMBER_GRANT.id)

    def test_revoke_failure_keeps_stored_grant(self, provider, syncers, db):
        db.load_grant.return_value = MEMBER_GRANT.to_dict()
        syncers[WORKSPACE.id].revoke.side_effect = ConnectorError("failed to remove workspace member")

        with pytest.raises(ConnectorError):
            provider.revoke(MEMBER_GRANT.id)
        db.delete_grant.assert_not_called()

    def test_create_account_stores_user(self, provider, syncers, db):
        syncers[USER.id].create_account.return_value = USER_RES

        assert provider.create_account({"userName": "ada@example.com", "displayName": "Ada"}) is USER_RES

        assert db.upsert_batch.call_args[0][1] == "connector_resources"

    def test_create_account_not_readable_yet(self, provider, syncers, db):
        syncers[USER.id].create_account.return_value = None

        assert provider.create_account({"userName": "ada@example.com", "displayName": "Ada"}) is None
        db.upsert_batch.assert_not_called()

    def test_delete_user(self, provider, syncers, db):
        provider.delete_user("u1")

        syncers[USER.id].delete.assert_called_once_with(ResourceId(USER.id, "u1"))
        db.delete_principal.assert_called_once_with("t-1", USER.id, "u1")

    def test_failed_delete_keeps_stored_user(self, provider, syncers, db):
        syncers[USER.id].delete.side_effect = ConnectorError("failed to delete user")

        with pytest.raises(ConnectorError):
            provider.delete_user("u1")
        db.delete_principal.assert_not_called()
