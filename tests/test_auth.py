"""Tests for credential strategies."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from baton_databricks.databricks.auth import (
    BasicAuth,
    NoAuth,
    OAuth2,
    OAuth2TokenSource,
    TokenAuth,
)
from baton_databricks.databricks.endpoints import EndpointResolver
from baton_databricks.databricks.errors import AuthError

resolver = EndpointResolver("acct-1")


def _request():
    return requests.Request("GET", "https://example.invalid/api")


def _token_response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.text = "error"
    resp.json.return_value = body if body is not None else {"access_token": "tok", "expires_in": 3600}
    return resp


class TestTokenAuth:
    def test_token_chosen_by_call_scope(self):
        auth = TokenAuth(["ws1", "ws2"], ["t1", "t2"])

        first, second = _request(), _request()
        auth.apply(first, resolver.scope("ws1"))
        auth.apply(second, resolver.scope("ws2"))

        assert first.headers["Authorization"] == "Bearer t1"
        assert second.headers["Authorization"] == "Bearer t2"

    def test_unknown_workspace_sends_no_header(self):
        auth = TokenAuth(["ws1"], ["t1"])
        req = _request()

        auth.apply(req, resolver.scope())

        assert "Authorization" not in req.headers

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="same length"):
            TokenAuth(["ws1", "ws2"], ["t1"])

    def test_workspaces(self):
        assert TokenAuth(["ws1", "ws2"], ["t1", "t2"]).workspaces == ["ws1", "ws2"]


class TestBasicAuth:
    def test_header(self):
        req = _request()
        BasicAuth("user", "pass").apply(req, resolver.scope())
        assert req.headers["Authorization"] == "Basic dXNlcjpwYXNz"


class TestNoAuth:
    def test_leaves_request_untouched(self):
        req = _request()
        NoAuth().apply(req, resolver.scope("ws1"))
        assert req.headers == {}


class TestOAuth2:
    @patch("baton_databricks.databricks.auth.requests.post")
    def test_token_cached_until_refresh_margin(self, mock_post):
        mock_post.return_value = _token_response()
        source = OAuth2TokenSource("https://accounts.example/token", "cid", "secret")

        assert source.token() == "tok"
        assert source.token() == "tok"
        assert mock_post.call_count == 1

        _, kwargs = mock_post.call_args
        assert kwargs["data"] == {"grant_type": "client_credentials", "scope": "all-apis"}
        assert kwargs["auth"].username == "cid"

    @patch("baton_databricks.databricks.auth.requests.post")
    def test_refreshes_near_expiry(self, mock_post):
        mock_post.return_value = _token_response()
        source = OAuth2TokenSource("https://accounts.example/token", "cid", "secret")
        source.token()
        source._expires_at = datetime.now(timezone.utc) + timedelta(minutes=4)

        source.token()

        assert mock_post.call_count == 2

    @patch("baton_databricks.databricks.auth.requests.post")
    def test_failed_exchange(self, mock_post):
        mock_post.return_value = _token_response(status=401)
        source = OAuth2TokenSource("https://accounts.example/token", "cid", "secret")

        with pytest.raises(AuthError, match="status 401"):
            source.token()

    @patch("baton_databricks.databricks.auth.requests.post")
    def test_missing_access_token(self, mock_post):
        mock_post.return_value = _token_response(body={"expires_in": 60})
        source = OAuth2TokenSource("https://accounts.example/token", "cid", "secret")

        with pytest.raises(AuthError, match="access token not found"):
            source.token()

    @pytest.mark.parametrize("expires_in", ["soon", None])
    @patch("baton_databricks.databricks.auth.requests.post")
    def test_bad_expiry(self, mock_post, expires_in):
        mock_post.return_value = _token_response(body={"access_token": "t", "expires_in": expires_in})
        source = OAuth2TokenSource("https://accounts.example/token", "cid", "secret")

        with pytest.raises(AuthError, match="invalid expires_in"):
            source.token()

    def test_session_carries_token_source(self):
        auth = OAuth2("acct-1", "cid", "secret", "accounts.cloud.databricks.com")

        session = auth.new_session()

        assert session.auth is auth.token_source
        assert auth.token_source.token_url == (
            "https://accounts.cloud.databricks.com/oidc/accounts/acct-1/v1/token"
        )
