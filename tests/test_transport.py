"""Tests for the transport wrapper.

Verifies:
- Error bodies are decoded as JSON regardless of Content-Type.
- Non-JSON error bodies land in the APIError message.
- Rate-limit headers are surfaced on success and on failure.
- Query parameters keep the order of the Vars that produced them.
"""

import pytest

from baton_databricks.databricks.errors import APIError, DatabricksError
from baton_databricks.databricks.vars import NameVars, PaginationVars, eq_filter
from conftest import make_response, sent, sent_json

URL = "https://accounts.cloud.databricks.com/api/2.0/accounts/acct-1/scim/v2/Users"


class TestErrorDecoding:
    def test_json_error_with_text_plain_content_type(self, transport, resolver, session):
        session.send.return_value = make_response(400, {"detail": "x", "message": "y"})

        with pytest.raises(APIError) as exc_info:
            transport.get(resolver.scope(), URL)

        err = exc_info.value
        assert err.status_code == 400
        assert err.detail == "x"
        assert err.message == "y"
        assert str(err) == "unexpected status code 400: x y"

    def test_error_code_used_when_detail_missing(self, transport, resolver, session):
        session.send.return_value = make_response(404, {"error_code": "NOT_FOUND", "message": "gone"})

        with pytest.raises(APIError) as exc_info:
            transport.get(resolver.scope(), URL)

        assert exc_info.value.detail == "NOT_FOUND"
        assert exc_info.value.message == "gone"

    def test_non_json_error_body_becomes_message(self, transport, resolver, session):
        session.send.return_value = make_response(502, text="Bad Gateway")

        with pytest.raises(APIError) as exc_info:
            transport.get(resolver.scope(), URL)

        assert exc_info.value.detail == ""
        assert exc_info.value.message == "Bad Gateway"

    def test_undecodable_success_body_raises(self, transport, resolver, session):
        session.send.return_value = make_response(200, text="<html>")

        with pytest.raises(DatabricksError):
            transport.get(resolver.scope(), URL)

    def test_empty_success_body_is_none(self, transport, resolver, session):
        session.send.return_value = make_response(200)

        payload, _ = transport.put(resolver.scope(), URL + "/1")

        assert payload is None

    def test_conflict_flag(self, transport, resolver, session):
        session.send.return_value = make_response(409, {"message": "etag mismatch"})

        with pytest.raises(APIError) as exc_info:
            transport.put(resolver.scope(), URL, {"a": 1})

        assert exc_info.value.is_conflict
        assert exc_info.value.mentions("etag")


class TestRateLimit:
    def test_headers_on_success(self, transport, resolver, session):
        session.send.return_value = make_response(
            200,
            {"Resources": []},
            headers={"X-RateLimit-Limit": "100", "X-RateLimit-Remaining": "99"},
        )

        _, rate_limit = transport.get(resolver.scope(), URL)

        assert rate_limit.limit == 100
        assert rate_limit.remaining == 99
        assert not rate_limit.overlimit

    def test_headers_on_failure(self, transport, resolver, session):
        session.send.return_value = make_response(429, {"message": "slow down"}, headers={"Retry-After": "7"})

        with pytest.raises(APIError) as exc_info:
            transport.get(resolver.scope(), URL)

        rate_limit = exc_info.value.rate_limit
        assert rate_limit.retry_after == 7.0
        assert rate_limit.overlimit
        assert rate_limit.reset_at is not None


class TestRequestShape:
    def test_query_parameters_in_vars_order(self, transport, resolver, session):
        session.send.return_value = make_response(200, {"Resources": []})

        transport.get(resolver.scope(), URL, PaginationVars(1, 50), eq_filter("userName", "alice"))

        prepared = sent(session)
        assert prepared.url == URL + "?startIndex=1&count=50&filter=userName+eq+%27alice%27"
        assert prepared.headers["Accept"] == "application/json"

    def test_etag_always_sent(self, transport, resolver, session):
        session.send.return_value = make_response(200, {})

        transport.get(resolver.scope(), URL, NameVars("accounts/acct-1/ruleSets/default"))

        assert "?etag=&name=accounts" in sent(session).url

    def test_double_encoded_url_is_normalised(self, transport, resolver, session):
        session.send.return_value = make_response(200, {})

        transport.get(resolver.scope(), URL + "/a%2520b")

        assert sent(session).url == URL + "/a%20b"

    def test_json_body(self, transport, resolver, session):
        session.send.return_value = make_response(201, {"id": "1"})

        payload, _ = transport.post(resolver.scope(), URL, {"userName": "alice"})

        assert payload == {"id": "1"}
        assert sent_json(session) == {"userName": "alice"}
        assert session.send.call_args[1]["timeout"] == 30.0
