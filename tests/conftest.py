"""Shared fixtures: a real requests.Session whose ``send`` is mocked."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from baton_databricks.databricks.auth import NoAuth
from baton_databricks.databricks.client import DatabricksClient
from baton_databricks.databricks.endpoints import EndpointResolver
from baton_databricks.databricks.transport import Transport

ACCOUNT_ID = "acct-1"


def make_response(status=200, body=None, text=None, headers=None):
    """Build a requests.Response; bodies are labelled text/plain like the platform does."""
    resp = requests.Response()
    resp.status_code = status
    if text is not None:
        resp._content = text.encode("utf-8")
    elif body is not None:
        resp._content = json.dumps(body).encode("utf-8")
    else:
        resp._content = b""
    resp.headers["Content-Type"] = "text/plain; charset=utf-8"
    resp.headers.update(headers or {})
    return resp


def sent(session, index=-1):
    """The PreparedRequest passed to ``session.send`` on call ``index``."""
    return session.send.call_args_list[index][0][0]


def sent_json(session, index=-1):
    body = sent(session, index).body
    return json.loads(body) if body else None


@pytest.fixture
def session():
    s = requests.Session()
    s.send = MagicMock()
    return s


@pytest.fixture
def resolver():
    return EndpointResolver(ACCOUNT_ID)


@pytest.fixture
def transport(session):
    return Transport(NoAuth(), session=session)


@pytest.fixture
def client(transport, resolver):
    return DatabricksClient(transport, resolver)


@pytest.fixture
def mock_client(resolver):
    """A MagicMock client that still builds real scopes."""
    c = MagicMock()
    c.account_id = ACCOUNT_ID
    c.scope.side_effect = resolver.scope
    return c
