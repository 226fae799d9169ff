"""Databricks client exception types.

Raised by the transport and the resource client. Network failures are not
wrapped: ``requests`` exceptions propagate unchanged.
"""

from __future__ import annotations

from typing import Optional

from baton_databricks.databricks.models import RateLimitInfo


class DatabricksError(Exception):
    """Base exception for all Databricks client errors."""


class APIError(DatabricksError):
    """Non-2xx response from the platform.

    ``detail`` and ``message`` come from the ``{"detail", "message"}`` error
    payload; when the body is not JSON, ``message`` carries the raw text.
    """

    def __init__(
        self,
        status_code: int,
        detail: str = "",
        message: str = "",
        rate_limit: Optional[RateLimitInfo] = None,
    ):
        self.status_code = status_code
        self.detail = detail
        self.message = message
        self.rate_limit = rate_limit
        super().__init__(
            f"unexpected status code {status_code}: {detail} {message}".rstrip()
        )

    @property
    def is_conflict(self) -> bool:
        """Stale etag or concurrent modification."""
        return self.status_code in (409, 412)

    def mentions(self, text: str) -> bool:
        return text in self.message or text in self.detail


class NotFoundError(DatabricksError):
    """A natural-key lookup matched nothing."""

    def __init__(
        self,
        kind: str,
        key: str,
        rate_limit: Optional[RateLimitInfo] = None,
    ):
        self.kind = kind
        self.key = key
        self.rate_limit = rate_limit
        super().__init__(f"{kind} not found: {key}")


class UnknownEndpointError(DatabricksError, ValueError):
    """No path is defined for this endpoint in the requested scope."""


class ScopeError(DatabricksError, ValueError):
    """An account-only operation was called with a workspace scope."""


class AuthError(DatabricksError):
    """Credential exchange failed."""


class ConnectorError(DatabricksError):
    """A resource syncer operation failed; the cause is chained."""

    def __init__(self, message: str):
        super().__init__(f"databricks-connector: {message}")
