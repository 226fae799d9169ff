"""Credential strategies applied to outgoing Databricks requests.

Every strategy receives the call's ``Scope`` so workspace-keyed tokens are
chosen per request rather than through a shared "current workspace".
OAuth2 installs a token-injecting ``requests`` auth handler on its session
instead of mutating headers in ``apply``.
"""

from __future__ import annotations

import base64
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

import requests
from requests.auth import AuthBase, HTTPBasicAuth

from baton_databricks.databricks.endpoints import Scope
from baton_databricks.databricks.errors import AuthError

logger = logging.getLogger("baton_databricks.auth")

# Refresh this long before the advertised expiry.
TOKEN_REFRESH_MARGIN = timedelta(minutes=5)


class Auth:
    def apply(self, request: requests.Request, scope: Scope) -> None:
        """Mutate ``request`` headers for ``scope``."""

    def new_session(self) -> requests.Session:
        return requests.Session()


class NoAuth(Auth):
    pass


class TokenAuth(Auth):
    """Personal access tokens, one per workspace."""

    def __init__(self, workspaces: list[str], tokens: list[str]) -> None:
        if len(workspaces) != len(tokens):
            raise ValueError(
                f"workspaces and tokens must be the same length. "
                f"Received {len(workspaces)} workspaces and {len(tokens)} tokens"
            )
        self._tokens = dict(zip(workspaces, tokens))

    @property
    def workspaces(self) -> list[str]:
        return list(self._tokens)

    def apply(self, request: requests.Request, scope: Scope) -> None:
        token = self._tokens.get(scope.workspace)
        if token is None:
            logger.debug("No token for scope", extra={"workspace": scope.workspace})
            return
        request.headers["Authorization"] = f"Bearer {token}"


class BasicAuth(Auth):
    def __init__(self, username: str, password: str) -> None:
        self.username = username
        self.password = password

    def apply(self, request: requests.Request, scope: Scope) -> None:
        credentials = f"{self.username}:{self.password}".encode()
        request.headers["Authorization"] = f"Basic {base64.b64encode(credentials).decode()}"


class OAuth2TokenSource(AuthBase):
    """Client-credentials token source with a thread-safe in-memory cache."""

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._lock = threading.Lock()

    def __call__(self, r: requests.PreparedRequest) -> requests.PreparedRequest:
        r.headers["Authorization"] = f"Bearer {self.token()}"
        return r

    def token(self) -> str:
        with self._lock:
            now = datetime.now(timezone.utc)
            if self._token and self._expires_at and now < self._expires_at - TOKEN_REFRESH_MARGIN:
                return self._token
            self._token, self._expires_at = self._fetch(now)
            return self._token

    def _fetch(self, now: datetime) -> tuple[str, datetime]:
        try:
            resp = requests.post(
                self.token_url,
                auth=HTTPBasicAuth(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials", "scope": "all-apis"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AuthError(f"network error during token request: {exc}") from exc

        if resp.status_code != 200:
            raise AuthError(f"token request failed with status {resp.status_code}: {resp.text}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise AuthError(f"failed to parse token response as JSON: {exc}") from exc

        access_token = data.get("access_token")
        if not access_token:
            raise AuthError("access token not found in response")
        try:
            expires_in = int(data.get("expires_in", 3600))
        except (TypeError, ValueError) as exc:
            raise AuthError(f"invalid expires_in in token response: {data.get('expires_in')!r}") from exc
        logger.debug("Fetched OAuth2 token, expires in %ds", expires_in)
        return access_token, now + timedelta(seconds=expires_in)


class OAuth2(Auth):
    def __init__(
        self,
        account_id: str,
        client_id: str,
        client_secret: str,
        account_hostname: str,
    ) -> None:
        self.token_source = OAuth2TokenSource(
            token_url=f"https://{account_hostname}/oidc/accounts/{account_id}/v1/token",
            client_id=client_id,
            client_secret=client_secret,
        )

    def new_session(self) -> requests.Session:
        session = requests.Session()
        session.auth = self.token_source
        return session
