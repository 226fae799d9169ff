"""HTTP transport: query encoding, auth, JSON decoding, structured errors."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional
from urllib.parse import unquote, urlsplit, urlunsplit

import requests

from baton_databricks.databricks.auth import Auth
from baton_databricks.databricks.endpoints import Scope
from baton_databricks.databricks.errors import APIError, DatabricksError
from baton_databricks.databricks.models import RateLimitInfo
from baton_databricks.databricks.vars import Vars, encode_vars

logger = logging.getLogger("baton_databricks.transport")

JSON_CONTENT_TYPE = "application/json"


class Transport:
    """Issues one request per call; no retries."""

    def __init__(
        self,
        auth: Auth,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.auth = auth
        self.timeout = timeout
        self.session = session or auth.new_session()

    def close(self) -> None:
        self.session.close()

    def get(self, scope: Scope, url: str, *vars: Vars) -> tuple[Any, RateLimitInfo]:
        return self.request("GET", scope, url, None, *vars)

    def put(self, scope: Scope, url: str, body: Any = None, *vars: Vars) -> tuple[Any, RateLimitInfo]:
        return self.request("PUT", scope, url, body, *vars)

    def post(self, scope: Scope, url: str, body: Any = None, *vars: Vars) -> tuple[Any, RateLimitInfo]:
        return self.request("POST", scope, url, body, *vars)

    def delete(self, scope: Scope, url: str) -> RateLimitInfo:
        _, rate_limit = self.request("DELETE", scope, url, None)
        return rate_limit

    def request(
        self,
        method: str,
        scope: Scope,
        url: str,
        body: Any = None,
        *vars: Vars,
    ) -> tuple[Any, RateLimitInfo]:
        """Send one request and return ``(decoded_body, rate_limit)``.

        Raises APIError on a non-2xx status. ``requests`` exceptions
        propagate unchanged.
        """
        target = urlunsplit(urlsplit(unquote(url)))
        headers = {"Accept": JSON_CONTENT_TYPE}
        req = requests.Request(
            method,
            target,
            headers=headers,
            params=encode_vars(*vars) or None,
            json=body,
        )
        self.auth.apply(req, scope)
        prepared = self.session.prepare_request(req)

        resp = self.session.send(prepared, timeout=self.timeout)
        rate_limit = RateLimitInfo.from_headers(resp.headers, resp.status_code)
        logger.debug(
            "%s %s -> %d",
            method,
            prepared.url,
            resp.status_code,
            extra={"workspace": scope.workspace, "status_code": resp.status_code},
        )

        # The platform labels JSON bodies as text/plain; ignore Content-Type.
        payload, raw, decoded = _decode(resp)

        if not 200 <= resp.status_code < 300:
            detail, message = "", ""
            if isinstance(payload, dict):
                detail = str(payload.get("detail") or payload.get("error_code") or "")
                message = str(payload.get("message") or "")
            elif raw:
                message = raw
            raise APIError(resp.status_code, detail, message, rate_limit)
        if not decoded:
            raise DatabricksError(f"failed to decode response body from {method} {prepared.url}")

        return payload, rate_limit


def _decode(resp: requests.Response) -> tuple[Any, str, bool]:
    """Returns ``(payload, raw_text, decoded)``; an empty body decodes to None.

    Bodies are UTF-8 JSON even when labelled text/plain, so ``resp.text``
    (which would fall back to ISO-8859-1) is not used.
    """
    raw = resp.content.decode("utf-8", errors="replace") if resp.content else ""
    if not raw.strip():
        return None, "", True
    try:
        return json.loads(raw), raw, True
    except ValueError:
        return None, raw, False
