"""
Consul ACL HTTP client.

- JSON over `requests.Session`, `X-Consul-Token` authentication.
- Retries with exponential backoff on network errors, timeouts and 5xx.
- No retry on 4xx.
- 404 on a read means "absent" (``None``), never an error.
- Every other failure is raised as DirectoryLookupError with status, url and body.

Usage:
    client = ConsulClient("http://127.0.0.1:8500", token="...")
    policy = client.lookup_policy_by_name("app")
"""

from __future__ import annotations

import logging
import time
import warnings
from typing import Any, Dict, List, Optional

import requests
import urllib3

from .directory import DirectoryClient
from .errors import DirectoryLookupError
from .models import Policy, Token

DEFAULT_ADDRESS = "http://localhost:8500"

_POLICIES = "/v1/acl/policies"
_POLICY = "/v1/acl/policy"
_TOKENS = "/v1/acl/tokens"
_TOKEN = "/v1/acl/token"


class ConsulClient(DirectoryClient):
    """DirectoryClient backed by the Consul ACL HTTP API."""

    def __init__(
        self,
        address: str,
        token: str,
        *,
        verify_tls: bool = True,
        timeout_sec: float = 30,
        retries: int = 3,
        backoff_base_sec: float = 0.05,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.address = (address or DEFAULT_ADDRESS).rstrip("/")
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec)
        self.retries = max(0, int(retries))
        self.backoff = float(backoff_base_sec)
        self.log = logger or logging.getLogger("cas.http")

        self.session = requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "consul-acl-sync",
        })
        if token:
            self.session.headers["X-Consul-Token"] = token

        if not verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    # ------------- Policies -------------

    def lookup_policy_by_name(self, name: str) -> Optional[Policy]:
        listing = self._list(_POLICIES, what="list policies")
        for item in listing:
            if item.get("Name") == name and item.get("ID"):
                return self.get_policy(item["ID"])
        return None

    def get_policy(self, policy_id: str) -> Optional[Policy]:
        data = self._request("GET", f"{_POLICY}/{policy_id}", what=f"get policy '{policy_id}'", allow_404=True)
        if data is None:
            return None
        return Policy.from_wire_form(data)

    def create_policy(self, policy: Policy) -> Policy:
        what = f"create policy '{policy.name}'"
        data = self._request("PUT", _POLICY, policy.with_id(None).to_wire_form(), what=what)
        created = Policy.from_wire_form(data or {})
        if not created.id:
            raise DirectoryLookupError(f"failed to {what}: response carries no ID", url=self._url(_POLICY))
        return created

    def update_policy(self, policy_id: str, policy: Policy) -> None:
        payload = policy.with_id(policy_id).to_wire_form()
        self._request("PUT", f"{_POLICY}/{policy_id}", payload, what=f"update policy '{policy.name}'")

    # ------------- Tokens -------------

    def lookup_token_by_description(self, description: str) -> Optional[Token]:
        listing = self._list(_TOKENS, what="list tokens")
        for item in listing:
            if item.get("Description") == description and item.get("AccessorID"):
                return self.get_token(item["AccessorID"])
        return None

    def get_token(self, accessor_id: str) -> Optional[Token]:
        data = self._request("GET", f"{_TOKEN}/{accessor_id}", what=f"get token '{accessor_id}'", allow_404=True)
        if data is None:
            return None
        return Token.from_wire_form(data)

    def create_token(self, token: Token) -> None:
        # to_wire_form raises PolicyResolutionError before any request is sent
        payload = token.with_accessor_id(None).to_wire_form()
        self._request("PUT", _TOKEN, payload, what=f"create token '{token.display_name}'")

    def update_token(self, accessor_id: str, token: Token) -> None:
        payload = token.with_accessor_id(accessor_id).to_wire_form()
        self._request("PUT", f"{_TOKEN}/{accessor_id}", payload, what=f"update token '{token.display_name}'")

    # ------------- Internal -------------

    def _url(self, path: str) -> str:
        return f"{self.address}/{path.lstrip('/')}"

    def _list(self, path: str, *, what: str) -> List[Dict[str, Any]]:
        data = self._request("GET", path, what=what, allow_404=True)
        if data is None:
            return []
        if not isinstance(data, list):
            raise DirectoryLookupError(f"failed to {what}: expected a JSON list", url=self._url(path))
        return [i for i in data if isinstance(i, dict)]

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        what: str,
        allow_404: bool = False,
    ) -> Any:
        url = self._url(path)
        last_err: Optional[DirectoryLookupError] = None
        attempts = self.retries + 1
        for attempt in range(attempts):
            start = time.time()
            try:
                resp = self.session.request(
                    method=method,
                    url=url,
                    json=payload,
                    timeout=self.timeout,
                    verify=self.verify_tls,
                )
            except requests.RequestException as exc:
                # Network/timeout. Retryable while attempts remain.
                err = DirectoryLookupError(f"failed to {what}", url=url, cause=exc)
                self._log_err(method, path, 0, err)
                if attempt < attempts - 1:
                    self._sleep_backoff(attempt)
                    last_err = err
                    continue
                raise err

            status = resp.status_code
            self._log_ok(method, path, status, (time.time() - start) * 1000)

            if status == 404 and allow_404:
                return None
            if status >= 400:
                err = DirectoryLookupError(
                    f"failed to {what}", status=status, url=url, body=resp.text[:200]
                )
                self._log_err(method, path, status, err)
                # Retry only on 5xx
                if 500 <= status < 600 and attempt < attempts - 1:
                    self._sleep_backoff(attempt)
                    last_err = err
                    continue
                raise err

            if not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as exc:
                raise DirectoryLookupError(
                    f"failed to {what}: invalid JSON response",
                    status=status,
                    url=url,
                    body=resp.text[:200],
                    cause=exc,
                ) from exc
        # Should not reach here
        assert last_err is not None
        raise last_err

    def _sleep_backoff(self, attempt: int) -> None:
        time.sleep(self.backoff * (2 ** attempt))

    def _log_ok(self, method: str, path: str, status: int, elapsed_ms: float) -> None:
        self.log.debug("%s %s -> %s in %.1fms", method, path, status, elapsed_ms)

    def _log_err(self, method: str, path: str, status: int, err: DirectoryLookupError) -> None:
        self.log.warning("%s %s failed (status=%s): %s", method, path, status, err)
