import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import pytest

from consul_acl_sync.core.directory import DirectoryClient
from consul_acl_sync.core.models import Policy, Token


class FakeDirectory(DirectoryClient):
    """In-memory ACL directory that records every call in order."""

    address = "memory://"

    def __init__(self, policies=(), tokens=()):
        self.policies: Dict[str, Policy] = {}
        self.tokens: Dict[str, Token] = {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.sent_tokens: List[dict] = []
        for p in policies:
            self.policies[p.id or f"id-{p.name}"] = p.with_id(p.id or f"id-{p.name}")
        for t in tokens:
            acc = t.accessor_id or f"acc-{t.description}"
            self.tokens[acc] = t.with_accessor_id(acc)

    def fail(self, method: str, key: str, exc: Exception) -> None:
        self.failures[(method, key)] = exc

    def _call(self, method: str, key: str) -> None:
        self.calls.append((method, key))
        exc = self.failures.get((method, key))
        if exc is not None:
            raise exc

    @property
    def writes(self) -> List[Tuple[str, str]]:
        return [c for c in self.calls if c[0].startswith(("create_", "update_"))]

    def lookup_policy_by_name(self, name: str) -> Optional[Policy]:
        self._call("lookup_policy_by_name", name)
        for p in self.policies.values():
            if p.name == name:
                return p
        return None

    def get_policy(self, policy_id: str) -> Optional[Policy]:
        self._call("get_policy", policy_id)
        return self.policies.get(policy_id)

    def create_policy(self, policy: Policy) -> Policy:
        self._call("create_policy", policy.name)
        created = policy.with_id(f"id-{policy.name}")
        self.policies[created.id] = created
        return created

    def update_policy(self, policy_id: str, policy: Policy) -> None:
        self._call("update_policy", policy.name)
        assert policy.id == policy_id
        self.policies[policy_id] = policy

    def lookup_token_by_description(self, description: str) -> Optional[Token]:
        self._call("lookup_token_by_description", description)
        for t in self.tokens.values():
            if t.description == description:
                return t
        return None

    def get_token(self, accessor_id: str) -> Optional[Token]:
        self._call("get_token", accessor_id)
        return self.tokens.get(accessor_id)

    def create_token(self, token: Token) -> None:
        self._call("create_token", token.description)
        self.sent_tokens.append(token.to_wire_form())
        acc = f"acc-{token.description}"
        self.tokens[acc] = token.with_accessor_id(acc)

    def update_token(self, accessor_id: str, token: Token) -> None:
        self._call("update_token", token.description)
        self.sent_tokens.append(token.to_wire_form())
        self.tokens[accessor_id] = token.with_accessor_id(accessor_id)


@pytest.fixture()
def make_directory():
    return FakeDirectory


@pytest.fixture()
def directory():
    return FakeDirectory()


class FakeConsul:
    """State behind a throwaway Consul ACL HTTP endpoint."""

    def __init__(self, token: str = "TEST") -> None:
        self.token = token
        self.address = ""
        self.policies: Dict[str, dict] = {}
        self.tokens: Dict[str, dict] = {}
        self.requests: List[Tuple[str, str]] = []
        self.auth_headers: List[Optional[str]] = []
        self.bodies: List[dict] = []
        # path -> statuses to answer with before serving normally
        self.scripted: Dict[Tuple[str, str], List[int]] = {}
        self._seq = 0

    def next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    def add_policy(self, name: str, rules: str, **extra: Any) -> str:
        pid = extra.pop("ID", None) or self.next_id("pid")
        self.policies[pid] = {"ID": pid, "Name": name, "Rules": rules, **extra}
        return pid

    def add_token(self, description: str, policies: List[dict], **extra: Any) -> str:
        acc = extra.pop("AccessorID", None) or self.next_id("acc")
        self.tokens[acc] = {
            "AccessorID": acc,
            "SecretID": f"secret-{acc}",
            "Description": description,
            "Policies": policies,
            **extra,
        }
        return acc

    def writes(self) -> List[Tuple[str, str]]:
        return [r for r in self.requests if r[0] == "PUT"]


def _consul_handler(state: FakeConsul):
    class _Handler(BaseHTTPRequestHandler):
        protocol_version = "HTTP/1.1"

        def _send_json(self, status: int, obj) -> None:
            raw = json.dumps(obj).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(raw)))
            self.end_headers()
            self.wfile.write(raw)

        def _begin(self, method: str) -> Optional[str]:
            path = urlparse(self.path).path
            state.requests.append((method, path))
            state.auth_headers.append(self.headers.get("X-Consul-Token"))
            scripted = state.scripted.get((method, path))
            if scripted:
                self._send_json(scripted.pop(0), {"error": "scripted"})
                return None
            if self.headers.get("X-Consul-Token") != state.token:
                self._send_json(403, {"error": "ACL not found"})
                return None
            return path

        def _body(self) -> dict:
            length = int(self.headers.get("Content-Length", "0"))
            data = json.loads(self.rfile.read(length).decode("utf-8")) if length else {}
            state.bodies.append(data)
            return data

        def do_GET(self):  # noqa: N802
            path = self._begin("GET")
            if path is None:
                return
            if path == "/v1/acl/policies":
                self._send_json(200, [
                    {k: v for k, v in p.items() if k != "Rules"} for p in state.policies.values()
                ])
            elif path.startswith("/v1/acl/policy/"):
                p = state.policies.get(path.rsplit("/", 1)[1])
                if p:
                    self._send_json(200, p)
                else:
                    self._send_json(404, {"error": "not found"})
            elif path == "/v1/acl/tokens":
                self._send_json(200, [
                    {k: v for k, v in t.items() if k != "SecretID"} for t in state.tokens.values()
                ])
            elif path.startswith("/v1/acl/token/"):
                t = state.tokens.get(path.rsplit("/", 1)[1])
                if t:
                    self._send_json(200, t)
                else:
                    self._send_json(404, {"error": "not found"})
            else:
                self._send_json(404, {"error": "not found"})

        def _with_names(self, refs: List[dict]) -> List[dict]:
            return [dict(r, Name=state.policies.get(r["ID"], {}).get("Name")) for r in refs]

        def do_PUT(self):  # noqa: N802
            data = self._body()
            path = self._begin("PUT")
            if path is None:
                return
            if path == "/v1/acl/policy":
                extra = {k: v for k, v in data.items() if k not in ("Name", "Rules", "ID")}
                pid = state.add_policy(data.get("Name"), data.get("Rules"), **extra)
                self._send_json(200, state.policies[pid])
            elif path.startswith("/v1/acl/policy/"):
                pid = path.rsplit("/", 1)[1]
                state.policies[pid] = dict(data, ID=pid)
                self._send_json(200, state.policies[pid])
            elif path == "/v1/acl/token":
                acc = state.add_token(data.get("Description", ""), self._with_names(data.get("Policies", [])))
                self._send_json(200, state.tokens[acc])
            elif path.startswith("/v1/acl/token/"):
                acc = path.rsplit("/", 1)[1]
                state.tokens[acc].update(
                    Description=data.get("Description", ""),
                    Policies=self._with_names(data.get("Policies", [])),
                )
                self._send_json(200, state.tokens[acc])
            else:
                self._send_json(404, {"error": "not found"})

        def log_message(self, fmt, *args):  # silence server logs during tests
            return

    return _Handler


@pytest.fixture()
def consul():
    state = FakeConsul()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _consul_handler(state))
    host, port = server.server_address
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    state.address = f"http://{host}:{port}"
    yield state
    server.shutdown()
    server.server_close()
    thread.join(timeout=1.0)
