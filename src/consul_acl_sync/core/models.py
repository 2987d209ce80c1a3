"""
In-memory model for Consul ACL policies and tokens.

Policies are keyed by `name`, tokens by `description`. Identifiers
(`id`, `accessor_id`, `secret_id`) are assigned by the directory and never
take part in equality.

Wire (de)serialisation is explicit: `to_wire_form` / `from_wire_form` map
between the model and the JSON documents of the Consul ACL HTTP API.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .errors import PolicyResolutionError

WireDict = Dict[str, Any]


@dataclass(frozen=True)
class PolicyRef:
    """Reference to a policy, either by name (declarative form) or by id (directory form).

    Exactly one of `name` / `id` is populated. Use `by_name` / `by_id`.
    """

    name: Optional[str] = None
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if (self.name is None) == (self.id is None):
            raise ValueError("PolicyRef needs exactly one of 'name' or 'id'")
        if not self.key:
            raise ValueError("PolicyRef key must not be empty")

    @classmethod
    def by_name(cls, name: str) -> "PolicyRef":
        return cls(name=name)

    @classmethod
    def by_id(cls, policy_id: str) -> "PolicyRef":
        return cls(id=policy_id)

    @property
    def is_resolved(self) -> bool:
        return self.id is not None

    @property
    def key(self) -> str:
        """Effective key for comparison and resolution."""
        return self.id if self.name is None else self.name

    def to_wire_form(self) -> WireDict:
        if self.id is None:
            raise PolicyResolutionError(
                self.name, f"policy '{self.name}' has not been resolved to an identifier"
            )
        return {"ID": self.id}

    @classmethod
    def from_wire_form(cls, data: WireDict) -> "PolicyRef":
        # the directory returns both; the name wins
        name = data.get("Name") or ""
        if name:
            return cls.by_name(name)
        return cls.by_id(data.get("ID") or "")

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class Policy:
    name: str
    rules: str
    description: str = ""
    datacenters: FrozenSet[str] = frozenset()
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.datacenters, frozenset):
            object.__setattr__(self, "datacenters", frozenset(self.datacenters or ()))

    def with_id(self, policy_id: Optional[str]) -> "Policy":
        return replace(self, id=policy_id)

    def to_wire_form(self) -> WireDict:
        out: WireDict = {}
        if self.id:
            out["ID"] = self.id
        out["Name"] = self.name
        if self.description:
            out["Description"] = self.description
        out["Rules"] = self.rules
        if self.datacenters:
            out["Datacenters"] = sorted(self.datacenters)
        return out

    @classmethod
    def from_wire_form(cls, data: WireDict) -> "Policy":
        return cls(
            id=data.get("ID") or None,
            name=data.get("Name") or "",
            description=data.get("Description") or "",
            rules=data.get("Rules") or "",
            datacenters=frozenset(data.get("Datacenters") or ()),
        )


@dataclass(frozen=True)
class Token:
    description: str
    policy_refs: Tuple[PolicyRef, ...] = ()
    accessor_id: Optional[str] = None
    secret_id: Optional[str] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.policy_refs, tuple):
            object.__setattr__(self, "policy_refs", tuple(self.policy_refs or ()))

    def with_accessor_id(self, accessor_id: Optional[str]) -> "Token":
        return replace(self, accessor_id=accessor_id)

    def with_policy_refs(self, refs: Iterable[PolicyRef]) -> "Token":
        return replace(self, policy_refs=tuple(refs))

    @property
    def display_name(self) -> str:
        return self.description or "(no description)"

    def unresolved_names(self) -> List[str]:
        return [r.name for r in self.policy_refs if r.name is not None]

    def to_wire_form(self) -> WireDict:
        """Directory form of the token; every policy ref must already carry an id."""
        out: WireDict = {}
        if self.accessor_id:
            out["AccessorID"] = self.accessor_id
        if self.description:
            out["Description"] = self.description
        out["Policies"] = [ref.to_wire_form() for ref in self.policy_refs]
        return out

    @classmethod
    def from_wire_form(cls, data: WireDict) -> "Token":
        refs = [
            PolicyRef.from_wire_form(p)
            for p in (data.get("Policies") or [])
            if isinstance(p, dict) and (p.get("Name") or p.get("ID"))
        ]
        return cls(
            accessor_id=data.get("AccessorID") or None,
            secret_id=data.get("SecretID") or None,
            description=data.get("Description") or "",
            policy_refs=tuple(refs),
        )


@dataclass(frozen=True)
class AclConfig:
    """Declared policies and tokens, in file order."""

    policies: Tuple[Policy, ...] = ()
    tokens: Tuple[Token, ...] = ()


@dataclass(frozen=True)
class PolicyUpdate:
    current: Policy
    desired: Policy


@dataclass(frozen=True)
class TokenUpdate:
    current: Token
    desired: Token


@dataclass(frozen=True)
class DiffResult:
    policies_to_create: Tuple[Policy, ...] = ()
    policies_to_update: Tuple[PolicyUpdate, ...] = ()
    tokens_to_create: Tuple[Token, ...] = ()
    tokens_to_update: Tuple[TokenUpdate, ...] = ()

    @property
    def total_changes(self) -> int:
        return (
            len(self.policies_to_create)
            + len(self.policies_to_update)
            + len(self.tokens_to_create)
            + len(self.tokens_to_update)
        )

    @property
    def has_changes(self) -> bool:
        return self.total_changes > 0

    @property
    def has_policy_changes(self) -> bool:
        return bool(self.policies_to_create or self.policies_to_update)

    @property
    def has_token_changes(self) -> bool:
        return bool(self.tokens_to_create or self.tokens_to_update)
