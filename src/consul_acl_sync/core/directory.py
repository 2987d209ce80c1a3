"""
Directory client contract consumed by the diff engine and the applier.

Every call is a blocking request/response. "Absent" is returned as ``None``
and is distinct from an error, which is raised as `DirectoryLookupError`.
Timeouts and cancellation belong to the transport of the implementation.
"""

from __future__ import annotations

from typing import Optional

from .models import Policy, Token


class DirectoryClient:
    """Capabilities the reconciliation engine needs from an ACL directory.

    Subclasses implement every method; see `ConsulClient` for the HTTP one.
    """

    address: str = ""

    def lookup_policy_by_name(self, name: str) -> Optional[Policy]:
        """Return the full policy named *name*, or ``None`` when it does not exist."""
        raise NotImplementedError

    def get_policy(self, policy_id: str) -> Optional[Policy]:
        raise NotImplementedError

    def create_policy(self, policy: Policy) -> Policy:
        """Create *policy* and return it with the directory-assigned id."""
        raise NotImplementedError

    def update_policy(self, policy_id: str, policy: Policy) -> None:
        raise NotImplementedError

    def lookup_token_by_description(self, description: str) -> Optional[Token]:
        """Return the full token whose description is *description*, or ``None``."""
        raise NotImplementedError

    def get_token(self, accessor_id: str) -> Optional[Token]:
        raise NotImplementedError

    def create_token(self, token: Token) -> None:
        """Create *token*; its policy refs must already be resolved to ids."""
        raise NotImplementedError

    def update_token(self, accessor_id: str, token: Token) -> None:
        raise NotImplementedError
