"""
Equality between desired and observed ACL resources.

Rules are compared as text after `normalize_rules`; only edge whitespace,
line endings and trailing spaces are ignored. Datacenters and policy
references are compared as sets.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Iterable, Optional

from .models import Policy, PolicyRef, Token

_LINE_BREAKS = re.compile(r"\r\n|\r")


def normalize_rules(rules: Optional[str]) -> str:
    """Trim, unify line endings to ``\\n`` and strip trailing blanks on every line."""
    text = _LINE_BREAKS.sub("\n", (rules or "").strip())
    return "\n".join(line.rstrip(" \t") for line in text.split("\n"))


def _ref_keys(refs: Optional[Iterable[PolicyRef]]) -> Counter:
    return Counter(ref.key for ref in (refs or ()))


def policies_equal(a: Policy, b: Policy) -> bool:
    if a.name != b.name:
        return False
    if (a.description or "") != (b.description or ""):
        return False
    if normalize_rules(a.rules) != normalize_rules(b.rules):
        return False
    return frozenset(a.datacenters or ()) == frozenset(b.datacenters or ())


def tokens_equal(a: Token, b: Token) -> bool:
    if (a.description or "") != (b.description or ""):
        return False
    return _ref_keys(a.policy_refs) == _ref_keys(b.policy_refs)


def policy_refs_equal(a: Iterable[PolicyRef], b: Iterable[PolicyRef]) -> bool:
    return _ref_keys(a) == _ref_keys(b)
