"""
Declarative ACL file loader.

Key rules:
  * top-level `policies` and `tokens` lists (both optional)
  * policy `name` is required and unique, `rules` must not be blank
  * token `description` is required and unique (it is the token's natural key)
  * every token lists at least one policy name
  * a token referencing a policy that is not declared here only logs a WARNING,
    the policy may already exist in the directory

Any violation raises ConfigError before the directory is contacted.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import ConfigError
from .models import AclConfig, Policy, PolicyRef, Token

log = logging.getLogger("cas.acl_config")

DEFAULT_ACL_FILE = "consul-acl.yaml"


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except OSError as exc:
        raise ConfigError(f"failed to read config file {path}", cause=exc) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse YAML in {path}", cause=exc) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"top-level YAML must be a mapping: {path}")
    return data


def _section(data: Dict[str, Any], key: str) -> List[Any]:
    items = data.get(key)
    if items is None:
        return []
    if not isinstance(items, list):
        raise ConfigError(f"'{key}' must be a list")
    return items


def _as_text(value: Any, field: str, where: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"{where}: '{field}' must be a string")
    return value


def policy_from_config(item: Any, index: int) -> Policy:
    where = f"policy #{index}"
    if not isinstance(item, dict):
        raise ConfigError(f"{where} must be a mapping")
    # names and descriptions are exact-match keys in the directory
    name = _as_text(item.get("name"), "name", where)
    if not name.strip():
        raise ConfigError("policy name cannot be empty")
    where = f"policy {name}"
    rules = _as_text(item.get("rules"), "rules", where)
    dcs = item.get("datacenters") or []
    if not isinstance(dcs, list) or not all(isinstance(dc, str) for dc in dcs):
        raise ConfigError(f"{where}: 'datacenters' must be a list of strings")
    return Policy(
        name=name,
        description=_as_text(item.get("description"), "description", where),
        rules=rules,
        datacenters=frozenset(dcs),
    )


def token_from_config(item: Any, index: int) -> Token:
    where = f"token #{index}"
    if not isinstance(item, dict):
        raise ConfigError(f"{where} must be a mapping")
    description = _as_text(item.get("description"), "description", where)
    names = item.get("policies") or []
    if not isinstance(names, list) or not all(isinstance(n, str) and n.strip() for n in names):
        raise ConfigError(f"{where} ({description}): 'policies' must be a list of policy names")
    return Token(
        description=description,
        policy_refs=tuple(PolicyRef.by_name(n) for n in names),
    )


def validate_acl_config(cfg: AclConfig) -> None:
    """Check uniqueness and required fields; warn about undeclared policy references."""
    names = set()
    for policy in cfg.policies:
        if not policy.name.strip():
            raise ConfigError("policy name cannot be empty")
        if policy.name in names:
            raise ConfigError(f"duplicate policy name: {policy.name}")
        names.add(policy.name)
        if not policy.rules.strip():
            raise ConfigError(f"policy {policy.name} has empty rules")

    descriptions = set()
    for i, token in enumerate(cfg.tokens, start=1):
        if not token.description.strip():
            raise ConfigError(f"token #{i} has no description")
        if token.description in descriptions:
            raise ConfigError(f"duplicate token description: {token.description}")
        descriptions.add(token.description)
        if not token.policy_refs:
            raise ConfigError(f"token #{i} ({token.description}) has no policies")
        for ref in token.policy_refs:
            if ref.name is not None and ref.name not in names:
                log.warning(
                    "Token '%s' references policy '%s' which is not defined in this config",
                    token.description,
                    ref.name,
                )


def parse_acl_config(data: Dict[str, Any]) -> AclConfig:
    cfg = AclConfig(
        policies=tuple(policy_from_config(p, i) for i, p in enumerate(_section(data, "policies"), start=1)),
        tokens=tuple(token_from_config(t, i) for i, t in enumerate(_section(data, "tokens"), start=1)),
    )
    validate_acl_config(cfg)
    return cfg


def load_acl_config(path: Optional[Union[str, Path]] = None) -> AclConfig:
    """Read, parse and validate the ACL file at *path* (default ``consul-acl.yaml``)."""
    p = Path(path or DEFAULT_ACL_FILE)
    cfg = parse_acl_config(_read_yaml(p))
    log.debug("Loaded %d policies and %d tokens from %s", len(cfg.policies), len(cfg.tokens), p)
    return cfg
