from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError

DEFAULT_ADDRESS = "http://localhost:8500"


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None


@dataclass
class ConsulSection:
    address: str = DEFAULT_ADDRESS
    token: str = ""          # secret – never log in clear text
    verify_tls: bool = True
    timeout_sec: int = 30
    retries: int = 3


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    consul: ConsulSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """
        Return a stable run identifier for this process.
        Generated lazily when first accessed if not provided.
        """
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./consul-acl-sync.yml",
    os.path.expanduser("~/.config/consul-acl-sync/config.yml"),
    "/etc/consul-acl-sync/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None},
    "consul": {
        "address": DEFAULT_ADDRESS,
        "token": "",
        "verify_tls": True,
        "timeout_sec": 30,
        "retries": 3,
    },
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
}

# Standard Consul CLI variables
_CONSUL_ENV: Dict[str, Tuple[str, str]] = {
    "CONSUL_HTTP_ADDR": ("consul", "address"),
    "CONSUL_HTTP_TOKEN": ("consul", "token"),
    "CONSUL_HTTP_SSL_VERIFY": ("consul", "verify_tls"),
}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge for dicts: maps merge recursively, lists/scalars override.
    `ext` wins over `base`. Returns a new dict.
    """
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse settings file {path}", cause=exc) from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _load_dotenv() -> None:
    """Load a .env file (searched from the working directory up) without overriding the environment."""
    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(env_path, override=False)


def _consul_env_to_dict() -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for var, (section, key) in _CONSUL_ENV.items():
        val = os.environ.get(var)
        if val:
            out.setdefault(section, {})[key] = val
    return out


def _env_to_dict(prefix: str = "CONSUL_ACL_SYNC_") -> Dict[str, Any]:
    """
    Convert CONSUL_ACL_SYNC_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    """
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values like "${VAR}" with os.environ["VAR"] when present.
    """
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(x) for x in obj]
        return repl(obj)

    return walk(cfg)


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Minimal type coercion for booleans and integers in known keys.
    """
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def to_int(key: str, x: Any) -> int:
        try:
            return int(x)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"'{key}' must be an integer, got {x!r}", cause=exc) from exc

    def walk(obj: Any, key_path: Tuple[str, ...] = ()) -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, key_path + (k,)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(v, key_path) for v in obj]
        if key_path[-1:] == ("verify_tls",):
            return to_bool(obj)
        if key_path[-1:] in [("timeout_sec",), ("retries",)]:
            return to_int(".".join(key_path), obj)
        return obj

    return walk(cfg)


def _normalize_address(address: str) -> str:
    address = (address or DEFAULT_ADDRESS).strip().rstrip("/")
    if "://" not in address:
        address = f"http://{address}"
    return address


def _validate(cfg: Dict[str, Any]) -> None:
    if not cfg.get("consul", {}).get("token"):
        raise ConfigError(
            "CONSUL_HTTP_TOKEN environment variable is required. "
            "Please set it to your Consul management token."
        )


S = TypeVar("S")


def _build_section(cls: Type[S], name: str, data: Dict[str, Any]) -> S:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown setting(s) in '{name}': {', '.join(unknown)}")
    return cls(**data)


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "CONSUL_ACL_SYNC_",
    *,
    require_token: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Prefixed environment variables (CONSUL_ACL_SYNC_, nested via __)
      3) Standard Consul variables (CONSUL_HTTP_ADDR, CONSUL_HTTP_TOKEN, CONSUL_HTTP_SSL_VERIFY)
      4) YAML file (first existing)
      5) Built-in defaults

    A .env file is loaded first and never overrides variables already set.

    Raises:
        ConfigError: invalid file, unknown keys, bad types, or a missing token.
    """
    _load_dotenv()

    file_cfg = _load_first_existing(files)

    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, _consul_env_to_dict())
    merged = _deep_merge(merged, _env_to_dict(env_prefix))
    merged = _deep_merge(merged, cli_overrides or {})

    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)
    for section in ("app", "consul", "logging"):
        if not isinstance(merged.get(section) or {}, dict):
            raise ConfigError(f"'{section}' must be a mapping")
        merged[section] = dict(merged.get(section) or {})
    merged["consul"]["address"] = _normalize_address(merged["consul"].get("address", ""))

    if require_token:
        _validate(merged)

    return AppConfig(
        app=_build_section(AppSection, "app", merged.get("app", {})),
        consul=_build_section(ConsulSection, "consul", merged.get("consul", {})),
        logging=_build_section(LoggingSection, "logging", merged.get("logging", {})),
    )
