"""
Central logging for consul-acl-sync.

- Console handler: INFO..CRITICAL on stderr (stdout stays reserved for plans/reports)
- Timed rotated file handler: DEBUG (logs/app.log, daily rotation)
- Action-based file handler: DEBUG (logs/YYYY-MM-DD/<action>_<run_id>.log)
- Secret redaction: masks Consul tokens, SecretIDs and passwords in msg and % args
- UTC timestamps in ISO-8601
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class MaskSecretsFilter(logging.Filter):
    """
    Redact Consul ACL secrets (X-Consul-Token, SecretID, bearer tokens, passwords) from log records.
    """

    _patterns = [
        re.compile(r"(X-Consul-Token[\"']?\s*[:=]\s*[\"']?)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(SecretID[\"']?\s*[:=]\s*[\"']?)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
    ]

    @staticmethod
    def _mask(text: str) -> str:
        masked = text
        for pat in MaskSecretsFilter._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(v) if isinstance(v, str) else v for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask(a) if isinstance(a, str) else a for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        return True


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    # Force UTC
    f.converter = time.gmtime  # type: ignore[attr-defined]
    return f


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _ensure_single_console_handler(
    base_logger: logging.Logger,
    *,
    console_level: str,
    formatter: logging.Formatter,
    mask: logging.Filter,
) -> None:
    """
    Make sure there is exactly ONE StreamHandler bound to sys.stderr
    (pytest may close/replace stdio between tests; also avoid duplicates).
    """
    for h in list(base_logger.handlers):
        if type(h) is logging.StreamHandler:
            base_logger.removeHandler(h)
            h.close()

    sh = logging.StreamHandler(stream=sys.stderr)
    sh.setLevel(_level(console_level, logging.INFO))
    sh.setFormatter(formatter)
    sh.addFilter(mask)
    base_logger.addHandler(sh)


def _ensure_app_file_handler(
    base_logger: logging.Logger,
    *,
    base_dir: str,
    file_level: str,
    formatter: logging.Formatter,
    mask: logging.Filter,
) -> None:
    """
    Ensure a single TimedRotatingFileHandler points to <base_dir>/app.log
    for the CURRENT working directory. A handler bound to another path is replaced.
    """
    _ensure_dir(base_dir)
    desired = os.path.abspath(os.path.join(base_dir, "app.log"))

    for h in list(base_logger.handlers):
        if isinstance(h, logging.handlers.TimedRotatingFileHandler):
            if os.path.abspath(getattr(h, "baseFilename", "")) != desired:
                base_logger.removeHandler(h)
                h.close()

    if not any(
        isinstance(h, logging.handlers.TimedRotatingFileHandler)
        and os.path.abspath(getattr(h, "baseFilename", "")) == desired
        for h in base_logger.handlers
    ):
        rh = logging.handlers.TimedRotatingFileHandler(
            desired,
            when="midnight",
            backupCount=14,
            encoding="utf-8",
            utc=True,
            delay=False,  # open immediately so the file exists
        )
        rh.setLevel(_level(file_level, logging.DEBUG))
        rh.setFormatter(formatter)
        rh.addFilter(mask)
        base_logger.addHandler(rh)


def build_logger(
    *,
    name: str = "cas",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure and return a LoggerAdapter.

    Design:
      - A base logger `<name>` holds console + rotating file handlers.
      - A child logger `<name>.<action>.<run_id>` holds a per-run file handler.
      - Records propagate to the base logger so they appear in all sinks.
      - Module loggers (`cas.http`, `cas.applier`, ...) propagate to the same base.
    """
    mask = MaskSecretsFilter()

    fmt = (
        "%(asctime)s | %(levelname)-8s | %(name)s | "
        "run=%(run_id)s action=%(action)s address=%(address)s | "
        "%(message)s"
    )
    formatter = _utc_formatter(fmt)
    # Records from module loggers do not go through the adapter
    defaults = {"run_id": run_id, "action": action, "address": (extra or {}).get("address")}

    class _ContextFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            for k, v in defaults.items():
                if not hasattr(record, k):
                    setattr(record, k, v)
            return True

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)

    _ensure_single_console_handler(
        base_logger=base,
        console_level=console_level,
        formatter=formatter,
        mask=mask,
    )
    _ensure_app_file_handler(
        base_logger=base,
        base_dir=base_dir,
        file_level=file_level,
        formatter=formatter,
        mask=mask,
    )
    for h in base.handlers:
        h.filters = [f for f in h.filters if f.__class__.__name__ != "_ContextFilter"]
        h.addFilter(_ContextFilter())

    # --- Child logger with per-run action file (configured once per action+run) ---
    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True  # no console here; bubble up to base

    if not getattr(child, "_cas_action_configured", False):
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        dated_dir = os.path.join(base_dir, today)
        _ensure_dir(dated_dir)

        action_file = os.path.join(dated_dir, f"{action}_{run_id}.log")
        Path(action_file).touch(exist_ok=True)
        fh = logging.FileHandler(action_file, encoding="utf-8", delay=False)
        fh.setLevel(_level(file_level, logging.DEBUG))
        fh.setFormatter(formatter)
        fh.addFilter(mask)
        fh.addFilter(_ContextFilter())

        child.addHandler(fh)
        child._cas_action_configured = True  # type: ignore[attr-defined]

    adapter = logging.LoggerAdapter(child, dict(defaults))
    adapter.debug("Logger initialised")
    return adapter
