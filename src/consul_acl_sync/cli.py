"""
Command-line interface for consul-acl-sync.

Usage (examples):
  - Show what would change:
      consul-acl-sync plan --config consul-acl.yaml

  - Same, as a single JSON document:
      consul-acl-sync plan --format json

  - Apply, asking for confirmation:
      consul-acl-sync apply --config consul-acl.yaml

  - Apply without the confirmation prompt:
      consul-acl-sync apply --auto-approve

Environment:
  CONSUL_HTTP_ADDR    Consul server address (default: http://localhost:8500)
  CONSUL_HTTP_TOKEN   Consul ACL token for authentication (required)
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, Iterable, Optional

from .core.acl_config import DEFAULT_ACL_FILE, load_acl_config
from .core.config import load_config
from .core.consul_client import ConsulClient
from .core.errors import ConfigError
from .core.logging_setup import build_logger
from .core.runner import RunOptions, RunResult, RunState, run

VERSION = "0.1.0"

EXIT_OK = 0
EXIT_GENERIC_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_APPLY_ERROR = 3
EXIT_LOOKUP_ERROR = 4

log = logging.getLogger("cas.cli")

_ENV_HELP = """\
Environment variables:
  CONSUL_HTTP_ADDR        Consul server address (default: http://localhost:8500)
  CONSUL_HTTP_TOKEN       Consul ACL token for authentication (required)
  CONSUL_HTTP_SSL_VERIFY  Set to false to skip TLS verification
"""


def _build_arg_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-c", "--config", default=DEFAULT_ACL_FILE, help="Path to ACL configuration file")

    # Consul / HTTP
    common.add_argument("--no-verify", action="store_true", help="Disable TLS certificate verification")
    common.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")
    common.add_argument("--retries", type=int, default=None, help="HTTP retries (5xx/network)")

    # Logging
    common.add_argument("--logs-dir", default=None, help="Logs base directory")
    common.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    common.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    p = argparse.ArgumentParser(
        prog="consul-acl-sync",
        description="Synchronize Consul ACL configuration from YAML files",
        epilog=_ENV_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("-v", "--version", action="version", version=f"consul-acl-sync version {VERSION}")
    sub = p.add_subparsers(dest="cmd", required=True)

    pl = sub.add_parser(
        "plan", parents=[common], help="Show what changes would be made",
        epilog=_ENV_HELP, formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    pl.add_argument("--format", default="text", choices=["text", "json"], help="Plan output format")
    a = sub.add_parser(
        "apply", parents=[common], help="Apply the configuration changes",
        epilog=_ENV_HELP, formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    a.add_argument("--auto-approve", action="store_true", help="Skip interactive approval")
    sub.add_parser("version", help="Show version information")
    return p


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    consul: Dict[str, Any] = {}
    if args.no_verify:
        consul["verify_tls"] = False
    if args.timeout_sec is not None:
        consul["timeout_sec"] = args.timeout_sec
    if args.retries is not None:
        consul["retries"] = args.retries

    logging_cfg: Dict[str, Any] = {}
    if args.logs_dir:
        logging_cfg["base_dir"] = args.logs_dir
    if args.console_level:
        logging_cfg["console_level"] = args.console_level
    if args.file_level:
        logging_cfg["file_level"] = args.file_level
    return {"consul": consul, "logging": logging_cfg}


def _exit_code(result: RunResult) -> int:
    if result.state is RunState.ABORTED:
        return EXIT_LOOKUP_ERROR
    if not result.succeeded:
        return EXIT_APPLY_ERROR
    return EXIT_OK


def _run_cmd(args: argparse.Namespace) -> int:
    options = RunOptions(
        command=args.cmd,
        config_path=args.config,
        auto_approve=bool(getattr(args, "auto_approve", False)),
        output_format=getattr(args, "format", "text"),
    )

    # 1) Runtime settings (endpoint, token, logging)
    try:
        cfg = load_config(_cli_overrides(args))
    except ConfigError as exc:
        log.error("Error: %s", exc)
        return EXIT_CONFIG_ERROR

    # 2) Logger
    logger = build_logger(
        run_id=cfg.run_id,
        action=options.command,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"address": cfg.consul.address},
    )
    logger.info("Starting consul-acl-sync %s (auto_approve=%s)", options.command, options.auto_approve)

    # 3) Declarative ACL file; nothing has touched Consul yet
    try:
        acl = load_acl_config(options.config_path)
    except ConfigError as exc:
        logger.error("Error loading configuration: %s", exc)
        return EXIT_CONFIG_ERROR

    if options.output_format == "text":
        print(f"Loading configuration from: {options.config_path}")
        print(f"Consul server: {cfg.consul.address}")

    # 4) Execute
    client = ConsulClient(
        cfg.consul.address,
        cfg.consul.token,
        verify_tls=bool(cfg.consul.verify_tls),
        timeout_sec=int(cfg.consul.timeout_sec),
        retries=int(cfg.consul.retries),
        logger=logger,
    )
    result = run(options, client, acl, logger=logger)
    code = _exit_code(result)
    logger.info("Run finished: state=%s exit=%s", result.state.value, code)
    return code


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.cmd == "version":
        print(f"consul-acl-sync version {VERSION}")
        return EXIT_OK

    try:
        return _run_cmd(args)
    except Exception as exc:  # pragma: no cover
        log.error("Unexpected error: %s", exc, exc_info=True)
        return EXIT_GENERIC_ERROR


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
