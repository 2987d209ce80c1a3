"""
Whole-run orchestration: diff → plan → confirm → apply → report.

States: LOADED → DIFFED → PLANNED → CONFIRMED → APPLIED → REPORTED, with
ABORTED reachable only before any write (diff failure). A diff without
changes goes straight to REPORTED.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TextIO, Union

from .applier import ApplyReport, apply
from .confirm import confirm
from .directory import DirectoryClient
from .errors import AggregateApplyError, DirectoryLookupError
from .models import AclConfig, DiffResult
from .differ import calculate_diff
from .reporting import render_abort, render_apply_report, render_plan

Logger = Union[logging.Logger, logging.LoggerAdapter]
ConfirmFn = Callable[[DiffResult], bool]


class RunState(str, Enum):
    LOADED = "loaded"
    DIFFED = "diffed"
    PLANNED = "planned"
    CONFIRMED = "confirmed"
    APPLIED = "applied"
    REPORTED = "reported"
    ABORTED = "aborted"


@dataclass(frozen=True)
class RunOptions:
    command: str                 # "plan" or "apply"
    config_path: str = "consul-acl.yaml"
    auto_approve: bool = False
    output_format: str = "text"

    def __post_init__(self) -> None:
        if self.output_format not in ("text", "json"):
            raise ValueError(f"unknown output format: {self.output_format}")
        # apply prompts and reports as text
        if self.command == "apply" and self.output_format != "text":
            raise ValueError("apply only supports text output")


@dataclass
class RunResult:
    state: RunState
    diff: Optional[DiffResult] = None
    report: Optional[ApplyReport] = None
    cancelled: bool = False
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        if self.state is RunState.ABORTED:
            return False
        return self.report is None or self.report.ok


def run(
    options: RunOptions,
    directory: DirectoryClient,
    acl: AclConfig,
    *,
    confirm_fn: Optional[ConfirmFn] = None,
    out: Optional[TextIO] = None,
    logger: Optional[Logger] = None,
) -> RunResult:
    """Execute a `plan` or `apply` run for an already loaded and validated *acl*."""
    log = logger or logging.getLogger("cas.runner")
    out = out or sys.stdout
    result = RunResult(state=RunState.LOADED)

    def emit(text: str) -> None:
        out.write(text + "\n")
        out.flush()

    def move(state: RunState) -> None:
        log.debug("run state %s -> %s", result.state.value, state.value)
        result.state = state

    try:
        result.diff = calculate_diff(directory, acl, logger=log)
    except DirectoryLookupError as exc:
        result.error = exc
        move(RunState.ABORTED)
        log.error("Failed to calculate differences: %s", exc)
        emit(render_abort(exc, options.command, options.output_format))
        return result
    move(RunState.DIFFED)

    emit(render_plan(result.diff, options.output_format))
    move(RunState.PLANNED)

    if options.command != "apply" or not result.diff.has_changes:
        move(RunState.REPORTED)
        return result

    if not options.auto_approve:
        gate = confirm_fn or (lambda d: confirm(d, out=out))
        if not gate(result.diff):
            result.cancelled = True
            emit("\nApply cancelled.")
            move(RunState.REPORTED)
            return result
    move(RunState.CONFIRMED)

    emit("\nApplying changes...")
    try:
        result.report = apply(directory, result.diff, logger=log)
    except AggregateApplyError as exc:
        result.report = exc.report
        result.error = exc
    move(RunState.APPLIED)

    emit(render_apply_report(result.report))
    move(RunState.REPORTED)
    return result
