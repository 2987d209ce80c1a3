"""
Error taxonomy for consul-acl-sync.

- ConfigError: invalid declarative input or runtime settings (fatal, before any directory call)
- DirectoryLookupError: directory unreachable or unexpected HTTP status
- PolicyResolutionError: a token references a policy name the directory does not know
- AggregateApplyError: raised once all apply phases ran and at least one action failed

Every error carries a `kind` and chains its underlying cause, so callers can
branch on type instead of parsing messages.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .applier import ApplyFailure, ApplyReport


class ErrorKind(str, Enum):
    CONFIG = "config"
    LOOKUP = "lookup"
    POLICY_RESOLUTION = "policy_resolution"
    AGGREGATE_APPLY = "aggregate_apply"


class SyncError(Exception):
    """Base class for every error raised by consul-acl-sync."""

    kind: ErrorKind

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__

    def __str__(self) -> str:
        if self.__cause__ is not None:
            return f"{self.message}: {self.__cause__}"
        return self.message


class ConfigError(SyncError):
    """Raised when the ACL file or runtime configuration cannot be used."""

    kind = ErrorKind.CONFIG


class DirectoryLookupError(SyncError):
    """HTTP/transport error while talking to the ACL directory."""

    kind = ErrorKind.LOOKUP

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        url: str = "",
        body: str = "",
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.status = status
        self.url = url
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if isinstance(self.__cause__, SyncError):
            # already rendered by the chained error
            return base
        if self.status:
            base += f" (status={self.status})"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


class PolicyResolutionError(SyncError):
    """A policy reference could not be turned into a directory identifier."""

    kind = ErrorKind.POLICY_RESOLUTION

    def __init__(self, policy_name: str, message: str = "", *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message or f"policy '{policy_name}' not found", cause=cause)
        self.policy_name = policy_name


class AggregateApplyError(SyncError):
    """Summary of every failed action once all apply phases have completed."""

    kind = ErrorKind.AGGREGATE_APPLY

    def __init__(self, report: "ApplyReport") -> None:
        super().__init__(
            f"{len(report.failures)} of {report.total} changes failed to apply "
            f"({report.succeeded} applied successfully)"
        )
        self.report = report

    @property
    def failures(self) -> "tuple[ApplyFailure, ...]":
        return self.report.failures

    @property
    def succeeded(self) -> int:
        return self.report.succeeded
