from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .directory import DirectoryClient
from .errors import AggregateApplyError, DirectoryLookupError, PolicyResolutionError, SyncError
from .models import DiffResult, Policy, PolicyRef, PolicyUpdate, Token, TokenUpdate

Logger = Union[logging.Logger, logging.LoggerAdapter]


class ActionKind(str, Enum):
    CREATE_POLICY = "create policy"
    UPDATE_POLICY = "update policy"
    CREATE_TOKEN = "create token"
    UPDATE_TOKEN = "update token"

    @property
    def progress(self) -> str:
        verb, noun = self.value.split(" ", 1)
        return f"{verb[:-1].capitalize()}ing {noun}"


@dataclass(frozen=True)
class ApplyFailure:
    action: ActionKind
    target: str
    cause: BaseException

    def __str__(self) -> str:
        return f"Failed to {self.action.value} '{self.target}': {self.cause}"


@dataclass(frozen=True)
class ApplyReport:
    total: int
    succeeded: int
    failures: Tuple[ApplyFailure, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed(self) -> int:
        return len(self.failures)


class PolicyResolver:
    """
    Turns name-only policy refs into id refs for the wire.

    One directory lookup per policy name per apply run; only hits are cached
    so a policy created later in the run is still found.
    """

    def __init__(self, directory: DirectoryClient, *, logger: Optional[Logger] = None) -> None:
        self.directory = directory
        self.log = logger or logging.getLogger("cas.resolver")
        self._cache: Dict[str, str] = {}

    def policy_id(self, name: str) -> str:
        if name in self._cache:
            return self._cache[name]
        try:
            policy = self.directory.lookup_policy_by_name(name)
        except DirectoryLookupError as exc:
            raise DirectoryLookupError(f"failed to resolve policy '{name}'", cause=exc) from exc
        if policy is None or not policy.id:
            raise PolicyResolutionError(name)
        self._cache[name] = policy.id
        self.log.debug("Resolved policy name=%s id=%s", name, policy.id)
        return policy.id

    def resolve(self, token: Token) -> Token:
        refs: List[PolicyRef] = []
        for ref in token.policy_refs:
            if ref.is_resolved:
                refs.append(ref)
            else:
                refs.append(PolicyRef.by_id(self.policy_id(ref.key)))
        return token.with_policy_refs(refs)


class Applier:
    """
    Executes a DiffResult in a fixed order:
      1) create policies  2) update policies  3) create tokens  4) update tokens

    Tokens come last because their policy names can only be resolved once the
    policies exist. A failing action is recorded and the run goes on; nothing
    already applied is rolled back.
    """

    def __init__(self, directory: DirectoryClient, *, logger: Optional[Logger] = None) -> None:
        self.directory = directory
        self.log = logger or logging.getLogger("cas.applier")

    def apply(self, diff: DiffResult) -> ApplyReport:
        """Apply *diff*; raise AggregateApplyError once everything ran if any action failed."""
        if not diff.has_changes:
            self.log.info("No changes to apply.")
            return ApplyReport(total=0, succeeded=0)

        resolver = PolicyResolver(self.directory, logger=self.log)
        failures: List[ApplyFailure] = []
        succeeded = 0

        def run(kind: ActionKind, target: str, fn: Callable[..., Any], *args: Any) -> None:
            nonlocal succeeded
            if self._run(kind, target, fn, *args, failures=failures):
                succeeded += 1

        for policy in diff.policies_to_create:
            run(ActionKind.CREATE_POLICY, policy.name, self._create_policy, policy)
        for pu in diff.policies_to_update:
            run(ActionKind.UPDATE_POLICY, pu.desired.name, self._update_policy, pu)
        for token in diff.tokens_to_create:
            run(ActionKind.CREATE_TOKEN, token.display_name, self._create_token, resolver, token)
        for tu in diff.tokens_to_update:
            run(ActionKind.UPDATE_TOKEN, tu.desired.display_name, self._update_token, resolver, tu)

        report = ApplyReport(total=diff.total_changes, succeeded=succeeded, failures=tuple(failures))
        self.log.info("Apply summary: %d of %d changes applied", report.succeeded, report.total)
        if failures:
            raise AggregateApplyError(report)
        return report

    # ------------- Actions -------------

    def _create_policy(self, policy: Policy) -> None:
        created = self.directory.create_policy(policy)
        self.log.debug("Created policy name=%s id=%s", created.name, created.id)

    def _update_policy(self, update: PolicyUpdate) -> None:
        desired = update.desired.with_id(update.current.id)
        self.directory.update_policy(update.current.id or "", desired)

    def _create_token(self, resolver: PolicyResolver, token: Token) -> None:
        self.directory.create_token(resolver.resolve(token))

    def _update_token(self, resolver: PolicyResolver, update: TokenUpdate) -> None:
        accessor_id = update.current.accessor_id or ""
        desired = resolver.resolve(update.desired.with_accessor_id(accessor_id))
        self.directory.update_token(accessor_id, desired)

    def _run(
        self,
        kind: ActionKind,
        target: str,
        fn: Callable[..., Any],
        *args: Any,
        failures: List[ApplyFailure],
    ) -> bool:
        try:
            fn(*args)
        except SyncError as exc:
            self.log.error("%s '%s'... FAILED: %s", kind.progress, target, exc)
            failures.append(ApplyFailure(kind, target, exc))
            return False
        except Exception as exc:
            self.log.exception("%s '%s'... FAILED (unexpected)", kind.progress, target)
            failures.append(ApplyFailure(kind, target, exc))
            return False
        self.log.info("%s '%s'... OK", kind.progress, target)
        return True


def apply(directory: DirectoryClient, diff: DiffResult, *, logger: Optional[Logger] = None) -> ApplyReport:
    return Applier(directory, logger=logger).apply(diff)
