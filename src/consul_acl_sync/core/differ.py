"""
Diff engine: desired ACL configuration vs. live directory.

One lookup per declared resource, in declaration order. Resources that are
not declared are never fetched. The first failing lookup aborts the whole
computation; nothing is ever written to the directory from here.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

from .directory import DirectoryClient
from .equality import policies_equal, tokens_equal
from .errors import DirectoryLookupError
from .models import AclConfig, DiffResult, Policy, PolicyUpdate, Token, TokenUpdate

Logger = Union[logging.Logger, logging.LoggerAdapter]


def calculate_diff(
    directory: DirectoryClient,
    desired: AclConfig,
    *,
    logger: Optional[Logger] = None,
) -> DiffResult:
    """Compute the create/update actions that bring *directory* in line with *desired*.

    Raises:
        DirectoryLookupError: if any lookup fails; no partial result is returned.
    """
    log = logger or logging.getLogger("cas.differ")

    policies_to_create: List[Policy] = []
    policies_to_update: List[PolicyUpdate] = []
    for policy in desired.policies:
        try:
            current = directory.lookup_policy_by_name(policy.name)
        except DirectoryLookupError as exc:
            raise DirectoryLookupError(
                f"failed to check policy '{policy.name}'", status=exc.status, url=exc.url, cause=exc
            ) from exc

        if current is None:
            log.debug("policy %s: CREATE (not found)", policy.name)
            policies_to_create.append(policy)
        elif not policies_equal(current, policy):
            log.debug("policy %s: UPDATE (id=%s)", policy.name, current.id)
            policies_to_update.append(PolicyUpdate(current=current, desired=policy))
        else:
            log.debug("policy %s: UNCHANGED", policy.name)

    tokens_to_create: List[Token] = []
    tokens_to_update: List[TokenUpdate] = []
    for token in desired.tokens:
        try:
            current_token = directory.lookup_token_by_description(token.description)
        except DirectoryLookupError as exc:
            raise DirectoryLookupError(
                f"failed to check token '{token.description}'", status=exc.status, url=exc.url, cause=exc
            ) from exc

        if current_token is None:
            log.debug("token %s: CREATE (not found)", token.description)
            tokens_to_create.append(token)
        elif not tokens_equal(current_token, token):
            log.debug("token %s: UPDATE (accessor=%s)", token.description, current_token.accessor_id)
            tokens_to_update.append(
                TokenUpdate(current=current_token, desired=token.with_accessor_id(current_token.accessor_id))
            )
        else:
            log.debug("token %s: UNCHANGED", token.description)

    diff = DiffResult(
        policies_to_create=tuple(policies_to_create),
        policies_to_update=tuple(policies_to_update),
        tokens_to_create=tuple(tokens_to_create),
        tokens_to_update=tuple(tokens_to_update),
    )
    log.info(
        "Diff computed: %d to create, %d to update",
        len(diff.policies_to_create) + len(diff.tokens_to_create),
        len(diff.policies_to_update) + len(diff.tokens_to_update),
    )
    return diff
