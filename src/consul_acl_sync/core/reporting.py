"""
Rendering helpers (text or JSON) for plans and apply reports.

`render_plan` produces the Terraform-like listing shown by `plan` and before
the confirmation prompt. JSON output is also supported for machine
consumption. Secret identifiers are never rendered.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List

from .applier import ApplyReport
from .equality import normalize_rules, policy_refs_equal
from .models import DiffResult, Policy, PolicyRef, PolicyUpdate, Token, TokenUpdate

RULE = "=" * 51
SEP = "-" * 51


def _refs(refs: Iterable[PolicyRef]) -> str:
    return ", ".join(ref.key for ref in refs)


def _dcs(policy: Policy) -> str:
    return ", ".join(sorted(policy.datacenters))


def _policy_create(policy: Policy) -> List[str]:
    lines = [f"  + {policy.name}"]
    if policy.description:
        lines.append(f"      Description: {policy.description}")
    if policy.datacenters:
        lines.append(f"      Datacenters: [{_dcs(policy)}]")
    return lines


def _policy_update(update: PolicyUpdate) -> List[str]:
    cur, des = update.current, update.desired
    lines = [f"  ~ {des.name}"]
    if cur.description != des.description:
        lines.append(f"      Description: {json.dumps(cur.description)} → {json.dumps(des.description)}")
    if normalize_rules(cur.rules) != normalize_rules(des.rules):
        lines.append("      Rules: (changed)")
    if cur.datacenters != des.datacenters:
        lines.append(f"      Datacenters: [{_dcs(cur)}] → [{_dcs(des)}]")
    return lines


def _token_create(token: Token) -> List[str]:
    return [f"  + {token.display_name}", f"      Policies: [{_refs(token.policy_refs)}]"]


def _token_update(update: TokenUpdate) -> List[str]:
    lines = [f"  ~ {update.desired.display_name}"]
    if not policy_refs_equal(update.current.policy_refs, update.desired.policy_refs):
        lines.append(
            f"      Policies: [{_refs(update.current.policy_refs)}] → [{_refs(update.desired.policy_refs)}]"
        )
    return lines


def plan_summary(diff: DiffResult) -> str:
    return (
        f"Plan: {len(diff.policies_to_create) + len(diff.tokens_to_create)} to create, "
        f"{len(diff.policies_to_update) + len(diff.tokens_to_update)} to update"
    )


def plan_as_dict(diff: DiffResult) -> Dict[str, Any]:
    return {
        "policies": {
            "create": [p.name for p in diff.policies_to_create],
            "update": [{"name": u.desired.name, "id": u.current.id} for u in diff.policies_to_update],
        },
        "tokens": {
            "create": [
                {"description": t.description, "policies": [r.key for r in t.policy_refs]}
                for t in diff.tokens_to_create
            ],
            "update": [
                {
                    "description": u.desired.description,
                    "accessor_id": u.current.accessor_id,
                    "policies": [r.key for r in u.desired.policy_refs],
                }
                for u in diff.tokens_to_update
            ],
        },
        "to_create": len(diff.policies_to_create) + len(diff.tokens_to_create),
        "to_update": len(diff.policies_to_update) + len(diff.tokens_to_update),
    }


def render_plan(diff: DiffResult, fmt: str = "text") -> str:
    """Render *diff* as ``"text"`` (default) or ``"json"``."""
    if fmt == "json":
        return json.dumps(plan_as_dict(diff), indent=2)

    lines = ["", "Consul ACL Sync Plan:", RULE]
    if not diff.has_changes:
        lines += ["", "No changes required. Infrastructure is up-to-date."]
        return "\n".join(lines)

    if diff.has_policy_changes:
        lines += ["", "## Policies", ""]
        for policy in diff.policies_to_create:
            lines += _policy_create(policy)
        for pu in diff.policies_to_update:
            lines += _policy_update(pu)

    if diff.has_token_changes:
        lines += ["", "## Tokens", ""]
        for token in diff.tokens_to_create:
            lines += _token_create(token)
        for tu in diff.tokens_to_update:
            lines += _token_update(tu)

    lines += ["", SEP, "", plan_summary(diff)]
    return "\n".join(lines)


def render_apply_report(report: ApplyReport) -> str:
    lines = ["", SEP, ""]
    if report.total == 0:
        lines.append("No changes to apply.")
    elif report.failures:
        lines.append(
            f"Apply incomplete! {report.succeeded} of {report.total} changes applied successfully."
        )
        lines += ["", "Errors:"]
        lines += [f"  - {failure}" for failure in report.failures]
    else:
        lines.append(f"Apply complete! {report.succeeded} changes applied successfully.")
    return "\n".join(lines)


def render_abort(error: BaseException, command: str, fmt: str = "text") -> str:
    """Render a diff failure; nothing has been written to the directory at this point."""
    message = f"failed to calculate differences: {error}"
    if fmt == "json":
        return json.dumps({"error": message}, indent=2)
    lines = ["", f"Error: {message}"]
    if command == "apply":
        lines.append("No changes were applied.")
    return "\n".join(lines)
