from __future__ import annotations

import sys
from typing import Callable, Optional, TextIO

from .models import DiffResult

_AFFIRMATIVE = {"yes", "y"}


def confirm(
    diff: DiffResult,
    *,
    input_fn: Optional[Callable[[], str]] = None,
    out: Optional[TextIO] = None,
) -> bool:
    """Ask the operator to approve *diff*. Only "yes"/"y" (any case) approves.

    Header and prompt go to *out*; one line is read with *input_fn*
    (default: ``sys.stdin.readline``). End of input declines.
    """
    if not diff.has_changes:
        return False

    out = out or sys.stdout
    out.write("\nDo you want to perform these actions?\n")
    out.write(f"  Consul ACL Sync will perform {diff.total_changes} actions.\n\n")
    out.write("  Enter a value (yes/no): ")
    out.flush()
    try:
        response = (input_fn or sys.stdin.readline)()
    except EOFError:
        return False
    return (response or "").strip().lower() in _AFFIRMATIVE
