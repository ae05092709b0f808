# actions/checkout.py
from __future__ import annotations

import subprocess

from ..git_facts.git import current_branch, head_sha, is_dirty
from .registry import ActionContext


def checkout(ctx: ActionContext) -> None:
    """
    The workspace is provisioned outside relayci; this only records where it
    is and, when it is a git checkout, which revision it holds.
    """
    ctx.env.export("RELAYCI_WORKSPACE", str(ctx.workspace))
    try:
        sha = head_sha(ctx.workspace)
        ref = current_branch(ctx.workspace)
        dirty = is_dirty(ctx.workspace)
    except (subprocess.CalledProcessError, FileNotFoundError):
        ctx.log("checkout: workspace is not a git repository")
        return

    ctx.env.export("RELAYCI_SHA", sha)
    ctx.env.export("RELAYCI_REF", ref)
    ctx.log(f"checkout: {ref} @ {sha[:12]}{' (dirty)' if dirty else ''}")
