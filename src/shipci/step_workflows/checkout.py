# step_workflows/checkout.py
from __future__ import annotations

import subprocess

from ..git_facts import git
from ..model import Job, Step


def run_step(job: Job, step: Step, ctx) -> str:
    """
    Fetch the exact revision under test into the (empty) job workspace.

    The revision is the event's sha, else its ref (a release's tag, a
    branch), else the source's HEAD. A ref missing from the clone is
    fetched. Any git failure (unreachable source, unknown revision) is fatal.
    """
    # Import here to avoid circular import
    from ..runner import TOOL_HINTS, CIError

    rev = ctx.event.sha or ctx.event.ref or "HEAD"
    try:
        git.clone(ctx.source, ctx.workspace)
        wanted = rev
        if rev != "HEAD" and not git.has_revision(rev, ctx.workspace):
            git.fetch(rev, ctx.workspace)
            wanted = "FETCH_HEAD"
        git.checkout(wanted, ctx.workspace)
        sha = git.head_sha(ctx.workspace)
    except FileNotFoundError:
        raise CIError(
            kind="tool_unavailable",
            job=job.name,
            step=step.name,
            message="git is not available",
            details={"hint": TOOL_HINTS["git"], "tool": "git"},
        )
    except subprocess.CalledProcessError as e:
        raise CIError(
            kind="checkout_failed",
            job=job.name,
            step=step.name,
            message=f"could not check out {rev} from {ctx.source}",
            details={"git": (e.output or "").strip()[-500:]},
        )

    return f"checked out {sha} from {ctx.source}"
