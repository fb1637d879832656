# step_workflows/lint.py
from __future__ import annotations

import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, Tuple

from ..model import Job, Step


# directories never inspected by the check-only guard
DEFAULT_IGNORED_DIRS = (".git", "target", ".shipci")


# ---------------------------------------------------------------------
# Lint step helpers
# ---------------------------------------------------------------------

def lint_step(
    name: str,
    tool: str,
    args: str | None = None,
    *,
    cwd: str | None = None,
    files: List[str] | None = None,
    deny_warnings: str | None = None,
) -> Step:
    """
    Create a lint step that runs a static analysis tool.

    `deny_warnings` is the tool-specific suffix that escalates warnings to
    errors, e.g. "-- -D warnings" for cargo clippy.
    """
    parts = [tool]
    if args:
        parts.append(args)
    if files:
        parts.extend(files)
    if deny_warnings:
        parts.append(deny_warnings)

    return Step(
        name=name,
        run=" ".join(parts),
        cwd=cwd,
        kind="lint",
        data={"tool": tool, "check_only": False},
    )


def format_check_step(
    name: str,
    tool: str,
    args: str,
    *,
    cwd: str | None = None,
    ignore: Tuple[str, ...] = DEFAULT_IGNORED_DIRS,
) -> Step:
    """
    Create a check-only formatting step (e.g. `cargo fmt --all -- --check`).

    A formatting deviation fails the step. The step also fails if the tool
    rewrote any file, so it can never act as an auto-fix.
    """
    return Step(
        name=name,
        run=f"{tool} {args}",
        cwd=cwd,
        kind="lint",
        data={"tool": tool, "check_only": True, "ignore": list(ignore)},
    )


# ---------------------------------------------------------------------
# Lint step execution
# ---------------------------------------------------------------------

def _check_tool_available(job: Job, step: Step, tool: str, env: Dict[str, str]) -> None:
    """Check if a linting tool is available, raise helpful error if not."""
    # Import here to avoid circular import
    from ..runner import TOOL_HINTS, CIError

    try:
        subprocess.run(
            [tool, "--version"],
            capture_output=True,
            check=True,
            env=env,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        hint = TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
        raise CIError(
            kind="tool_unavailable",
            job=job.name,
            step=step.name,
            message=f"{tool} is not available",
            details={"hint": hint, "tool": tool},
        )


def snapshot(root: Path, ignore: List[str]) -> Dict[str, Tuple[int, int]]:
    """Map relative path -> (size, mtime_ns) for every file under root."""
    out: Dict[str, Tuple[int, int]] = {}
    for p in sorted(root.rglob("*")):
        rel = p.relative_to(root)
        if rel.parts and rel.parts[0] in ignore:
            continue
        if p.is_file():
            st = p.stat()
            out[rel.as_posix()] = (st.st_size, st.st_mtime_ns)
    return out


def run_step(job: Job, step: Step, ctx) -> str:
    """Run a lint or check-only format step."""
    # Import here to avoid circular import
    from ..runner import CIError, StepFailure, _step_cwd, _tail

    data = step.data or {}
    tool = data.get("tool")
    if not tool:
        raise ValueError(f"[{job.name}] step '{step.name}' has no lint tool")

    _check_tool_available(job, step, tool, ctx.env)
    cwd = _step_cwd(job, step, ctx)

    check_only = bool(data.get("check_only"))
    ignore = list(data.get("ignore") or DEFAULT_IGNORED_DIRS)
    before = snapshot(cwd, ignore) if check_only else None

    proc = subprocess.run(
        shlex.split(step.run),
        shell=False,
        cwd=str(cwd),
        env=ctx.env,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )

    if proc.returncode != 0:
        raise StepFailure(
            job=job.name,
            step=step.name,
            cmd=step.run,
            exit_code=proc.returncode,
            output=_tail(proc.stdout),
        )

    if check_only:
        after = snapshot(cwd, ignore)
        changed = sorted(k for k in set(before) | set(after) if before.get(k) != after.get(k))
        if changed:
            raise CIError(
                kind="files_modified",
                job=job.name,
                step=step.name,
                message="check-only step modified files",
                details={"files": ", ".join(changed[:20])},
            )

    return _tail(proc.stdout)
