# runner.py
from __future__ import annotations

import os
import runpy
import shutil
import subprocess
import tempfile
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .model import Job, JobResult, Pipeline, PipelineResult, Status, Step, StepResult, TriggerEvent
from .ui.console import Console, get_console


# event ---> pipeline(s) ---> job(s) ---> ordered steps


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the run record stored by the webhook server
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


TOOL_HINTS = {
    "git": "Install Git or fix PATH.",
    "cargo": "Install the Rust toolchain (https://rustup.rs) or fix PATH.",
    "cargo-clippy": "Install clippy: rustup component add clippy",
    "rustfmt": "Install rustfmt: rustup component add rustfmt",
    "cross": "Install cross: cargo install cross",
}

OUTPUT_TAIL = 4000


def _tail(text: str | None) -> str:
    return (text or "")[-OUTPUT_TAIL:]


# ----------------------------------------------------------------------
# Execution context
# ----------------------------------------------------------------------

@dataclass
class JobContext:
    """Everything a step needs besides the Job itself."""
    workspace: Path
    env: Dict[str, str]
    event: TriggerEvent
    source: str
    out_dir: Path
    publisher: Optional[object] = None
    console: Console = field(default_factory=get_console)
    assets: List[str] = field(default_factory=list)


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> List[Pipeline]:
    """
    Load pipelines from a python file path.

    The file must define either:
      - pipelines() -> List[Pipeline]
      - PIPELINES = [Pipeline, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"shipci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    pipelines = None
    if "pipelines" in globals_dict and callable(globals_dict["pipelines"]):
        pipelines = globals_dict["pipelines"]()
    elif "PIPELINES" in globals_dict:
        pipelines = globals_dict["PIPELINES"]

    if not isinstance(pipelines, list) or not all(isinstance(p, Pipeline) for p in pipelines):
        raise TypeError(
            "Workflow must return/define a List[Pipeline]. "
            "Define pipelines() -> List[Pipeline] or PIPELINES = [Pipeline, ...]."
        )

    return pipelines


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _step_cwd(job: Job, step: Step, ctx: JobContext) -> Path:
    cwd = (ctx.workspace / (step.cwd or ".")).resolve()
    if not cwd.exists():
        raise CIError(
            kind="cwd_not_found",
            job=job.name,
            step=step.name,
            message=f"working directory not found: {cwd}",
        )
    return cwd


def _run_shell(job: Job, step: Step, ctx: JobContext) -> str:
    cwd = _step_cwd(job, step, ctx)

    proc = subprocess.run(
        step.run,
        shell=True,
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
    return _tail(proc.stdout)


def _step_runner(step: Step) -> Callable[[Job, Step, JobContext], str]:
    if step.kind == "sh":
        return _run_shell
    if step.kind == "checkout":
        from .step_workflows import checkout
        return checkout.run_step
    if step.kind == "lint":
        from .step_workflows import lint
        return lint.run_step
    if step.kind == "release":
        from .step_workflows import release
        return release.run_step
    raise ValueError(f"Unknown step kind: {step.kind!r}")


def _job_env(job: Job, pipeline_env: Dict[str, str], token: Optional[str]) -> Dict[str, str]:
    env = os.environ.copy()
    # the credential is only visible to jobs that declare a scope for it
    env.pop("GITHUB_TOKEN", None)
    env.update(pipeline_env or {})
    env.update(job.env or {})
    if job.token_scope and token:
        env["GITHUB_TOKEN"] = token
    return env


def run_job(
    job: Job,
    event: TriggerEvent,
    *,
    source: str = ".",
    pipeline_env: Optional[Dict[str, str]] = None,
    token: Optional[str] = None,
    publisher: Optional[object] = None,
    out_dir: str | Path | None = None,
    workspace: str | Path | None = None,
    keep_workspace: bool = False,
    console: Optional[Console] = None,
) -> JobResult:
    """
    Run one job's steps strictly in order.

    The first failing step terminates the job; the remaining steps are
    recorded as skipped. Step failures never propagate as exceptions.
    """
    console = console or get_console()
    owns_workspace = workspace is None
    ws = Path(tempfile.mkdtemp(prefix="shipci-")) if owns_workspace else Path(workspace)
    ws.mkdir(parents=True, exist_ok=True)

    ctx = JobContext(
        workspace=ws.resolve(),
        env=_job_env(job, pipeline_env or {}, token),
        event=event,
        source=source,
        out_dir=Path(out_dir) if out_dir else ws / ".shipci" / "dist",
        publisher=publisher,
        console=console,
    )

    results: List[StepResult] = []
    failed = False

    console.print_job_start(job.name)
    try:
        for step in job.steps:
            if failed:
                results.append(StepResult(name=step.name, status=Status.SKIPPED))
                continue

            console.print_step(job.name, step.name)
            try:
                output = _step_runner(step)(job, step, ctx)
            except StepFailure as e:
                failed = True
                results.append(StepResult(step.name, Status.FAILED, e.exit_code, e.output, str(e)))
                console.print_failure(job.name, step.name, str(e), exit_code=e.exit_code, output=e.output)
            except CIError as e:
                failed = True
                results.append(StepResult(step.name, Status.FAILED, error=str(e)))
                console.print_failure(job.name, step.name, e.message, hint=e.details.get("hint"))
            except (OSError, ValueError) as e:
                failed = True
                results.append(StepResult(step.name, Status.FAILED, error=str(e)))
                console.print_failure(job.name, step.name, str(e))
            else:
                results.append(StepResult(step.name, Status.PASSED, 0, output or ""))
    finally:
        if owns_workspace and not keep_workspace:
            shutil.rmtree(ws, ignore_errors=True)

    status = Status.FAILED if failed else Status.PASSED
    console.print_job_done(job.name, status.value)
    return JobResult(name=job.name, status=status, steps=results, target=job.target, assets=list(ctx.assets))


def run_pipeline(
    pipeline: Pipeline,
    event: TriggerEvent,
    *,
    source: str = ".",
    token: Optional[str] = None,
    publisher: Optional[object] = None,
    out_dir: str | Path | None = None,
    max_workers: int | None = None,
    keep_workspace: bool = False,
    console: Optional[Console] = None,
) -> PipelineResult:
    """
    Run all jobs of a pipeline.

    One job runs inline. Several jobs fan out on a thread pool, each in its
    own workspace with no shared state. With fail_fast=False every job runs
    to completion. With fail_fast=True a failure cancels only the jobs still
    waiting for a worker; jobs already running finish and keep their result.
    """
    console = console or get_console()
    aborted = threading.Event()

    def _one(j: Job) -> JobResult:
        if pipeline.fail_fast and aborted.is_set():
            return JobResult(name=j.name, status=Status.CANCELLED, target=j.target)
        res = run_job(
            j,
            event,
            source=source,
            pipeline_env=pipeline.env,
            token=token,
            publisher=publisher,
            out_dir=Path(out_dir) / j.name.replace(" ", "-") if out_dir else None,
            keep_workspace=keep_workspace,
            console=console,
        )
        if res.status is Status.FAILED:
            aborted.set()
        return res

    console.print_pipeline_started(pipeline.name, event.name, [j.name for j in pipeline.jobs])

    results: Dict[str, JobResult] = {}
    if len(pipeline.jobs) == 1:
        only = pipeline.jobs[0]
        results[only.name] = _one(only)
    else:
        if max_workers is None:
            max_workers = len(pipeline.jobs)

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            in_flight: Dict[Future, Job] = {pool.submit(_one, j): j for j in pipeline.jobs}

            for fut in as_completed(list(in_flight.keys())):
                j = in_flight[fut]
                if fut.cancelled():
                    continue
                try:
                    res = fut.result()
                except Exception as e:
                    # run_job only raises on runner bugs; keep siblings isolated
                    console.print_exception(e)
                    res = JobResult(name=j.name, status=Status.FAILED, target=j.target)
                results[j.name] = res

                if res.status is Status.FAILED and pipeline.fail_fast:
                    for other in in_flight:
                        other.cancel()

            for fut, j in in_flight.items():
                if j.name not in results:
                    results[j.name] = JobResult(name=j.name, status=Status.CANCELLED, target=j.target)

    ordered = [results[j.name] for j in pipeline.jobs]
    status = Status.PASSED if all(r.status is Status.PASSED for r in ordered) else Status.FAILED
    return PipelineResult(pipeline=pipeline.name, event=event, status=status, jobs=ordered)


def dispatch(
    event: TriggerEvent,
    pipelines: List[Pipeline],
    **kwargs,
) -> List[PipelineResult]:
    """Run every pipeline whose triggers match the event."""
    from .triggers import select_pipelines

    return [run_pipeline(p, event, **kwargs) for p in select_pipelines(pipelines, event)]


def exit_code(results: List[PipelineResult]) -> int:
    return 0 if all(r.status is Status.PASSED for r in results) else 1
