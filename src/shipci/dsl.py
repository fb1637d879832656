# src/shipci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from .model import Job, Pipeline, Step, Trigger


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd)


def checkout(name: str = "Checkout repository") -> Step:
    """Fetch the exact revision under test into the job workspace."""
    return Step(name=name, run="git checkout", kind="checkout")


# ---------------------------------------------------------------------
# Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,
    env: Optional[Dict[str, str]] = None,
    requires: Optional[List[str]] = None,
    target: str | None = None,
    token_scope: str | None = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=steps_final,
        env={k: str(v) for k, v in (env or {}).items()},
        requires=requires or [],
        target=target,
        token_scope=token_scope,
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("target", ["x86_64-unknown-linux-musl", "x86_64-apple-darwin"]).jobs(
            lambda t: job(f"release {t}", checkout(), release_step(), target=t)
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        jobs = [builder(v) for v in self.values]
        names = [j.name for j in jobs]
        if len(set(names)) != len(names):
            raise ValueError(f"matrix({self.key!r}) produced duplicate job names: {names}")
        return jobs


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

def on_push(*branches: str) -> Trigger:
    return Trigger(event="push", branches=tuple(branches))


def on_pull_request(*branches: str) -> Trigger:
    return Trigger(event="pull_request", branches=tuple(branches))


def on_release(*types: str) -> Trigger:
    return Trigger(event="release", types=tuple(types or ("created",)))


# ---------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------

def pipeline(
    name: str,
    *jobs: Job,
    on: Iterable[Trigger],
    env: Optional[Dict[str, str]] = None,
    fail_fast: bool = True,
) -> Pipeline:
    triggers = list(on)
    if not triggers:
        raise ValueError(f"pipeline({name!r}) needs at least one trigger")
    if not jobs:
        raise ValueError(f"pipeline({name!r}) must have at least one job")

    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ValueError(f"Duplicate job names found: {dupes}")

    return Pipeline(
        name=name,
        triggers=triggers,
        jobs=list(jobs),
        env={k: str(v) for k, v in (env or {}).items()},
        fail_fast=fail_fast,
    )


def wf(*pipelines: Pipeline) -> List[Pipeline]:
    """
    Workflow definition helper.

        from shipci import wf, pipeline, job, sh, on_push

        def pipelines():
            return wf(
                pipeline("ci", job("build", sh("Build", "make")), on=[on_push("main")]),
            )
    """
    return list(pipelines)
