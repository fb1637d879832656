# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class Status(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Step:
    """A single action (step) inside a job."""
    name: str
    run: str
    cwd: str | None = None
    # sh | checkout | lint | release
    kind: str = "sh"
    data: Optional[Dict[str, Any]] = None


@dataclass
class Job:
    """
    A unit of execution: ordered steps + environment.

    Release jobs carry the target triple they build for and the scope of the
    credential they are allowed to read.
    """
    name: str
    steps: list[Step]

    env: Dict[str, str] = field(default_factory=dict)
    requires: list[str] = field(default_factory=list)

    target: Optional[str] = None
    token_scope: Optional[str] = None


@dataclass(frozen=True)
class TriggerEvent:
    """A push, pull_request or release event carrying the revision under test."""
    name: str
    ref: str = ""
    sha: Optional[str] = None
    branch: Optional[str] = None       # push: pushed branch, pull_request: base branch
    action: Optional[str] = None       # pull_request / release action
    release_id: Optional[int] = None
    tag: Optional[str] = None
    repository: Optional[str] = None   # "owner/name"
    clone_url: Optional[str] = None


@dataclass(frozen=True)
class Trigger:
    """One entry of a pipeline's `on:` clause."""
    event: str
    branches: tuple[str, ...] = ()
    types: tuple[str, ...] = ()

    def matches(self, event: TriggerEvent) -> bool:
        if event.name != self.event:
            return False
        if self.branches and event.branch not in self.branches:
            return False
        if self.types and event.action not in self.types:
            return False
        return True


@dataclass
class Pipeline:
    name: str
    triggers: list[Trigger]
    jobs: list[Job]
    env: Dict[str, str] = field(default_factory=dict)
    # False: sibling jobs are never cancelled when one fails
    fail_fast: bool = True

    def matches(self, event: TriggerEvent) -> bool:
        return any(t.matches(event) for t in self.triggers)


@dataclass(frozen=True)
class ArtifactSet:
    """Compiled binaries + auxiliary files packaged for one target."""
    target: str
    archive: Path
    members: tuple[str, ...]


@dataclass
class StepResult:
    name: str
    status: Status
    exit_code: Optional[int] = None
    output: str = ""
    error: Optional[str] = None


@dataclass
class JobResult:
    name: str
    status: Status
    steps: List[StepResult] = field(default_factory=list)
    target: Optional[str] = None
    assets: List[str] = field(default_factory=list)

    @property
    def failed_step(self) -> Optional[str]:
        for s in self.steps:
            if s.status is Status.FAILED:
                return s.name
        return None

    @property
    def logs(self) -> str:
        chunks = []
        for s in self.steps:
            chunks.append(f"== {s.name}: {s.status.value}")
            if s.output:
                chunks.append(s.output.rstrip())
            if s.error:
                chunks.append(f"error: {s.error}")
        return "\n".join(chunks)


@dataclass
class PipelineResult:
    pipeline: str
    event: TriggerEvent
    status: Status
    jobs: List[JobResult] = field(default_factory=list)

    def job(self, name: str) -> JobResult:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)
