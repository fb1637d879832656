# pipelines.py
# The two built-in pipelines: the CI gate and the release matrix.
from __future__ import annotations

from typing import List, Sequence

from .dsl import checkout, job, matrix, on_pull_request, on_push, on_release, pipeline, sh, wf
from .model import Pipeline
from .step_workflows.lint import format_check_step, lint_step
from .step_workflows.release import DEFAULT_BUILD_COMMAND, release_step


DEFAULT_BRANCH = "master"
DEFAULT_TARGETS = (
    "x86_64-pc-windows-gnu",
    "x86_64-unknown-linux-musl",
    "x86_64-apple-darwin",
)
DEFAULT_EXTRA_FILES = ("README.md", "LICENSE")


def ci_pipeline(
    branch: str = DEFAULT_BRANCH,
    *,
    color: str = "always",
    build: str = "cargo build --verbose",
    lint_args: str = "clippy --all-targets --all-features",
    fmt_args: str = "fmt --all -- --check",
    test: str = "cargo test --verbose",
) -> Pipeline:
    """Checkout, build, lint (warnings are errors), format check, test."""
    return pipeline(
        "CI",
        job(
            "build",
            checkout(),
            sh("Build", build),
            lint_step("Check with linter", tool="cargo", args=lint_args, deny_warnings="-- -D warnings"),
            format_check_step("Check style", tool="cargo", args=fmt_args),
            sh("Run tests", test),
        ),
        on=[on_push(branch), on_pull_request(branch)],
        env={"CARGO_TERM_COLOR": color},
    )


def release_pipeline(
    targets: Sequence[str] = DEFAULT_TARGETS,
    *,
    extra_files: Sequence[str] = DEFAULT_EXTRA_FILES,
    build_command: str = DEFAULT_BUILD_COMMAND,
    project: str | None = None,
) -> Pipeline:
    """One independent job per target triple; a failing target never cancels the others."""
    jobs = matrix("target", targets).jobs(
        lambda t: job(
            f"release {t}",
            checkout(),
            release_step(build_command=build_command, project=project),
            env={"RUSTTARGET": t, "EXTRA_FILES": " ".join(extra_files)},
            target=t,
            token_scope="release",
        )
    )
    return pipeline("Release", *jobs, on=[on_release("created")], fail_fast=False)


def default_pipelines(color: str = "always") -> List[Pipeline]:
    return wf(ci_pipeline(color=color), release_pipeline())
