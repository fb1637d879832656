# shipci_workflow.py
# CI gate on master and the cross-compiled release matrix.
from __future__ import annotations

from shipci.dsl import checkout, job, matrix, on_pull_request, on_push, on_release, pipeline, sh, wf
from shipci.step_workflows.lint import format_check_step, lint_step
from shipci.step_workflows.release import release_step

TARGETS = ["x86_64-pc-windows-gnu", "x86_64-unknown-linux-musl", "x86_64-apple-darwin"]


def pipelines():
    return wf(
        pipeline(
            "CI",
            job(
                "build",
                checkout(),
                sh("Build", "cargo build --verbose"),
                lint_step(
                    "Check with linter",
                    tool="cargo",
                    args="clippy --all-targets --all-features",
                    deny_warnings="-- -D warnings",
                ),
                format_check_step("Check style", tool="cargo", args="fmt --all -- --check"),
                sh("Run tests", "cargo test --verbose"),
            ),
            on=[on_push("master"), on_pull_request("master")],
            env={"CARGO_TERM_COLOR": "always"},
        ),

        # one job per target; a failing target never cancels the others
        pipeline(
            "Release",
            *matrix("target", TARGETS).jobs(
                lambda t: job(
                    f"release {t}",
                    checkout(),
                    release_step(),
                    env={"RUSTTARGET": t, "EXTRA_FILES": "README.md LICENSE"},
                    target=t,
                    token_scope="release",
                )
            ),
            on=[on_release("created")],
            fail_fast=False,
        ),
    )
