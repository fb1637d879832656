# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import List, Optional

import click

from shipci.git_facts.git import get_current_ref, head_sha
from shipci.model import Pipeline, TriggerEvent
from shipci.pipelines import default_pipelines
from shipci.publish import DirectoryPublisher
from shipci.runner import dispatch, exit_code, load_workflow
from shipci.settings import SettingsError, load_settings
from shipci.triggers import UnsupportedEvent, event_from_file, select_pipelines
from shipci.ui.console import COLOR_MODES, Console, get_console, set_console


DEFAULT_WORKFLOW = "shipci_workflow.py"


def find_workflow_files() -> list[Path]:
    """Find all workflow files in the current directory."""
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Optional[Path]:
    """
    Discover workflow file from argument or default.

    Returns:
        Path to workflow file, or None to use the built-in pipelines

    Raises:
        SystemExit: If the workflow cannot be found or is ambiguous
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion=f"Create {DEFAULT_WORKFLOW} or specify a different path:\n  shipci ci --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()
    if not workflow_files:
        return None

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  shipci ci --workflow {DEFAULT_WORKFLOW}",
        )
        sys.exit(1)

    return workflow_files[0]


def _pipelines(workflow: str | None) -> List[Pipeline]:
    workflow_path = discover_workflow(workflow)
    if workflow_path is None:
        get_console().print_debug("No workflow file found, using built-in pipelines")
        return default_pipelines()
    return load_workflow(workflow_path)


def _local_sha(source: str, rev: str | None) -> str | None:
    if rev:
        return rev
    if Path(source).exists():
        try:
            return head_sha(source)
        except (subprocess.CalledProcessError, FileNotFoundError):
            return None
    return None


def _execute(ctx, event: TriggerEvent, pipelines: List[Pipeline], **kwargs) -> None:
    console = get_console()
    settings = ctx.obj["settings"]

    try:
        console.print_run_started(
            event=event.name,
            ref=event.ref or (event.sha or ""),
            pipelines=[p.name for p in select_pipelines(pipelines, event)],
        )
        if kwargs.get("max_workers") is None:
            kwargs["max_workers"] = settings.workers
        results = dispatch(event, pipelines, token=settings.github_token, console=console, **kwargs)
        console.print_results(results)
        sys.exit(exit_code(results))
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)


def _common_run_options(f):
    f = click.option("--keep-workspace", is_flag=True, default=False, help="Keep job workspaces after the run")(f)
    f = click.option(
        "--workers", default=None, type=click.IntRange(min=1), help="Number of parallel jobs (defaults to SHIPCI_WORKERS)"
    )(f)
    f = click.option("--source", default=".", show_default=True, help="Repository path or URL to check out")(f)
    f = click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")(f)
    return f


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option(
    "--color",
    type=click.Choice(COLOR_MODES),
    default=None,
    help="Coloured output (defaults to SHIPCI_TERM_COLOR / CARGO_TERM_COLOR, then auto)",
)
@click.pass_context
def cli(ctx, debug, color):
    """shipci: run the CI gate and the release matrix locally or from webhooks."""
    try:
        settings = load_settings()
    except SettingsError as e:
        Console(debug=debug, color=color or "auto").print_error("Invalid configuration", str(e))
        sys.exit(2)
    console = Console(debug=debug, color=color or settings.term_color)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = settings


@cli.command()
@_common_run_options
@click.option("--event", "event_name", type=click.Choice(["push", "pull_request"]), default="push", show_default=True)
@click.option("--branch", default=None, help="Branch pushed to / targeted (defaults to the current branch)")
@click.option("--rev", default=None, help="Revision to test (defaults to HEAD of --source)")
@click.pass_context
def ci(ctx, workflow, source, workers, keep_workspace, event_name, branch, rev):
    """Run the pipelines triggered by a push or pull request."""
    console = get_console()
    try:
        pipelines = _pipelines(workflow)
        if branch is None:
            try:
                branch = get_current_ref(source if Path(source).exists() else None)
            except (subprocess.CalledProcessError, FileNotFoundError):
                branch = "master"
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    event = TriggerEvent(
        name=event_name,
        ref=f"refs/heads/{branch}",
        sha=_local_sha(source, rev),
        branch=branch,
        action="synchronize" if event_name == "pull_request" else None,
    )
    _execute(ctx, event, pipelines, source=source, max_workers=workers, keep_workspace=keep_workspace)


@cli.command()
@_common_run_options
@click.option("--tag", required=True, help="Release tag (used in archive names)")
@click.option("--release-id", default=None, type=int, help="Release id to upload assets to")
@click.option("--repo", default=None, help="owner/name (defaults to GITHUB_REPOSITORY)")
@click.option("--rev", default=None, help="Revision to build (defaults to HEAD of --source)")
@click.option("--target", "targets", multiple=True, help="Only build these target triples")
@click.option("--publish-dir", default=None, help="Copy assets into this directory instead of uploading")
@click.pass_context
def release(ctx, workflow, source, workers, keep_workspace, tag, release_id, repo, rev, targets, publish_dir):
    """Run the pipelines triggered by a created release."""
    console = get_console()
    settings = ctx.obj["settings"]
    try:
        pipelines = _pipelines(workflow)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if targets:
        for p in pipelines:
            p.jobs = [j for j in p.jobs if j.target is None or j.target in targets]
        pipelines = [p for p in pipelines if p.jobs]

    publish_dir = publish_dir or settings.publish_dir
    event = TriggerEvent(
        name="release",
        ref=f"refs/tags/{tag}",
        sha=_local_sha(source, rev),
        action="created",
        release_id=release_id,
        tag=tag,
        repository=repo or settings.github_repository,
    )
    _execute(
        ctx,
        event,
        pipelines,
        source=source,
        max_workers=workers,
        keep_workspace=keep_workspace,
        publisher=DirectoryPublisher(publish_dir) if publish_dir else None,
    )


@cli.command()
@_common_run_options
@click.option("--event", "event_name", default=None, help="Event name (defaults to GITHUB_EVENT_NAME)")
@click.option("--payload", default=None, help="Event payload JSON file (defaults to GITHUB_EVENT_PATH)")
@click.option("--publish-dir", default=None, help="Copy release assets into this directory instead of uploading")
@click.pass_context
def trigger(ctx, workflow, source, workers, keep_workspace, event_name, payload, publish_dir):
    """Run whatever pipelines a GitHub event payload triggers."""
    console = get_console()
    settings = ctx.obj["settings"]

    event_name = event_name or settings.event_name
    payload = payload or settings.event_path
    if not event_name or not payload:
        console.print_error(
            "No event given",
            "An event name and a payload file are required.",
            suggestion="shipci trigger --event push --payload event.json",
        )
        sys.exit(2)

    try:
        pipelines = _pipelines(workflow)
        event = event_from_file(event_name, payload)
    except UnsupportedEvent as e:
        console.print_error("Unsupported event", str(e))
        sys.exit(2)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if source == "." and event.clone_url and not Path(".git").exists():
        source = event.clone_url

    publish_dir = publish_dir or settings.publish_dir
    _execute(
        ctx,
        event,
        pipelines,
        source=source,
        max_workers=workers,
        keep_workspace=keep_workspace,
        publisher=DirectoryPublisher(publish_dir) if publish_dir else None,
    )


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
def plan(workflow):
    """Print pipelines, their triggers, jobs and steps."""
    console = get_console()
    try:
        console.print_plan(_pipelines(workflow))
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
@click.option("--source", default=None, help="Repository path or URL (defaults to the event's clone URL)")
@click.pass_context
def serve(ctx, workflow, host, port, source):
    """Receive GitHub webhooks and run the triggered pipelines."""
    import uvicorn

    from shipci.server.app import create_app

    settings = ctx.obj["settings"]
    app = create_app(settings=settings, pipelines=_pipelines(workflow), source=source)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    cli()
