"""Console output formatting utilities for shipci."""

from __future__ import annotations

import sys
import threading
from typing import Optional

import click


COLOR_MODES = ("always", "never", "auto")


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, color: str = "auto"):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            color: "always", "never" or "auto" (colour only on a terminal)
        """
        if color not in COLOR_MODES:
            raise ValueError(f"color must be one of {COLOR_MODES}, got {color!r}")
        self.debug = debug
        self.color = color
        # parallel jobs print from worker threads
        self._lock = threading.Lock()

    def _echo(self, message: str = "", *, err: bool = False, fg: str | None = None, bold: bool = False) -> None:
        if fg or bold:
            message = click.style(message, fg=fg, bold=bold)
        color = {"always": True, "never": False}.get(self.color)
        with self._lock:
            click.echo(message, err=err, color=color)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._echo(f"\n{title}", bold=True)
        self._echo("-" * len(title))

    def print_run_started(self, event: str, ref: str, pipelines: list[str]) -> None:
        """Print run start information."""
        self._echo("\nRUN STARTED", bold=True)
        self._echo(f"Event: {event}")
        if ref:
            self._echo(f"Ref: {ref}")
        self._echo(f"Pipelines: {', '.join(pipelines) if pipelines else '(none matched)'}")
        self._echo()

    def print_pipeline_started(self, name: str, event: str, jobs: list[str]) -> None:
        self._echo(f"\nPIPELINE: {name} (on {event})", bold=True)
        for j in jobs:
            self._echo(f"  {j}")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._echo(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._echo(f"[{job}] STEP: {name}")

    def print_job_done(self, name: str, status: str) -> None:
        fg = "green" if status == "passed" else "red"
        self._echo(f"[{name}] STATUS: {status}", fg=fg)

    def print_failure(
        self,
        job: str,
        step: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        output: Optional[str] = None,
    ) -> None:
        """
        Print a step failure.

        Args:
            job: Job name
            step: Step name
            reason: Failure reason/error message
            exit_code: Optional exit code of the step's command
            hint: Optional hint for user
            output: Optional tail of the command's output
        """
        self._echo(f"[{job}] STEP FAILED: {step}", fg="red", bold=True)
        if exit_code is not None:
            self._echo(f"[{job}] Exit code: {exit_code}")
        if hint:
            self._echo(f"[{job}] Hint: {hint}", fg="yellow")
        if self.debug:
            self._echo(f"[{job}] Error details: {reason}")
        else:
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            self._echo(f"[{job}] Error: {error_line}")
        if output:
            self._echo(output.rstrip())

    def print_plan(self, pipelines) -> None:
        """Print the pipelines, their triggers and jobs."""
        for p in pipelines:
            self.print_header(p.name)
            for t in p.triggers:
                extra = ""
                if t.branches:
                    extra = f" branches={list(t.branches)}"
                if t.types:
                    extra += f" types={list(t.types)}"
                self._echo(f"  on: {t.event}{extra}")
            self._echo(f"  fail-fast: {str(p.fail_fast).lower()}")
            for j in p.jobs:
                self._echo(f"  job: {j.name}")
                for s in j.steps:
                    self._echo(f"    - {s.name}")

    def print_results(self, results) -> None:
        """Print final results summary."""
        self._echo("\n" + "=" * 40)
        self._echo("RESULTS", bold=True)
        self._echo("=" * 40)
        if not results:
            self._echo("  no pipeline matched the event")
            return
        for r in results:
            self._echo(f"{r.pipeline}: {r.status.value.upper()}", fg="green" if r.status.value == "passed" else "red")
            for j in r.jobs:
                line = f"  {j.name}: {j.status.value.upper()}"
                if j.failed_step:
                    line += f" (at '{j.failed_step}')"
                self._echo(line)
                for asset in j.assets:
                    self._echo(f"    asset: {asset}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        self._echo(f"\nERROR: {title}", err=True, fg="red", bold=True)
        self._echo(f"{message}", err=True)
        if details:
            for detail in details:
                self._echo(f"  {detail}", err=True)
        if suggestion:
            self._echo(f"\n{suggestion}", err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            self._echo(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._echo(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._echo(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
