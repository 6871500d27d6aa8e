"""Console output formatting utilities for runci."""

from __future__ import annotations

import sys
import threading
from typing import Optional

import click

from ..model import Event, JobResult, JobStatus, RunResult, Step, StepResult, Workflow
from ..settings import OutputSettings

OUTPUT_TAIL_LINES = 40

_STATUS_COLORS = {
    JobStatus.SUCCESS: "green",
    JobStatus.FAILURE: "red",
    JobStatus.SKIPPED: "yellow",
}


class Console:
    """
    Centralized console output formatting.

    Jobs run concurrently, so every write takes a lock to keep lines from
    different jobs from interleaving mid-line.
    """

    def __init__(self, debug: bool = False, output: Optional[OutputSettings] = None):
        """
        Args:
            debug: If True, show detailed output including stack traces
            output: colour/verbosity settings
        """
        self.debug = debug
        self.output = output or OutputSettings()
        self._lock = threading.Lock()

    # ---- low level ----

    def _color(self, err: bool = False) -> bool:
        stream = sys.stderr if err else sys.stdout
        return self.output.use_color(getattr(stream, "isatty", lambda: False)())

    def _echo(self, message: str = "", *, fg: Optional[str] = None, bold: bool = False, err: bool = False) -> None:
        if fg or bold:
            message = click.style(message, fg=fg, bold=bold)
        with self._lock:
            click.echo(message, err=err, color=self._color(err))

    # ---- run level ----

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._echo(f"\n{title}\n{'-' * len(title)}", bold=True)

    def print_run_started(self, workflow: str, event: Event, job_count: int) -> None:
        self._echo("\nRUN STARTED", bold=True)
        self._echo(f"Workflow: {workflow}")
        self._echo(f"Event: {event.kind} -> {event.target_branch}")
        if event.sha:
            self._echo(f"Commit: {event.sha}")
        self._echo(f"Jobs: {job_count}")

    def print_not_admitted(self, workflow: Workflow, event: Event) -> None:
        branches = ", ".join(workflow.on.branches) or "*"
        events = ", ".join(sorted(workflow.on.events))
        self._echo(
            f"Event {event.kind} -> {event.target_branch} does not match "
            f"workflow '{workflow.name}' (on: {events}; branches: {branches}). No jobs run."
        )

    def print_plan(self, workflow: Workflow) -> None:
        self.print_header(f"Workflow: {workflow.name}")
        branches = ", ".join(workflow.on.branches) or "*"
        self._echo(f"on: {', '.join(sorted(workflow.on.events))} (branches: {branches})")
        for key, value in workflow.env.items():
            self._echo(f"env: {key}={value}")
        for j in workflow.jobs:
            needs = f" (needs: {', '.join(j.needs)})" if j.needs else ""
            self._echo(f"\n  {j.name} [{j.runs_on}]{needs}", bold=True)
            for s in j.steps:
                self._echo(f"    - {s.name}: {s.describe()}")

    def print_results(self, result: RunResult) -> None:
        """Print final results summary."""
        self._echo("\n" + "=" * 40)
        self._echo("RESULTS", bold=True)
        self._echo("=" * 40)
        for j in result.jobs:
            suffix = f" ({j.failure.value})" if j.failure else ""
            self._echo(f"  {j.name}: {j.status.value.upper()}{suffix}", fg=_STATUS_COLORS.get(j.status))
        self._echo(f"\nRUN {result.status.value.upper()}", fg=_STATUS_COLORS[result.status], bold=True)

    # ---- job level ----

    def print_job_start(self, name: str) -> None:
        self._echo(f"\nJOB STARTED: {name}", bold=True)

    def print_step(self, job: str, step: Step) -> None:
        self._echo(f"[{job}] ▶ {step.name}")

    def print_step_result(self, job: str, step: Step, result: StepResult, hint: Optional[str] = None) -> None:
        if result.ok:
            if self.output.verbose and result.output:
                self._echo(_indent(result.output))
            return
        if result.timed_out:
            self._echo(f"[{job}] STEP TIMED OUT: {step.name}", fg="red")
        elif result.cancelled:
            self._echo(f"[{job}] STEP CANCELLED: {step.name}", fg="yellow")
        else:
            self._echo(f"[{job}] STEP FAILED: {step.name}", fg="red")
            self._echo(f"Exit code: {result.exit_code}")
        if hint:
            self._echo(f"Hint: {hint}")
        if result.output:
            self._echo(_indent(_tail(result.output)))

    def print_job_finished(self, result: JobResult) -> None:
        color = _STATUS_COLORS.get(result.status)
        line = f"[{result.name}] STATUS: {result.status.value}"
        if result.failure:
            line += f" ({result.failure.value})"
        self._echo(line, fg=color)
        if result.error:
            if self.debug:
                self._echo(f"Error details: {result.error}", err=True)
            else:
                self._echo(f"Error: {result.error.splitlines()[0]}", err=True)

    # ---- generic ----

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
        self._echo(f"\nERROR: {title}", fg="red", bold=True, err=True)
        self._echo(message, err=True)
        for detail in details or []:
            self._echo(f"  {detail}", err=True)
        if suggestion:
            self._echo(f"\n{suggestion}", err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._echo("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._echo(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._echo(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._echo(f"[DEBUG] {message}", err=True)


def _tail(text: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    parts = text.rstrip("\n").splitlines()
    if len(parts) <= lines:
        return "\n".join(parts)
    return "\n".join([f"... ({len(parts) - lines} lines omitted)", *parts[-lines:]])


def _indent(text: str) -> str:
    return "\n".join(f"    {line}" for line in text.rstrip("\n").splitlines())


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Optional[Console]) -> None:
    """Set (or reset, with None) the global console instance."""
    global _console
    _console = console
