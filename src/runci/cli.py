# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from runci.engine import WorkflowEngine
from runci.errors import ConfigurationError
from runci.git_facts.git import current_branch, head_sha
from runci.loader import load_workflow
from runci.model import PULL_REQUEST, Event
from runci.settings import Settings
from runci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "runci_workflow.py"
WORKFLOW_PATTERNS = ("*_workflow.py", "*_workflow.json")

EXIT_FAILURE = 1
EXIT_CONFIG = 2


def find_workflow_files(root: Path = Path(".")) -> list[Path]:
    """`runci_workflow.py` wins outright; otherwise every *_workflow.{py,json} in `root`."""
    preferred = root / DEFAULT_WORKFLOW
    if preferred.is_file():
        return [preferred]
    found = {p for pattern in WORKFLOW_PATTERNS for p in root.glob(pattern)}
    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """Resolve --workflow (or auto-discovery) to a single file; exits 2 otherwise."""
    console = get_console()
    usage = "  runci run --workflow ci_workflow.py"

    if workflow_arg:
        path = Path(workflow_arg)
        if not path.exists() and not path.suffix:
            path = path.with_suffix(".py")
        if path.is_file():
            return path
        console.print_error(
            "Workflow file not found",
            f"{workflow_arg} does not exist.",
            suggestion=f"Pass an existing .py or .json workflow:\n{usage}",
        )
        sys.exit(EXIT_CONFIG)

    candidates = find_workflow_files()
    if len(candidates) == 1:
        return candidates[0]

    if not candidates:
        console.print_error(
            "No workflow file found",
            f"Nothing matched {DEFAULT_WORKFLOW} or {', '.join(WORKFLOW_PATTERNS)} here.",
            suggestion=f"Create {DEFAULT_WORKFLOW}, or point at one:\n{usage}",
        )
    else:
        console.print_error(
            "Multiple workflow files found",
            "Pick one with --workflow:",
            details=[str(p) for p in candidates],
        )
    sys.exit(EXIT_CONFIG)


def _load(workflow_arg: str | None):
    console = get_console()
    workflow_path = discover_workflow(workflow_arg)
    try:
        return load_workflow(workflow_path)
    except ConfigurationError as e:
        console.print_error(
            "Invalid workflow",
            f"Could not load workflow from {workflow_path}",
            details=str(e).splitlines(),
        )
        sys.exit(EXIT_CONFIG)


def _settings() -> Settings:
    try:
        return Settings.from_env()
    except ConfigurationError as e:
        get_console().print_error("Invalid configuration", str(e))
        sys.exit(EXIT_CONFIG)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """runci: run CI workflows locally or as a self-hosted runner."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--event", "event_kind", default=PULL_REQUEST, show_default=True, help="Event kind to simulate")
@click.option("--branch", default=None, help="Target branch of the event (defaults to current git branch)")
@click.option("--sha", default=None, help="Commit to build (defaults to HEAD if --source is a git repo)")
@click.option("--source", default=".", show_default=True, help="Source snapshot to check out into each job")
@click.option("--repo-url", default=None, help="Clone this git URL instead of copying --source")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Max jobs running at once")
@click.option("--step-timeout", default=None, type=click.FloatRange(min=0, min_open=True), help="Default per-step timeout (s)")
@click.option("--job-timeout", default=None, type=click.FloatRange(min=0, min_open=True), help="Default per-job timeout (s)")
@click.option("--color", type=click.Choice(["always", "never", "auto"]), default=None, help="Colour for console and steps")
@click.option("--verbose", is_flag=True, default=False, help="Show output of passing steps too")
@click.pass_context
def run(ctx, workflow, event_kind, branch, sha, source, repo_url, workers, step_timeout, job_timeout, color, verbose):
    """Run a workflow for one event."""
    settings = _settings().with_overrides(
        color=color,
        verbose=verbose,
        max_workers=workers,
        step_timeout=step_timeout,
        job_timeout=job_timeout,
    )
    console = Console(debug=ctx.obj.get("debug", False), output=settings.output)
    set_console(console)

    wf = _load(workflow)

    if branch is None:
        try:
            branch = current_branch(source)
        except (subprocess.CalledProcessError, OSError):
            console.print_error(
                "Could not determine target branch",
                "No --branch specified and the source is not a git repository.",
                suggestion="Specify the branch explicitly:\n  runci run --branch main",
            )
            sys.exit(EXIT_CONFIG)
    if sha is None and repo_url is None:
        try:
            sha = head_sha(source)
        except (subprocess.CalledProcessError, OSError):
            console.print_debug("source is not a git repository; copying it as-is")

    event = Event(
        kind=event_kind,
        target_branch=branch,
        sha=sha,
        source=None if repo_url else str(Path(source).resolve()),
        repo_url=repo_url,
    )

    try:
        result = WorkflowEngine(settings=settings, console=console).trigger(wf, event)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(EXIT_FAILURE)

    if result is None:
        return
    if not result.ok:
        sys.exit(EXIT_FAILURE)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.pass_context
def check(ctx, workflow):
    """Validate a workflow and print its jobs."""
    wf = _load(workflow)
    get_console().print_plan(wf)
    get_console().print_info("\nworkflow OK")


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--max-history", default=100, show_default=True, type=click.IntRange(min=0), help="Finished runs kept for status queries")
@click.pass_context
def serve(ctx, workflow, host, port, max_history):
    """Accept events over HTTP and run the workflow for admitted ones."""
    import uvicorn

    from runci.server import create_app

    settings = _settings()
    console = Console(debug=ctx.obj.get("debug", False), output=settings.output)
    set_console(console)
    wf = _load(workflow)
    uvicorn.run(create_app(wf, settings=settings, console=console, max_history=max_history), host=host, port=port)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
