"""Pytest configuration for runci tests."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from runci.actions import ACTIONS
from runci.dsl import checkout, job, on_pull_request, sh, workflow
from runci.engine import WorkflowEngine
from runci.model import PULL_REQUEST, Event
from runci.settings import ColorMode, OutputSettings, Settings
from runci.ui.console import Console, set_console


@pytest.fixture(autouse=True)
def reset_state(monkeypatch: pytest.MonkeyPatch):
    """Reset the global console and keep host colour settings out of tests."""
    for var in ("RUNCI_TERM_COLOR", "RUNCI_VERBOSE", "RUNCI_MAX_WORKERS", "RUNCI_STEP_TIMEOUT",
                "RUNCI_JOB_TIMEOUT", "RUNCI_WORKSPACE_ROOT", "FORCE_COLOR", "NO_COLOR"):
        monkeypatch.delenv(var, raising=False)
    registered = dict(ACTIONS)
    set_console(None)

    yield

    set_console(None)
    ACTIONS.clear()
    ACTIONS.update(registered)


@pytest.fixture
def settings() -> Settings:
    return Settings(output=OutputSettings(color=ColorMode.NEVER))


@pytest.fixture
def console(settings: Settings) -> Console:
    return Console(output=settings.output)


@pytest.fixture
def engine(settings: Settings, console: Console) -> WorkflowEngine:
    return WorkflowEngine(settings=settings, console=console)


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """A plain (non-git) source snapshot."""
    src = tmp_path / "source"
    src.mkdir()
    (src / "Cargo.toml").write_text("[package]\nname = \"demo\"\n")
    (src / "src").mkdir()
    (src / "src" / "main.rs").write_text("fn main() {}\n")
    return src


@pytest.fixture
def marks(tmp_path: Path) -> Path:
    """Directory outside every job workspace for steps to leave evidence in."""
    d = tmp_path / "marks"
    d.mkdir()
    return d


@pytest.fixture
def pr_event(source_dir: Path) -> Event:
    return Event(kind=PULL_REQUEST, target_branch="main", sha=None, source=str(source_dir), number=1)


@pytest.fixture
def make_workflow(marks: Path):
    """
    Build the lint/test workflow with substitutable commands.

    Every step also appends "<job>:<step>" to marks/<job>.log so tests can
    see which steps actually ran.
    """

    def _make(fmt: str = "true", lint: str = "true", test: str = "true", test_checkout=None):
        def logged(job_name: str, step_name: str, cmd: str):
            log = marks / f"{job_name}.log"
            return sh(step_name, f"echo '{step_name}' >> '{log}' && {cmd}")

        return workflow(
            "Test and Lint",
            job(
                "lint",
                checkout(),
                logged("lint", "Format", fmt),
                logged("lint", "Lint", lint),
            ),
            job(
                "test",
                test_checkout or checkout(),
                logged("test", "test", test),
            ),
            on=on_pull_request("main"),
            env={"CARGO_TERM_COLOR": "always"},
        )

    return _make


def read_log(marks: Path, name: str) -> list[str]:
    path = marks / f"{name}.log"
    if not path.exists():
        return []
    return path.read_text().split()


def wait_for(predicate, timeout: float = 10.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
