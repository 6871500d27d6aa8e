"""Tests for built-in actions (checkout)."""

import shutil
import subprocess

import pytest

from runci.actions import resolve_action
from runci.dsl import checkout, job, sh, uses
from runci.environment import provision
from runci.errors import ConfigurationError, EnvironmentSetupError
from runci.model import PULL_REQUEST, Event

JOB = job("test", checkout(), sh("test", "true"))

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(cwd, *args):
    subprocess.run(
        ["git", "-c", "user.name=runci", "-c", "user.email=runci@example.com", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
    )


def test_resolve_action_ignores_version():
    assert resolve_action(uses("a", "actions/checkout@v3")) is resolve_action(uses("b", "actions/checkout@v4"))


def test_resolve_unknown_action():
    with pytest.raises(ConfigurationError, match="unknown action"):
        resolve_action(uses("x", "someone/else@v1"))


def test_checkout_copies_plain_source(source_dir):
    event = Event(PULL_REQUEST, "main", source=str(source_dir))
    with provision(JOB, event) as env:
        log = resolve_action(checkout())(checkout(), env)
        assert (env.workdir / "Cargo.toml").read_text() == (source_dir / "Cargo.toml").read_text()
        assert (env.workdir / "src" / "main.rs").exists()
        assert "copied" in log

        # the snapshot is never touched through the workspace
        (env.workdir / "Cargo.toml").write_text("changed")
    assert (source_dir / "Cargo.toml").read_text().startswith("[package]")


def test_checkout_into_subdirectory(source_dir):
    event = Event(PULL_REQUEST, "main", source=str(source_dir))
    with provision(JOB, event) as env:
        resolve_action(checkout())(checkout(path="repo"), env)
        assert (env.workdir / "repo" / "Cargo.toml").exists()


def test_checkout_path_cannot_escape_workspace(source_dir):
    event = Event(PULL_REQUEST, "main", source=str(source_dir))
    with provision(JOB, event) as env:
        with pytest.raises(EnvironmentSetupError, match="escapes"):
            resolve_action(checkout())(checkout(path="../elsewhere"), env)


def test_checkout_missing_source_is_setup_error(tmp_path):
    event = Event(PULL_REQUEST, "main", source=str(tmp_path / "gone"))
    with provision(JOB, event) as env:
        with pytest.raises(EnvironmentSetupError, match="not found"):
            resolve_action(checkout())(checkout(), env)


def test_checkout_without_source_is_setup_error():
    with provision(JOB, Event(PULL_REQUEST, "main")) as env:
        with pytest.raises(EnvironmentSetupError):
            resolve_action(checkout())(checkout(), env)


@needs_git
def test_checkout_git_source_at_sha(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q")
    (repo / "VERSION").write_text("1\n")
    _git(repo, "add", "VERSION")
    _git(repo, "commit", "-q", "-m", "one")
    first = subprocess.run(["git", "rev-parse", "HEAD"], cwd=repo, capture_output=True, text=True, check=True).stdout.strip()
    (repo / "VERSION").write_text("2\n")
    _git(repo, "commit", "-q", "-am", "two")

    event = Event(PULL_REQUEST, "main", sha=first, source=str(repo))
    with provision(JOB, event) as env:
        resolve_action(checkout())(checkout(), env)
        assert (env.workdir / "VERSION").read_text() == "1\n"
        assert (env.workdir / ".git").exists()


@needs_git
def test_checkout_unknown_repo_url_is_setup_error(tmp_path):
    event = Event(PULL_REQUEST, "main", repo_url=str(tmp_path / "no-such-repo.git"))
    with provision(JOB, event) as env:
        with pytest.raises(EnvironmentSetupError, match="git clone failed"):
            resolve_action(checkout())(checkout(), env)
