# git.py
# Small, focused wrapper around the Git CLI.
# All Git interactions go through here so the rest of the codebase
# never calls subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError on a non-zero exit, with stderr
    captured so callers can surface it.
    """
    out = subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        capture_output=True,
        check=True,
    )
    return out.stdout.strip()


def is_repo(path: str | Path) -> bool:
    """True if `path` is inside a git work tree."""
    try:
        return _git(["rev-parse", "--is-inside-work-tree"], cwd=path) == "true"
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        return False


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of HEAD."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """
    Current branch name, e.g. "main".

    Falls back to the short SHA on a detached HEAD.
    """
    ref = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if ref == "HEAD":
        return _git(["rev-parse", "--short", "HEAD"], cwd=cwd)
    return ref


def clone(url: str, dest: str | Path) -> None:
    """Clone `url` into `dest` (which must not exist or be empty)."""
    _git(["clone", "--quiet", url, str(dest)])


def checkout(ref: str, cwd: str | Path) -> None:
    """Check out `ref` (branch, tag or SHA) in the repository at `cwd`."""
    _git(["checkout", "--quiet", ref], cwd=cwd)
