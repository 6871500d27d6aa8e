# step_workflows/lint.py
from __future__ import annotations

import shlex
from typing import List

from ..model import Step

# How each known linter is told to treat warnings as errors.
DENY_WARNINGS = {
    "cargo clippy": "-- -D warnings",
    "eslint": "--max-warnings=0",
}


# ---------------------------------------------------------------------
# Format check
# ---------------------------------------------------------------------

def format_check_step(
    name: str = "Format",
    formatter: str = "cargo fmt",
    *,
    cwd: str | None = None,
    timeout: float | None = None,
) -> Step:
    """
    Run the formatter in place, then fail if it changed anything.

    The workspace is a git checkout, so any rewrite shows up as a diff.
    """
    return Step(
        name=name,
        run=f"{formatter} && git diff --exit-code",
        cwd=cwd,
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Lint
# ---------------------------------------------------------------------

def lint_step(
    name: str,
    tool: str,
    args: str | None = None,
    *,
    deny_warnings: bool = True,
    files: List[str] | None = None,
    cwd: str | None = None,
    timeout: float | None = None,
) -> Step:
    """
    Run a static analyzer. With `deny_warnings` (default) warnings fail
    the step, e.g.

        lint_step("Lint with Clippy", "cargo clippy", "--all-targets --all-features")
        -> cargo clippy --all-targets --all-features -- -D warnings
    """
    parts = [tool]
    if args:
        parts.append(args)
    if files:
        parts.extend(shlex.quote(f) for f in files)
    if deny_warnings and tool in DENY_WARNINGS:
        parts.append(DENY_WARNINGS[tool])
    return Step(name=name, run=" ".join(parts), cwd=cwd, timeout=timeout)
