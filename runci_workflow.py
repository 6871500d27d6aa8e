# runci_workflow.py
# Test and Lint: runs on every pull request targeting main.
from __future__ import annotations

from runci.dsl import checkout, job, on_pull_request, workflow
from runci.step_workflows.lint import format_check_step, lint_step
from runci.step_workflows.test import test_step

WORKFLOW = workflow(
    "Test and Lint",
    job(
        "lint",
        checkout(),
        format_check_step("Format", "cargo fmt"),
        lint_step("Lint with Clippy", "cargo clippy", "--all-targets --all-features"),
    ),
    job(
        "test",
        checkout(),
        test_step("test", framework="cargo"),
    ),
    on=on_pull_request("main"),
    env={"CARGO_TERM_COLOR": "always"},
)
