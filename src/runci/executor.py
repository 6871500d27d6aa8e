# executor.py
from __future__ import annotations

import os
import signal
import subprocess
import time
from typing import Optional

from .actions import resolve_action
from .cancel import CancelToken
from .model import Environment, Step, StepKind, StepResult
from .settings import OutputSettings

# exit code a shell uses for "command not found"
EXIT_NOT_FOUND = 127

TOOL_HINTS = {
    "cargo": "Install the Rust toolchain (https://rustup.rs) or fix PATH.",
    "rustfmt": "Install rustfmt: rustup component add rustfmt",
    "clippy": "Install clippy: rustup component add clippy",
    "git": "Install Git or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "python3": "Install Python 3 or fix PATH (python3).",
}


def hint_for(step: Step, result: StepResult) -> Optional[str]:
    """Installation hint when a step failed because its tool is missing."""
    if result.exit_code != EXIT_NOT_FOUND or step.run is None:
        return None
    for tool, hint in TOOL_HINTS.items():
        if tool in step.run.split():
            return hint
    return None


class StepExecutor:
    """
    Runs a single step to completion inside a job's Environment.

    Stateless between invocations; the output settings are fixed at
    construction so concurrently running jobs all see the same values.
    """

    def __init__(self, output: Optional[OutputSettings] = None, *, poll_interval: float = 0.05):
        self.output = output or OutputSettings()
        self.poll_interval = poll_interval

    def run(
        self,
        step: Step,
        env: Environment,
        cancel: Optional[CancelToken] = None,
        timeout: Optional[float] = None,
    ) -> StepResult:
        """
        Execute `step` and block until it exits, times out or is cancelled.

        `timeout` defaults to the step's own timeout. Action failures raise
        EnvironmentSetupError; command failures are returned, not raised.
        """
        if step.kind is StepKind.ACTION:
            return self._run_action(step, env)
        return self._run_command(step, env, cancel, timeout if timeout is not None else step.timeout)

    # ------------------------------------------------------------------

    def _run_action(self, step: Step, env: Environment) -> StepResult:
        handler = resolve_action(step)
        start = time.monotonic()
        log = handler(step, env)
        return StepResult(
            name=step.name,
            exit_code=0,
            output=log,
            duration=time.monotonic() - start,
        )

    def _run_command(
        self,
        step: Step,
        env: Environment,
        cancel: Optional[CancelToken],
        timeout: Optional[float],
    ) -> StepResult:
        cwd = (env.workdir / step.cwd) if step.cwd else env.workdir
        if not cwd.is_dir():
            return StepResult(
                name=step.name,
                exit_code=EXIT_NOT_FOUND,
                output=f"working directory not found: {cwd}",
            )

        proc_env = dict(env.vars)
        proc_env.update(self.output.step_env())
        proc_env.update({k: str(v) for k, v in step.env.items()})

        start = time.monotonic()
        deadline = start + timeout if timeout is not None else None

        proc = subprocess.Popen(
            step.run,
            shell=True,
            cwd=str(cwd),
            env=proc_env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            start_new_session=True,  # own process group, see _kill()
        )

        timed_out = False
        cancelled = False
        while True:
            wait = self.poll_interval
            if deadline is not None:
                wait = max(0.0, min(wait, deadline - time.monotonic()))
            try:
                output, _ = proc.communicate(timeout=wait)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    cancelled = True
                elif deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                else:
                    continue
            _kill(proc)
            output = _drain(proc)
            break

        return StepResult(
            name=step.name,
            exit_code=None if (timed_out or cancelled) else proc.returncode,
            output=output or "",
            timed_out=timed_out,
            cancelled=cancelled,
            duration=time.monotonic() - start,
        )


def _kill(proc: subprocess.Popen) -> None:
    """Kill the step's whole process tree, not only the shell."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        # already exited
        pass


def _drain(proc: subprocess.Popen) -> str:
    try:
        output, _ = proc.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
        output, _ = proc.communicate()
    return output or ""
