# src/runci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional

from .loader import validate_workflow
from .model import PULL_REQUEST, Condition, Job, Step, Workflow


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    timeout: float | None = None,
) -> Step:
    """Create an inline shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=dict(env or {}), timeout=timeout)


def uses(name: str, ref: str, *, timeout: float | None = None, **with_args: str) -> Step:
    """Create a step that runs a reusable action, e.g. uses("Checkout", "actions/checkout@v3")."""
    return Step(name=name, uses=ref, with_args={k: str(v) for k, v in with_args.items()}, timeout=timeout)


def checkout(name: str = "Checkout", ref: str = "actions/checkout@v3", **with_args: str) -> Step:
    """Materialize the event's source into the job workspace."""
    return uses(name, ref, **with_args)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,
    steps_list: Optional[List[Step]] = None,
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    runs_on: str = "ubuntu-latest",
    timeout: float | None = None,
    cwd: str | None = None,
) -> Job:
    """
    Functional job helper; steps may be passed positionally, as `steps_list`,
    or both (list first). `cwd` fills in for run steps that set none.
    """
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(steps_list)
    steps_final.extend(steps)

    if cwd is not None:
        steps_final = [
            s if s.cwd is not None or s.run is None else replace(s, cwd=cwd)
            for s in steps_final
        ]

    return Job(
        name=name,
        steps=tuple(steps_final),
        runs_on=runs_on,
        env={k: str(v) for k, v in (env or {}).items()},
        needs=tuple(needs or ()),
        timeout=timeout,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._runs_on = "ubuntu-latest"
        self._timeout: float | None = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def runs_on(self, image: str):
        self._runs_on = image
        return self

    def checkout(self, name: str = "Checkout"):
        self._steps.append(checkout(name))
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, timeout: float | None = None):
        self._steps.append(sh(name, run, cwd=cwd, timeout=timeout))
        return self

    def use_action(self, name: str, ref: str, **with_args: str):
        self._steps.append(uses(name, ref, **with_args))
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_timeout(self, seconds: float):
        self._timeout = seconds
        return self

    def build(self) -> Job:
        return job(
            self.name,
            steps_list=self._steps,
            needs=self._needs,
            env=self._env,
            runs_on=self._runs_on,
            timeout=self._timeout,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').checkout().define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Triggers + workflow
# ---------------------------------------------------------------------

def on_pull_request(*branches: str) -> Condition:
    """Activate on pull requests targeting any of `branches` (all if none given)."""
    return Condition(events=frozenset({PULL_REQUEST}), branches=tuple(branches))



def workflow(
    name: str,
    *jobs: Job,
    on: Condition | None = None,
    env: Optional[Dict[str, str]] = None,
) -> Workflow:
    """
    Workflow definition helper.

        from runci.dsl import workflow, job, sh, checkout, on_pull_request

        WORKFLOW = workflow(
            "Test and Lint",
            job("test", checkout(), sh("test", "cargo test")),
            on=on_pull_request("main"),
        )
    """
    wf = Workflow(
        name=name,
        on=on if on is not None else on_pull_request(),
        jobs=tuple(jobs),
        env={k: str(v) for k, v in (env or {}).items()},
    )
    return validate_workflow(wf)
