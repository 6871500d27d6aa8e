# loader.py
from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Any, Dict, List, Mapping

from .actions import resolve_action
from .dag import build_dag, topo_levels
from .errors import ConfigurationError
from .model import Condition, Job, Step, StepKind, Workflow

# GitHub-style keys accepted in the mapping format
_STEP_KEYS = {"name", "run", "uses", "with", "working-directory", "env", "timeout-minutes", "timeout"}
_JOB_KEYS = {"runs-on", "env", "needs", "steps", "timeout-minutes", "timeout"}
_WORKFLOW_KEYS = {"name", "on", "env", "jobs"}


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------

def validate_workflow(wf: Workflow) -> Workflow:
    """
    Check the cross-object invariants a single Job/Step cannot check itself:
    at least one job, unique job names, resolvable `needs`, no cycles, and
    every `uses` reference known. Returns `wf` unchanged.
    """
    if not wf.on.events:
        raise ConfigurationError(message=f"workflow '{wf.name}' accepts no events")
    if not wf.jobs:
        raise ConfigurationError(message=f"workflow '{wf.name}' declares no jobs")

    adj, indeg = build_dag(wf.jobs)
    topo_levels(adj, indeg)

    for j in wf.jobs:
        for s in j.steps:
            if s.kind is StepKind.ACTION:
                try:
                    resolve_action(s)
                except ConfigurationError as e:
                    e.job, e.step = j.name, s.name
                    raise
    return wf


# ----------------------------------------------------------------------
# Mapping format
# ----------------------------------------------------------------------

def _require_mapping(value: Any, what: str, **ctx) -> Mapping:
    if not isinstance(value, Mapping):
        raise ConfigurationError(message=f"{what} must be a mapping, got {type(value).__name__}", **ctx)
    return value


def _str_map(value: Any, what: str, **ctx) -> Dict[str, str]:
    if value is None:
        return {}
    return {str(k): str(v) for k, v in _require_mapping(value, what, **ctx).items()}


def _timeout(data: Mapping, **ctx) -> float | None:
    if "timeout-minutes" in data:
        raw, scale = data["timeout-minutes"], 60.0
    elif "timeout" in data:
        raw, scale = data["timeout"], 1.0
    else:
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ConfigurationError(message=f"timeout must be a number, got {raw!r}", **ctx)
    return float(raw) * scale


def _unknown(data: Mapping, allowed: set, what: str, **ctx) -> None:
    extra = sorted(set(data) - allowed)
    if extra:
        raise ConfigurationError(message=f"unknown {what} keys: {extra}", **ctx)


def _parse_condition(raw: Any) -> Condition:
    """
    Accepts:
      "pull_request"
      ["pull_request", "push"]
      {"pull_request": {"branches": ["main"]}}
    """
    if isinstance(raw, str):
        return Condition(events=frozenset({raw}))
    if isinstance(raw, list):
        return Condition(events=frozenset(str(e) for e in raw))

    triggers = _require_mapping(raw, "'on'")
    events = set()
    branches: List[str] = []
    for kind, filters in triggers.items():
        events.add(str(kind))
        if filters is None:
            continue
        filters = _require_mapping(filters, f"'on.{kind}'")
        patterns = filters.get("branches", [])
        if isinstance(patterns, str):
            patterns = [patterns]
        if not isinstance(patterns, list):
            raise ConfigurationError(message=f"'on.{kind}.branches' must be a list")
        branches.extend(str(p) for p in patterns)
    return Condition(events=frozenset(events), branches=tuple(dict.fromkeys(branches)))


def _parse_step(raw: Any, job_name: str, index: int) -> Step:
    data = _require_mapping(raw, f"step #{index + 1}", job=job_name)
    name = str(data.get("name") or data.get("uses") or data.get("run") or f"step-{index + 1}")
    _unknown(data, _STEP_KEYS, "step", job=job_name, step=name)
    for key in ("run", "uses", "working-directory"):
        if key in data and not isinstance(data[key], str):
            raise ConfigurationError(message=f"'{key}' must be a string", job=job_name, step=name)
    return Step(
        name=name,
        run=data.get("run"),
        uses=data.get("uses"),
        with_args=_str_map(data.get("with"), "'with'", job=job_name, step=name),
        cwd=data.get("working-directory"),
        env=_str_map(data.get("env"), "'env'", job=job_name, step=name),
        timeout=_timeout(data, job=job_name, step=name),
    )


def _parse_job(name: str, raw: Any) -> Job:
    data = _require_mapping(raw, "job", job=name)
    _unknown(data, _JOB_KEYS, "job", job=name)
    steps = data.get("steps")
    if not isinstance(steps, list):
        raise ConfigurationError(message="'steps' must be a list", job=name)
    needs = data.get("needs", [])
    if isinstance(needs, str):
        needs = [needs]
    try:
        parsed = tuple(_parse_step(s, name, i) for i, s in enumerate(steps))
    except ConfigurationError as e:
        e.job = e.job or name
        raise
    return Job(
        name=name,
        steps=parsed,
        runs_on=str(data.get("runs-on", "ubuntu-latest")),
        env=_str_map(data.get("env"), "'env'", job=name),
        needs=tuple(str(n) for n in needs),
        timeout=_timeout(data, job=name),
    )


def from_mapping(data: Any) -> Workflow:
    """
    Parse a workflow declared as plain data (e.g. loaded from JSON).

    {
      "name": "Test and Lint",
      "on": {"pull_request": {"branches": ["main"]}},
      "env": {"CARGO_TERM_COLOR": "always"},
      "jobs": {
        "test": {"runs-on": "ubuntu-latest",
                 "steps": [{"name": "Checkout", "uses": "actions/checkout@v3"},
                           {"name": "test", "run": "cargo test"}]}
      }
    }
    """
    data = _require_mapping(data, "workflow")
    _unknown(data, _WORKFLOW_KEYS, "workflow")
    if "on" not in data:
        raise ConfigurationError(message="workflow has no 'on' trigger")
    jobs = _require_mapping(data.get("jobs"), "'jobs'")
    wf = Workflow(
        name=str(data.get("name", "workflow")),
        on=_parse_condition(data["on"]),
        jobs=tuple(_parse_job(str(n), j) for n, j in jobs.items()),
        env=_str_map(data.get("env"), "'env'"),
    )
    return validate_workflow(wf)


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a file.

    `.py` files must define either:
      - workflow() -> Workflow
      - WORKFLOW = Workflow(...)
    `.json` files hold the mapping format (see from_mapping).
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigurationError(message=f"workflow file not found: {wf_path}")

    if wf_path.suffix == ".json":
        try:
            data = json.loads(wf_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(message=f"invalid JSON in {wf_path.name}: {e}") from e
        return from_mapping(data)

    if wf_path.suffix != ".py":
        raise ConfigurationError(message=f"workflow must be a .py or .json file, got: {wf_path.name}")

    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=f"runci_workflow_{wf_path.stem}")
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            message=f"could not execute {wf_path.name}: {type(e).__name__}: {e}"
        ) from e

    wf = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]) and not _is_dsl_helper(globals_dict["workflow"]):
        wf = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        wf = globals_dict["WORKFLOW"]

    if isinstance(wf, Mapping):
        return from_mapping(wf)
    if not isinstance(wf, Workflow):
        raise ConfigurationError(
            message="workflow file must define workflow() -> Workflow or WORKFLOW = Workflow(...)",
            details={"file": str(wf_path)},
        )
    return validate_workflow(wf)


def _is_dsl_helper(fn) -> bool:
    # `from runci.dsl import workflow` puts the helper itself in the namespace
    return getattr(fn, "__module__", None) == "runci.dsl"
