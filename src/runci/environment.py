# environment.py
from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional

from .errors import EnvironmentSetupError
from .model import Environment, Event, Job

# Variables inherited from the host. Everything else a step sees comes from
# the workflow/job declaration or the RUNCI_* context below.
PASSTHROUGH_VARS = (
    "PATH",
    "HOME",
    "USER",
    "LANG",
    "LC_ALL",
    "TERM",
    "TMPDIR",
    "SHELL",
    "CARGO_HOME",
    "RUSTUP_HOME",
)


def build_env(
    job: Job,
    event: Event,
    workdir: Path,
    *,
    workflow_env: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Compose a clean process environment for one job.

    Precedence (last wins): host passthrough < workflow env < job env < RUNCI_*
    context.
    """
    host = os.environ if base is None else base
    env = {k: host[k] for k in PASSTHROUGH_VARS if k in host}
    env.update({k: str(v) for k, v in (workflow_env or {}).items()})
    env.update({k: str(v) for k, v in job.env.items()})
    env.update(
        {
            "CI": "true",
            "RUNCI": "true",
            "RUNCI_JOB": job.name,
            "RUNCI_RUNS_ON": job.runs_on,
            "RUNCI_EVENT_NAME": event.kind,
            "RUNCI_BASE_REF": event.target_branch,
            "RUNCI_SHA": event.sha or "",
            "RUNCI_WORKSPACE": str(workdir),
        }
    )
    return env


@contextmanager
def provision(
    job: Job,
    event: Event,
    *,
    root: Optional[str | Path] = None,
    workflow_env: Optional[Mapping[str, str]] = None,
) -> Iterator[Environment]:
    """
    Acquire a fresh workspace for `job` and tear it down on every exit path.

    One Environment per job; nothing in it is shared with other jobs.
    """
    try:
        if root is not None:
            Path(root).mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=f"runci-{_safe(job.name)}-", dir=root))
    except OSError as e:
        raise EnvironmentSetupError(
            message=f"could not create workspace: {e}",
            job=job.name,
        ) from e

    try:
        yield Environment(
            job=job.name,
            workdir=workdir,
            vars=build_env(job, event, workdir, workflow_env=workflow_env),
            event=event,
        )
    finally:
        shutil.rmtree(workdir, ignore_errors=True)


def _safe(name: str) -> str:
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in name)
