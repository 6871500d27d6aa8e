# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

from .errors import ConfigurationError


PULL_REQUEST = "pull_request"
PUSH = "push"


# ---------------------------------------------------------------------
# Trigger side
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    """
    An incoming trigger, e.g. a pull request targeting a branch.

    `source` is a local snapshot of the tree to build, `repo_url` a git
    remote. Either is only needed when a job checks out the source.
    """
    kind: str
    target_branch: str
    sha: Optional[str] = None
    source: Optional[str] = None
    repo_url: Optional[str] = None
    number: Optional[int] = None


@dataclass(frozen=True)
class Condition:
    """Accepted event kinds + branch patterns (exact or glob)."""
    events: frozenset = frozenset({PULL_REQUEST})
    branches: Tuple[str, ...] = ()


# ---------------------------------------------------------------------
# Declaration side
# ---------------------------------------------------------------------

class StepKind(str, Enum):
    RUN = "run"
    ACTION = "action"


@dataclass(frozen=True)
class Step:
    """
    A single step inside a job.

    Exactly one of `run` (inline shell command) or `uses` (reference to a
    reusable action such as "actions/checkout@v3") is set.
    """
    name: str
    run: Optional[str] = None
    uses: Optional[str] = None
    with_args: Mapping[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError(message="step has no name")
        if (self.run is None) == (self.uses is None):
            raise ConfigurationError(
                message="step must define exactly one of 'run' or 'uses'",
                step=self.name,
            )
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(message="timeout must be positive", step=self.name)

    @property
    def kind(self) -> StepKind:
        return StepKind.ACTION if self.uses is not None else StepKind.RUN

    @property
    def action_name(self) -> Optional[str]:
        """'actions/checkout@v3' -> 'actions/checkout'"""
        if self.uses is None:
            return None
        return self.uses.split("@", 1)[0]

    def describe(self) -> str:
        return self.run if self.run is not None else f"uses: {self.uses}"


@dataclass(frozen=True)
class Job:
    """A CI job: ordered steps + execution environment + dependencies."""
    name: str
    steps: Tuple[Step, ...]
    runs_on: str = "ubuntu-latest"
    env: Mapping[str, str] = field(default_factory=dict)
    needs: Tuple[str, ...] = ()
    timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError(message="job has no name")
        if not self.steps:
            raise ConfigurationError(message="job must have at least one step", job=self.name)
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(message="timeout must be positive", job=self.name)


@dataclass(frozen=True)
class Workflow:
    """The full declaration: jobs plus the condition under which they run."""
    name: str
    on: Condition
    jobs: Tuple[Job, ...]
    env: Mapping[str, str] = field(default_factory=dict)

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.FAILURE, JobStatus.SKIPPED)


class FailureKind(str, Enum):
    STEP_FAILED = "step_failed"
    STEP_TIMED_OUT = "step_timed_out"
    JOB_TIMED_OUT = "job_timed_out"
    SETUP_FAILED = "setup_failed"
    CANCELLED = "cancelled"
    DEPENDENCY_FAILED = "dependency_failed"


@dataclass(frozen=True)
class StepResult:
    name: str
    exit_code: Optional[int]
    output: str = ""
    timed_out: bool = False
    cancelled: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled


@dataclass(frozen=True)
class JobResult:
    name: str
    status: JobStatus
    steps: Tuple[StepResult, ...] = ()
    failure: Optional[FailureKind] = None
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def failed_step(self) -> Optional[StepResult]:
        for s in self.steps:
            if not s.ok:
                return s
        return None


@dataclass(frozen=True)
class RunResult:
    workflow: str
    event: Event
    jobs: Tuple[JobResult, ...]
    run_id: str = ""

    @property
    def status(self) -> JobStatus:
        if any(j.status is JobStatus.FAILURE for j in self.jobs):
            return JobStatus.FAILURE
        return JobStatus.SUCCESS

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.SUCCESS

    def job(self, name: str) -> JobResult:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    def statuses(self) -> Dict[str, str]:
        return {j.name: j.status.value for j in self.jobs}


@dataclass(frozen=True)
class Environment:
    """
    Isolated execution environment owned by exactly one job.

    `vars` is the complete process environment steps run with.
    """
    job: str
    workdir: Path
    vars: Mapping[str, str]
    event: Event
