# server.py
from __future__ import annotations

import threading
import uuid
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .cancel import CancelToken
from .engine import WorkflowEngine
from .model import Event, JobStatus, RunResult, Workflow
from .settings import Settings
from .trigger import admit
from .ui.console import Console, get_console

# -------------------- Schemas --------------------

class EventIn(BaseModel):
    kind: str
    target_branch: str
    sha: Optional[str] = None
    repo_url: Optional[str] = None
    source: Optional[str] = None
    number: Optional[int] = None

    def to_event(self) -> Event:
        return Event(
            kind=self.kind,
            target_branch=self.target_branch,
            sha=self.sha,
            repo_url=self.repo_url,
            source=self.source,
            number=self.number,
        )


class EventAccepted(BaseModel):
    admitted: bool
    run_id: Optional[str] = None
    superseded: Optional[str] = None


class StepOut(BaseModel):
    name: str
    exit_code: Optional[int]
    timed_out: bool
    cancelled: bool
    output: str


class JobOut(BaseModel):
    name: str
    status: str
    failure: Optional[str] = None
    error: Optional[str] = None
    steps: list[StepOut] = Field(default_factory=list)


class RunOut(BaseModel):
    run_id: str
    workflow: str
    status: str  # running|success|failure
    cancelled: bool = False
    error: Optional[str] = None
    jobs: list[JobOut] = Field(default_factory=list)


# -------------------- Run registry --------------------

@dataclass
class RunRecord:
    run_id: str
    event: Event
    cancel: CancelToken
    future: Optional[Future] = None
    live: Dict[str, JobStatus] = field(default_factory=dict)

    def on_status(self, job: str, status: JobStatus) -> None:
        self.live[job] = status

    @property
    def done(self) -> bool:
        return self.future is not None and self.future.done()

    @property
    def result(self) -> Optional[RunResult]:
        """The finished run; re-raises whatever `engine.run` raised."""
        if not self.done:
            return None
        return self.future.result()


class RunRegistry:
    """
    In-memory runs keyed by id, plus the latest run per pull request.

    At most `max_finished` finished runs are kept; older ones are evicted
    first. Running runs are never evicted.
    """

    def __init__(self, max_finished: int = 100) -> None:
        self.max_finished = max_finished
        self._lock = threading.Lock()
        self._runs: "OrderedDict[str, RunRecord]" = OrderedDict()
        self._latest_by_pr: Dict[int, str] = {}

    def add(self, record: RunRecord) -> Optional[str]:
        """Register a run; returns the id of a run it supersedes, if any."""
        with self._lock:
            self._evict()
            self._runs[record.run_id] = record
            number = record.event.number
            if number is None:
                return None
            previous = self._latest_by_pr.get(number)
            self._latest_by_pr[number] = record.run_id
            return previous

    def get(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            return self._runs.get(run_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)

    def _evict(self) -> None:
        finished = [run_id for run_id, r in self._runs.items() if r.done]
        for run_id in finished[: max(0, len(finished) - self.max_finished)]:
            record = self._runs.pop(run_id)
            number = record.event.number
            if number is not None and self._latest_by_pr.get(number) == run_id:
                del self._latest_by_pr[number]


def _run_out(workflow: Workflow, record: RunRecord) -> RunOut:
    try:
        result = record.result
    except Exception as e:
        return RunOut(
            run_id=record.run_id,
            workflow=workflow.name,
            status=JobStatus.FAILURE.value,
            cancelled=record.cancel.is_set(),
            error=f"{type(e).__name__}: {e}",
        )
    if result is None:
        return RunOut(
            run_id=record.run_id,
            workflow=workflow.name,
            status="running",
            cancelled=record.cancel.is_set(),
            jobs=[JobOut(name=j.name, status=record.live.get(j.name, JobStatus.PENDING).value) for j in workflow.jobs],
        )
    return RunOut(
        run_id=record.run_id,
        workflow=result.workflow,
        status=result.status.value,
        cancelled=record.cancel.is_set(),
        jobs=[
            JobOut(
                name=j.name,
                status=j.status.value,
                failure=j.failure.value if j.failure else None,
                error=j.error,
                steps=[
                    StepOut(
                        name=s.name,
                        exit_code=s.exit_code,
                        timed_out=s.timed_out,
                        cancelled=s.cancelled,
                        output=s.output,
                    )
                    for s in j.steps
                ],
            )
            for j in result.jobs
        ],
    )


# -------------------- App --------------------

def create_app(
    workflow: Workflow,
    *,
    settings: Optional[Settings] = None,
    console: Optional[Console] = None,
    max_runs: int = 4,
    max_history: int = 100,
) -> FastAPI:
    """
    Event intake service for one workflow.

    Admitted events start a run in the background; a newer event for the
    same pull request cancels the run it supersedes.
    """
    settings = settings or Settings()
    engine = WorkflowEngine(settings=settings, console=console or get_console())
    registry = RunRegistry(max_finished=max_history)
    pool = ThreadPoolExecutor(max_workers=max_runs, thread_name_prefix="runci-run")

    app = FastAPI(title="runci event intake")
    app.state.registry = registry
    app.state.workflow = workflow

    @app.on_event("shutdown")
    def shutdown() -> None:
        pool.shutdown(wait=False, cancel_futures=True)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.post("/events", response_model=EventAccepted)
    def receive_event(body: EventIn):
        event = body.to_event()
        if not admit(event, workflow.on):
            return EventAccepted(admitted=False)

        record = RunRecord(run_id=uuid.uuid4().hex, event=event, cancel=CancelToken())
        superseded = registry.add(record)
        if superseded:
            old = registry.get(superseded)
            if old is not None:
                old.cancel.cancel("superseded")

        record.future = pool.submit(
            engine.run,
            workflow,
            event,
            cancel=record.cancel,
            on_status=record.on_status,
            run_id=record.run_id,
        )
        return EventAccepted(admitted=True, run_id=record.run_id, superseded=superseded)

    @app.get("/runs/{run_id}", response_model=RunOut)
    def get_run(run_id: str):
        record = registry.get(run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return _run_out(workflow, record)

    @app.post("/runs/{run_id}/cancel", response_model=RunOut)
    def cancel_run(run_id: str):
        record = registry.get(run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")
        if record.done:
            raise HTTPException(status_code=409, detail="Run already finished")
        record.cancel.cancel("cancelled by request")
        return _run_out(workflow, record)

    return app
