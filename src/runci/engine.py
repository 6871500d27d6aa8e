# engine.py
from __future__ import annotations

import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional

from .cancel import CancelToken
from .dag import build_dag
from .executor import StepExecutor
from .loader import validate_workflow
from .model import Event, FailureKind, Job, JobResult, JobStatus, RunResult, Workflow
from .runner import JobRunner, StatusCallback
from .settings import Settings
from .trigger import admit
from .ui.console import Console, get_console


class WorkflowEngine:
    """
    Runs every eligible job of a workflow for one event and aggregates a
    RunResult.

    Jobs without unmet `needs` run concurrently on a thread pool. Results
    come back only through futures; jobs share no mutable state.
    """

    def __init__(
        self,
        executor: Optional[StepExecutor] = None,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
    ):
        self.settings = settings or Settings()
        self.console = console or get_console()
        self.executor = executor or StepExecutor(self.settings.output)
        self.runner = JobRunner(self.executor, self.settings, self.console)

    def trigger(
        self,
        workflow: Workflow,
        event: Event,
        cancel: Optional[CancelToken] = None,
        on_status: Optional[StatusCallback] = None,
        run_id: Optional[str] = None,
    ) -> Optional[RunResult]:
        """Gate, then run. Returns None when the event is not admitted."""
        if not admit(event, workflow.on):
            self.console.print_not_admitted(workflow, event)
            return None
        return self.run(workflow, event, cancel=cancel, on_status=on_status, run_id=run_id)

    def run(
        self,
        workflow: Workflow,
        event: Event,
        cancel: Optional[CancelToken] = None,
        on_status: Optional[StatusCallback] = None,
        run_id: Optional[str] = None,
    ) -> RunResult:
        """
        Run an admitted event. The workflow is validated first, so a
        ConfigurationError is raised before any job starts.
        """
        validate_workflow(workflow)
        by_name = {j.name: j for j in workflow.jobs}
        adj, indeg = build_dag(workflow.jobs)
        indeg = dict(indeg)
        results: Dict[str, JobResult] = {}
        lock = threading.Lock()

        def report(name: str, status: JobStatus) -> None:
            if on_status is not None:
                with lock:
                    on_status(name, status)

        for j in workflow.jobs:
            report(j.name, JobStatus.PENDING)

        self.console.print_run_started(workflow.name, event, len(workflow.jobs))

        max_workers = self.settings.max_workers or max(1, len(workflow.jobs))
        ready: List[str] = [j.name for j in workflow.jobs if indeg[j.name] == 0]
        in_flight: Dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="runci-job") as pool:
            while ready or in_flight:
                # schedule everything currently ready
                while ready:
                    name = ready.pop(0)
                    fut = pool.submit(
                        self.runner.execute,
                        by_name[name],
                        event,
                        cancel,
                        workflow.env,
                        report,
                    )
                    in_flight[fut] = name

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    name = in_flight.pop(fut)
                    try:
                        results[name] = fut.result()
                    except Exception as e:
                        results[name] = JobResult(name=name, status=JobStatus.FAILURE, error=f"{type(e).__name__}: {e}")
                        self.console.print_job_finished(results[name])
                        report(name, JobStatus.FAILURE)

                    for nxt in sorted(adj[name]):
                        indeg[nxt] -= 1
                        if indeg[nxt] != 0:
                            continue
                        failed = [d for d in by_name[nxt].needs if results[d].status is not JobStatus.SUCCESS]
                        if failed:
                            self._skip(by_name[nxt], failed, results, adj, indeg, by_name, report)
                        else:
                            ready.append(nxt)

        ordered = tuple(results[j.name] for j in workflow.jobs)
        run = RunResult(
            workflow=workflow.name,
            event=event,
            jobs=ordered,
            run_id=run_id or uuid.uuid4().hex,
        )
        self.console.print_results(run)
        return run

    def _skip(
        self,
        job: Job,
        failed: List[str],
        results: Dict[str, JobResult],
        adj,
        indeg,
        by_name: Dict[str, Job],
        report: StatusCallback,
    ) -> None:
        """Mark `job` skipped and cascade to dependents that become decidable."""
        results[job.name] = JobResult(
            name=job.name,
            status=JobStatus.SKIPPED,
            failure=FailureKind.DEPENDENCY_FAILED,
            error=f"needs did not succeed: {', '.join(failed)}",
        )
        self.console.print_job_finished(results[job.name])
        report(job.name, JobStatus.SKIPPED)
        for nxt in sorted(adj[job.name]):
            indeg[nxt] -= 1
            if indeg[nxt] == 0:
                # job.name is not SUCCESS, so nxt is skipped as well
                bad = [d for d in by_name[nxt].needs if results[d].status is not JobStatus.SUCCESS]
                self._skip(by_name[nxt], bad, results, adj, indeg, by_name, report)


def run_workflow(
    workflow: Workflow,
    event: Event,
    *,
    settings: Optional[Settings] = None,
    console: Optional[Console] = None,
    cancel: Optional[CancelToken] = None,
) -> Optional[RunResult]:
    """Convenience: gate + run with a fresh engine."""
    return WorkflowEngine(settings=settings, console=console).trigger(workflow, event, cancel=cancel)
