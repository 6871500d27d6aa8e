# runner.py
from __future__ import annotations

import time
from typing import Callable, List, Mapping, Optional

from .cancel import CancelToken
from .environment import provision
from .errors import EnvironmentSetupError
from .executor import StepExecutor, hint_for
from .model import Event, FailureKind, Job, JobResult, JobStatus, StepResult
from .settings import Settings
from .ui.console import Console, get_console

StatusCallback = Callable[[str, JobStatus], None]


class JobRunner:
    """
    Runs one job: fresh workspace, steps strictly in order, fail-fast.

    A runner owns nothing across calls; each `execute` provisions and tears
    down its own Environment, so one instance can serve several jobs at once.
    """

    def __init__(
        self,
        executor: Optional[StepExecutor] = None,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
    ):
        self.settings = settings or Settings()
        self.executor = executor or StepExecutor(self.settings.output)
        self.console = console or get_console()

    def execute(
        self,
        job: Job,
        event: Event,
        cancel: Optional[CancelToken] = None,
        workflow_env: Optional[Mapping[str, str]] = None,
        on_status: Optional[StatusCallback] = None,
    ) -> JobResult:
        start = time.monotonic()
        steps: List[StepResult] = []

        def finish(status: JobStatus, failure: FailureKind | None = None, error: str | None = None) -> JobResult:
            result = JobResult(
                name=job.name,
                status=status,
                steps=tuple(steps),
                failure=failure,
                error=error,
                duration=time.monotonic() - start,
            )
            self.console.print_job_finished(result)
            if on_status:
                on_status(job.name, status)
            return result

        if cancel is not None and cancel.is_set():
            return finish(JobStatus.FAILURE, FailureKind.CANCELLED, f"run {cancel.reason or 'cancelled'} before job start")

        if on_status:
            on_status(job.name, JobStatus.RUNNING)
        self.console.print_job_start(job.name)

        job_timeout = job.timeout if job.timeout is not None else self.settings.job_timeout
        deadline = start + job_timeout if job_timeout is not None else None

        try:
            with provision(
                job,
                event,
                root=self.settings.workspace_root,
                workflow_env=workflow_env,
            ) as env:
                for step in job.steps:
                    if cancel is not None and cancel.is_set():
                        return finish(JobStatus.FAILURE, FailureKind.CANCELLED, f"run {cancel.reason or 'cancelled'}")

                    timeout, capped = self._step_timeout(step.timeout, deadline)
                    if timeout is not None and timeout <= 0:
                        return finish(JobStatus.FAILURE, FailureKind.JOB_TIMED_OUT, f"job exceeded {job_timeout}s")

                    self.console.print_step(job.name, step)
                    result = self.executor.run(step, env, cancel=cancel, timeout=timeout)
                    steps.append(result)
                    self.console.print_step_result(job.name, step, result, hint=hint_for(step, result))

                    if result.ok:
                        continue
                    if result.cancelled:
                        return finish(JobStatus.FAILURE, FailureKind.CANCELLED, f"run {cancel.reason or 'cancelled'}")
                    if result.timed_out and capped:
                        return finish(JobStatus.FAILURE, FailureKind.JOB_TIMED_OUT, f"job exceeded {job_timeout}s")
                    if result.timed_out:
                        return finish(JobStatus.FAILURE, FailureKind.STEP_TIMED_OUT, f"step '{step.name}' timed out after {timeout}s")
                    return finish(JobStatus.FAILURE, FailureKind.STEP_FAILED, f"step '{step.name}' failed (exit={result.exit_code})")

        except EnvironmentSetupError as e:
            return finish(JobStatus.FAILURE, FailureKind.SETUP_FAILED, str(e))
        except Exception as e:
            return finish(JobStatus.FAILURE, error=f"{type(e).__name__}: {e}")

        return finish(JobStatus.SUCCESS)

    def _step_timeout(self, step_timeout: Optional[float], deadline: Optional[float]):
        """
        Effective timeout for the next step and whether the job budget set it.

        Step timeout (own, else settings default) applies first; the
        remaining job budget caps it.
        """
        timeout = step_timeout if step_timeout is not None else self.settings.step_timeout
        if deadline is None:
            return timeout, False
        remaining = deadline - time.monotonic()
        if timeout is None or remaining < timeout:
            return remaining, True
        return timeout, False
