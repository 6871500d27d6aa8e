from .dsl import job, sh, uses, checkout, workflow, on_pull_request, JobBuilder, build
from .engine import WorkflowEngine, run_workflow
from .model import Event, Condition, Job, Step, Workflow, JobResult, JobStatus, RunResult, StepResult
from .trigger import admit

__all__ = [
    "job", "sh", "uses", "checkout", "workflow", "on_pull_request", "JobBuilder", "build",
    "WorkflowEngine", "run_workflow", "admit",
    "Event", "Condition", "Job", "Step", "Workflow", "JobResult", "JobStatus", "RunResult", "StepResult",
]
