"""Tests for the workflow engine: gating, concurrency, aggregation, cancellation."""

from dataclasses import replace

import pytest

from runci.actions import register_action
from runci.cancel import CancelToken
from runci.dsl import job, on_pull_request, sh, uses, workflow
from runci.engine import WorkflowEngine, run_workflow
from runci.errors import ConfigurationError, EnvironmentSetupError
from runci.executor import StepExecutor
from runci.model import PULL_REQUEST, PUSH, Condition, Event, FailureKind, Job, JobStatus, Step, Workflow
from runci.settings import ColorMode, OutputSettings, Settings

from conftest import read_log


def test_both_jobs_pass(engine, make_workflow, pr_event, marks):
    result = engine.trigger(make_workflow(), pr_event)

    assert result is not None
    assert result.statuses() == {"lint": JobStatus.SUCCESS, "test": JobStatus.SUCCESS}
    assert result.status is JobStatus.SUCCESS
    assert result.ok
    assert read_log(marks, "lint") == ["Format", "Lint"]
    assert read_log(marks, "test") == ["test"]


def test_format_failure_fails_lint_but_not_test(engine, make_workflow, pr_event, marks):
    wf = make_workflow(fmt="echo 'Diff in src/main.rs' && exit 1")
    result = engine.trigger(wf, pr_event)

    lint = result.job("lint")
    assert lint.status is JobStatus.FAILURE
    assert lint.failure is FailureKind.STEP_FAILED
    assert [s.name for s in lint.steps] == ["Checkout", "Format"]
    assert "Diff in src/main.rs" in lint.failed_step.output
    # clippy never ran
    assert read_log(marks, "lint") == ["Format"]

    assert result.job("test").status is JobStatus.SUCCESS
    assert read_log(marks, "test") == ["test"]
    assert result.status is JobStatus.FAILURE


def test_event_for_other_branch_runs_nothing(engine, make_workflow, pr_event, marks):
    result = engine.trigger(make_workflow(), replace(pr_event, target_branch="develop"))

    assert result is None
    assert list(marks.iterdir()) == []


def test_push_event_is_not_admitted(engine, make_workflow, pr_event, marks):
    assert engine.trigger(make_workflow(), replace(pr_event, kind=PUSH)) is None
    assert list(marks.iterdir()) == []


def test_checkout_failure_in_one_job_only(engine, make_workflow, pr_event, marks):
    def broken(step, env):
        raise EnvironmentSetupError(message="could not fetch snapshot", job=env.job, step=step.name)

    register_action("test/broken-checkout", broken)
    wf = make_workflow(test_checkout=uses("Checkout", "test/broken-checkout@v1"))
    result = engine.trigger(wf, pr_event)

    test = result.job("test")
    assert test.status is JobStatus.FAILURE
    assert test.failure is FailureKind.SETUP_FAILED
    assert test.steps == ()
    assert read_log(marks, "test") == []

    assert result.job("lint").status is JobStatus.SUCCESS
    assert result.status is JobStatus.FAILURE


def test_independent_jobs_run_concurrently(engine, pr_event, marks):
    # each job waits for the other's marker; run one after the other they would time out
    def rendezvous(me, other):
        return sh(
            "meet",
            f"touch '{marks}/{me}'; for i in $(seq 100); do [ -e '{marks}/{other}' ] && exit 0; sleep 0.05; done; exit 1",
        )

    wf = workflow(
        "pair",
        job("a", rendezvous("a", "b")),
        job("b", rendezvous("b", "a")),
        on=on_pull_request("main"),
    )
    assert engine.trigger(wf, pr_event).ok


def test_needs_orders_jobs(engine, pr_event, marks):
    log = marks / "order.log"
    wf = workflow(
        "chain",
        job("deploy", sh("deploy", f"echo deploy >> '{log}'"), needs=["build"]),
        job("build", sh("build", f"sleep 0.2; echo build >> '{log}'")),
        on=on_pull_request("main"),
    )
    result = engine.trigger(wf, pr_event)

    assert result.ok
    assert log.read_text().split() == ["build", "deploy"]
    # results keep declared order
    assert [j.name for j in result.jobs] == ["deploy", "build"]


def test_failed_need_skips_dependents_transitively(engine, pr_event, marks):
    wf = workflow(
        "chain",
        job("build", sh("build", "exit 1")),
        job("test", sh("test", f"touch '{marks}/test'"), needs=["build"]),
        job("deploy", sh("deploy", f"touch '{marks}/deploy'"), needs=["test"]),
        job("docs", sh("docs", "true")),
        on=on_pull_request("main"),
    )
    result = engine.trigger(wf, pr_event)

    assert result.statuses() == {
        "build": JobStatus.FAILURE,
        "test": JobStatus.SKIPPED,
        "deploy": JobStatus.SKIPPED,
        "docs": JobStatus.SUCCESS,
    }
    assert result.job("deploy").failure is FailureKind.DEPENDENCY_FAILED
    assert list(marks.iterdir()) == []
    assert result.status is JobStatus.FAILURE


def test_same_event_gives_same_statuses(engine, make_workflow, pr_event):
    wf = make_workflow(fmt="exit 1")
    first = engine.trigger(wf, pr_event)
    second = engine.trigger(wf, pr_event)

    assert first.statuses() == second.statuses()
    assert first.run_id != second.run_id


def test_cancelled_run_fails_every_job(engine, make_workflow, pr_event, marks):
    cancel = CancelToken()
    cancel.cancel("superseded")
    result = engine.trigger(make_workflow(), pr_event, cancel=cancel)

    assert all(j.status is JobStatus.FAILURE for j in result.jobs)
    assert all(j.failure is FailureKind.CANCELLED for j in result.jobs)
    assert list(marks.iterdir()) == []


def test_unexpected_error_is_contained_to_its_job(settings, console, make_workflow, pr_event):
    class Exploding(StepExecutor):
        def run(self, step, env, cancel=None, timeout=None):
            if step.name == "Lint":
                raise RuntimeError("executor blew up")
            return super().run(step, env, cancel=cancel, timeout=timeout)

    engine = WorkflowEngine(executor=Exploding(settings.output), settings=settings, console=console)
    result = engine.trigger(make_workflow(), pr_event)

    lint = result.job("lint")
    assert lint.status is JobStatus.FAILURE
    assert lint.error == "RuntimeError: executor blew up"
    assert result.job("test").status is JobStatus.SUCCESS


def test_workflow_env_reaches_steps(engine, make_workflow, pr_event):
    wf = make_workflow(test='test "$CARGO_TERM_COLOR" = always')
    assert engine.trigger(wf, pr_event).job("test").status is JobStatus.SUCCESS


def test_status_callbacks_start_pending(engine, make_workflow, pr_event):
    seen = []
    engine.trigger(make_workflow(), pr_event, on_status=lambda n, s: seen.append((n, s)))

    assert seen[:2] == [("lint", JobStatus.PENDING), ("test", JobStatus.PENDING)]
    for name in ("lint", "test"):
        mine = [s for n, s in seen if n == name]
        assert mine == [JobStatus.PENDING, JobStatus.RUNNING, JobStatus.SUCCESS]


@pytest.mark.parametrize("workers", [1, 2])
def test_worker_limit_still_runs_everything(console, make_workflow, pr_event, workers):
    settings = Settings(output=OutputSettings(color=ColorMode.NEVER), max_workers=workers)
    result = WorkflowEngine(settings=settings, console=console).trigger(make_workflow(), pr_event)
    assert result.ok


def test_run_workflow_helper(settings, console, make_workflow, pr_event):
    result = run_workflow(make_workflow(), pr_event, settings=settings, console=console)
    assert result.ok
    assert result.event == pr_event
    assert result.workflow == "Test and Lint"


def test_run_result_records_the_event(engine, make_workflow, source_dir):
    event = Event(kind=PULL_REQUEST, target_branch="main", source=str(source_dir))
    assert engine.trigger(make_workflow(), event).event is event


def test_invalid_workflow_is_rejected_before_any_job(engine, pr_event, marks):
    # constructed directly, so no loader or dsl helper has validated it
    def touch(name):
        return Step(name=name, run=f"touch '{marks}/{name}'")

    wf = Workflow(
        name="cyclic",
        on=Condition(events=frozenset({PULL_REQUEST}), branches=("main",)),
        jobs=(
            Job(name="free", steps=(touch("free"),)),
            Job(name="a", steps=(touch("a"),), needs=("b",)),
            Job(name="b", steps=(touch("b"),), needs=("a",)),
        ),
    )
    with pytest.raises(ConfigurationError, match="cycle"):
        engine.trigger(wf, pr_event)
    assert list(marks.iterdir()) == []


def test_unknown_action_is_rejected_before_any_job(engine, pr_event, marks):
    wf = Workflow(
        name="typo",
        on=Condition(events=frozenset({PULL_REQUEST})),
        jobs=(
            Job(name="first", steps=(Step(name="mark", run=f"touch '{marks}/first'"),)),
            Job(name="second", steps=(Step(name="x", uses="nope/act@v1"),)),
        ),
    )
    with pytest.raises(ConfigurationError, match="unknown action"):
        engine.trigger(wf, pr_event)
    assert list(marks.iterdir()) == []
