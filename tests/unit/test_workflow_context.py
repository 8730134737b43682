"""Unit tests for the durable step runner."""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from corpusflow.db.models import WorkflowStep
from corpusflow.db.session import session_scope
from corpusflow.workflow.context import FAILURE_STEP, Workflow, WorkflowContext, serve


def _steps(session_factory: sessionmaker[Session], run_id: str) -> list[WorkflowStep]:
    with session_factory() as session:
        return list(
            session.scalars(
                select(WorkflowStep).where(WorkflowStep.workflow_run_id == run_id).order_by(WorkflowStep.sequence)
            )
        )


class TestRun:
    def test_result_is_checkpointed(self, session_factory: sessionmaker[Session]) -> None:
        ctx = WorkflowContext(session_factory, {"jobId": "j"}, "run-a")
        assert ctx.run("first", lambda session: {"ids": ["x", "y"]}) == {"ids": ["x", "y"]}

        steps = _steps(session_factory, "run-a")
        assert [s.name for s in steps] == ["first"]
        assert steps[0].result == {"ids": ["x", "y"]}
        assert steps[0].sequence == 1

    def test_replay_does_not_call_body_again(self, session_factory: sessionmaker[Session]) -> None:
        calls: list[int] = []

        def body(session: Session) -> int:
            calls.append(1)
            return len(calls)

        WorkflowContext(session_factory, {}, "run-a").run("count", body)
        replayed = WorkflowContext(session_factory, {}, "run-a").run("count", body)

        assert replayed == 1
        assert len(calls) == 1

    def test_none_result_is_replayed_as_none(self, session_factory: sessionmaker[Session]) -> None:
        calls: list[int] = []
        ctx = WorkflowContext(session_factory, {}, "run-a")
        ctx.run("nothing", lambda session: calls.append(1))
        assert ctx.run("nothing", lambda session: calls.append(1)) is None
        assert len(calls) == 1

    def test_sequence_increases(self, session_factory: sessionmaker[Session]) -> None:
        ctx = WorkflowContext(session_factory, {}, "run-a")
        for name in ("a", "b", "c"):
            ctx.run(name, lambda session: None)
        assert [s.sequence for s in _steps(session_factory, "run-a")] == [1, 2, 3]

    def test_failed_step_leaves_no_checkpoint(self, session_factory: sessionmaker[Session]) -> None:
        ctx = WorkflowContext(session_factory, {}, "run-a")

        def boom(session: Session) -> None:
            raise RuntimeError("nope")

        with pytest.raises(RuntimeError):
            ctx.run("explodes", boom)
        assert not ctx.has_completed("explodes")

    def test_runs_are_isolated(self, session_factory: sessionmaker[Session]) -> None:
        WorkflowContext(session_factory, {}, "run-a").run("step", lambda session: "a")
        assert WorkflowContext(session_factory, {}, "run-b").run("step", lambda session: "b") == "b"

    def test_request_payload_is_a_copy(self, session_factory: sessionmaker[Session]) -> None:
        ctx = WorkflowContext(session_factory, {"jobId": "j"}, "run-a")
        ctx.request_payload["jobId"] = "mutated"
        assert ctx.request_payload["jobId"] == "j"


class TestNonTransactionalRun:
    def test_body_takes_no_session_and_is_checkpointed(self, session_factory: sessionmaker[Session]) -> None:
        calls: list[int] = []

        def remote_call() -> list[str]:
            calls.append(1)
            return ["run-1", "run-2"]

        ctx = WorkflowContext(session_factory, {}, "run-a")
        assert ctx.run("trigger", remote_call, transactional=False) == ["run-1", "run-2"]
        assert ctx.run("trigger", remote_call, transactional=False) == ["run-1", "run-2"]

        assert len(calls) == 1
        assert [s.name for s in _steps(session_factory, "run-a")] == ["trigger"]

    def test_body_can_write_in_its_own_transaction(self, session_factory: sessionmaker[Session]) -> None:
        ctx = WorkflowContext(session_factory, {}, "run-a")

        def write_elsewhere() -> str:
            # Blocks on the SQLite write lock if the runner still held one.
            with session_scope(session_factory) as session:
                session.add(WorkflowStep(workflow_run_id="other-run", name="x", sequence=1, result=None))
            return "done"

        assert ctx.run("side-write", write_elsewhere, transactional=False) == "done"
        assert [s.name for s in _steps(session_factory, "other-run")] == ["x"]

    def test_failed_body_leaves_no_checkpoint(self, session_factory: sessionmaker[Session]) -> None:
        ctx = WorkflowContext(session_factory, {}, "run-a")

        def boom() -> None:
            raise RuntimeError("unreachable")

        with pytest.raises(RuntimeError):
            ctx.run("remote", boom, transactional=False)
        assert not ctx.has_completed("remote")


class TestRunParallel:
    def test_results_keep_input_order(self, session_factory: sessionmaker[Session]) -> None:
        ctx = WorkflowContext(session_factory, {}, "run-a", max_parallel_steps=4)
        results = ctx.run_parallel([(f"step-{i}", lambda session, i=i: i * 10) for i in range(6)])
        assert results == [0, 10, 20, 30, 40, 50]
        assert len(_steps(session_factory, "run-a")) == 6

    def test_error_propagates_after_other_steps_finish(self, session_factory: sessionmaker[Session]) -> None:
        ctx = WorkflowContext(session_factory, {}, "run-a", max_parallel_steps=2)

        def boom(session: Session) -> None:
            raise ValueError("bad batch")

        with pytest.raises(ValueError, match="bad batch"):
            ctx.run_parallel([("ok-0", lambda session: 0), ("bad", boom), ("ok-1", lambda session: 1)])

        assert ctx.has_completed("ok-0")
        assert ctx.has_completed("ok-1")
        assert not ctx.has_completed("bad")

    def test_empty(self, session_factory: sessionmaker[Session]) -> None:
        assert WorkflowContext(session_factory, {}, "run-a").run_parallel([]) == []


class TestWorkflow:
    def test_failure_function_runs_once_and_error_is_reraised(self, session_factory: sessionmaker[Session]) -> None:
        failures: list[str] = []

        def handler(context: WorkflowContext) -> None:
            context.run("ok", lambda session: True)
            raise RuntimeError("step blew up")

        def on_failure(context: WorkflowContext, session: Session, fail_response: str) -> None:
            failures.append(fail_response)

        workflow = Workflow("test", handler, failure_function=on_failure)

        with pytest.raises(RuntimeError, match="step blew up"):
            workflow(session_factory, {}, "run-a")
        with pytest.raises(RuntimeError):
            workflow(session_factory, {}, "run-a")

        assert failures == ["step blew up"]
        assert [s.name for s in _steps(session_factory, "run-a")] == ["ok", FAILURE_STEP]

    def test_success_returns_handler_result(self, session_factory: sessionmaker[Session]) -> None:
        workflow = Workflow("test", lambda context: context.run("x", lambda session: 42))
        assert workflow(session_factory, {}, "run-a") == 42

    def test_serve_decorator(self, session_factory: sessionmaker[Session]) -> None:
        failures: list[str] = []

        @serve("decorated", failure_function=lambda context, session, fail_response: failures.append(fail_response))
        def workflow(context: WorkflowContext) -> str:
            return context.run("echo", lambda session: context.request_payload["value"])

        assert isinstance(workflow, Workflow)
        assert workflow.name == "decorated"
        assert workflow(session_factory, {"value": "hi"}, "run-a") == "hi"
        assert failures == []
