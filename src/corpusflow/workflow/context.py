"""Durable, checkpointed workflow execution.

A workflow handler receives a :class:`WorkflowContext` and expresses its
work as named steps::

    documents = context.run("get-documents", lambda session: [...])

Each step's body runs inside one database transaction, and the step's
JSON result is written to the ``workflow_steps`` log in that *same*
transaction.  When the run is re-delivered (crash, retry, at-least-once
delivery) a step whose checkpoint exists returns the stored result
without calling its body again, so only the steps after the last
committed checkpoint execute.

Steps that call out over the network pass ``transactional=False``: their
body runs with no transaction open and only the checkpoint is written
afterwards, so no database lock is held across a remote call.

Step results must be JSON-serialisable (ids, dicts, lists); they are
what replays observe.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from corpusflow.config import settings
from corpusflow.db.models import WorkflowStep
from corpusflow.db.session import session_scope

logger = logging.getLogger(__name__)

T = TypeVar("T")

StepFn = Callable[[Session], T]

FAILURE_STEP = "failure-function"

_MISSING = object()


class WorkflowContext:
    """Step runner bound to one workflow run.

    Parameters
    ----------
    session_factory:
        Factory for the database holding both domain rows and checkpoints.
    request_payload:
        Immutable body the run was triggered with.
    workflow_run_id:
        Identifier of this run; checkpoints are keyed by it.
    max_parallel_steps:
        Upper bound on concurrently executing steps in :meth:`run_parallel`.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        request_payload: dict[str, Any],
        workflow_run_id: str,
        *,
        max_parallel_steps: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self._request_payload = dict(request_payload)
        self.workflow_run_id = workflow_run_id
        self.max_parallel_steps = max_parallel_steps or settings.max_parallel_steps

    @property
    def request_payload(self) -> dict[str, Any]:
        return dict(self._request_payload)

    # -- steps ----------------------------------------------------------------

    def run(self, step_name: str, fn: Callable[..., T], *, transactional: bool = True) -> T:
        """Execute *fn* as the checkpointed step *step_name*.

        Returns the stored result instead when the step already completed
        in an earlier delivery of this run.

        Parameters
        ----------
        step_name:
            Checkpoint name, unique within the run.
        fn:
            ``fn(session)`` when *transactional*, otherwise ``fn()``.
        transactional:
            When ``False`` the body runs outside any database transaction
            and only the checkpoint is committed afterwards.  Use it for
            steps that call out over the network; a body that also writes
            rows opens its own short transactions.
        """
        cached = self._load_checkpoint(step_name)
        if cached is not _MISSING:
            logger.debug("Replaying step %r of run %s from checkpoint", step_name, self.workflow_run_id)
            return cached  # type: ignore[return-value]

        logger.info("Running step %r of run %s", step_name, self.workflow_run_id)
        if not transactional:
            result = fn()
            with session_scope(self.session_factory) as session:
                self._record(session, step_name, result)
            return result

        with session_scope(self.session_factory) as session:
            result = fn(session)
            self._record(session, step_name, result)
        return result

    def run_parallel(self, steps: Sequence[tuple[str, StepFn[Any]]]) -> list[Any]:
        """Run independent steps concurrently; results keep the input order.

        Every step checkpoints on its own.  All steps are awaited before the
        first failure (if any) is re-raised.
        """
        if not steps:
            return []

        workers = min(len(steps), self.max_parallel_steps)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.run, name, fn) for name, fn in steps]

        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            raise errors[0]
        return [f.result() for f in futures]

    def has_completed(self, step_name: str) -> bool:
        return self._load_checkpoint(step_name) is not _MISSING

    # -- internals ------------------------------------------------------------

    def _load_checkpoint(self, step_name: str) -> Any:
        with self.session_factory() as session:
            step = session.scalar(
                select(WorkflowStep).where(
                    WorkflowStep.workflow_run_id == self.workflow_run_id,
                    WorkflowStep.name == step_name,
                )
            )
            return _MISSING if step is None else step.result

    def _record(self, session: Session, step_name: str, result: Any) -> None:
        session.add(
            WorkflowStep(
                workflow_run_id=self.workflow_run_id,
                name=step_name,
                sequence=self._next_sequence(session),
                result=result,
            )
        )

    def _next_sequence(self, session: Session) -> int:
        current = session.scalar(
            select(func.max(WorkflowStep.sequence)).where(WorkflowStep.workflow_run_id == self.workflow_run_id)
        )
        return (current or 0) + 1


FailureFn = Callable[[WorkflowContext, Session, str], None]


class Workflow:
    """A workflow handler plus its failure function.

    Calling the workflow executes (or resumes) one run.  When the handler
    raises, the failure function is invoked with the error message and the
    error is re-raised.  The failure function itself is checkpointed, so a
    re-delivered failed run does not invoke it a second time.

    Parameters
    ----------
    name:
        Workflow name, used in logs and as the trigger route suffix.
    handler:
        ``handler(context) -> Any``.
    failure_function:
        Optional ``failure_function(context, session, fail_response)``; it
        writes through *session*, the transaction that also records its
        checkpoint.
    """

    def __init__(
        self,
        name: str,
        handler: Callable[[WorkflowContext], Any],
        *,
        failure_function: FailureFn | None = None,
    ) -> None:
        self.name = name
        self.handler = handler
        self.failure_function = failure_function

    def __call__(
        self,
        session_factory: sessionmaker[Session],
        request_payload: dict[str, Any],
        workflow_run_id: str,
        **context_kwargs: Any,
    ) -> Any:
        context = WorkflowContext(session_factory, request_payload, workflow_run_id, **context_kwargs)
        try:
            return self.handler(context)
        except Exception as exc:
            logger.exception("Workflow %s run %s failed", self.name, workflow_run_id)
            if self.failure_function is not None and not context.has_completed(FAILURE_STEP):
                fail_response = str(exc)

                def _on_failure(session: Session) -> bool:
                    self.failure_function(context, session, fail_response)  # type: ignore[misc]
                    return True

                context.run(FAILURE_STEP, _on_failure)
            raise


def serve(name: str, *, failure_function: FailureFn | None = None) -> Callable[[Callable[[WorkflowContext], Any]], Workflow]:
    """Decorator form of :class:`Workflow`."""

    def decorator(handler: Callable[[WorkflowContext], Any]) -> Workflow:
        return Workflow(name, handler, failure_function=failure_function)

    return decorator
