"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.orm import Session, sessionmaker

from corpusflow.db.models import IngestJob, IngestJobStatus, Namespace, Organization
from corpusflow.db.session import make_session_factory, session_scope
from corpusflow.errors import DispatchError
from corpusflow.workflow.client import FlowControl, WorkflowClient


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fake workflow client ────────────────────────────────────────────────


class FakeWorkflowClient(WorkflowClient):
    """Records triggers and cancellations; hands out sequential run ids."""

    def __init__(self, fail_workflows: set[str] | None = None) -> None:
        self.triggered: list[tuple[str, dict[str, Any]]] = []
        self.flow_controls: list[FlowControl | None] = []
        self.cancelled: list[list[str]] = []
        self.fail_workflows = fail_workflows or set()
        self._lock = threading.Lock()
        self._counter = 0

    def trigger(self, workflow: str, body: dict[str, Any], *, flow_control: FlowControl | None = None) -> str:
        if workflow in self.fail_workflows:
            raise DispatchError(f"Failed to trigger {workflow} workflow: boom")
        with self._lock:
            self._counter += 1
            self.triggered.append((workflow, body))
            self.flow_controls.append(flow_control)
            return f"run-{self._counter}"

    def cancel(self, ids: Sequence[str]) -> None:
        self.cancelled.append(list(ids))

    def bodies_for(self, workflow: str) -> list[dict[str, Any]]:
        return [body for name, body in self.triggered if name == workflow]


@dataclass
class Tenancy:
    organization_id: str
    namespace_id: str


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def session_factory(tmp_path: Path) -> sessionmaker[Session]:
    return make_session_factory(f"sqlite:///{tmp_path / 'corpusflow-test.db'}", create_tables=True)


@pytest.fixture()
def workflow_client() -> FakeWorkflowClient:
    return FakeWorkflowClient()


@pytest.fixture()
def tenancy(session_factory: sessionmaker[Session]) -> Tenancy:
    """One organization owning one (empty) namespace."""
    with session_scope(session_factory) as session:
        org = Organization(id="org-1", name="Acme", total_namespaces=1)
        ns = Namespace(id="ns-1", organization_id=org.id, name="Docs", slug="docs")
        session.add_all([org, ns])
    return Tenancy(organization_id="org-1", namespace_id="ns-1")


def add_job(
    session_factory: sessionmaker[Session],
    namespace_id: str,
    payload: dict[str, Any],
    *,
    job_id: str = "job-1",
    status: IngestJobStatus = IngestJobStatus.QUEUED,
    workflow_runs_ids: list[str] | None = None,
    tenant_id: str | None = None,
) -> str:
    """Insert a job and account for it in the counters, as job creation does."""
    with session_scope(session_factory) as session:
        namespace = session.get(Namespace, namespace_id)
        session.add(
            IngestJob(
                id=job_id,
                namespace_id=namespace_id,
                tenant_id=tenant_id,
                payload=payload,
                status=status,
                workflow_runs_ids=workflow_runs_ids or [],
            )
        )
        namespace.total_ingest_jobs += 1
        namespace.organization.total_ingest_jobs += 1
    return job_id
