"""Unit tests for the ingestion workflow.

Runs the workflow against a SQLite database with a fake workflow client,
so no workflow service or document processor is needed.
"""

from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from corpusflow.db.models import Document, DocumentStatus, IngestJob, IngestJobStatus, Namespace, Organization
from corpusflow.db.session import session_scope
from corpusflow.errors import DispatchError
from corpusflow.ingestion.workflow import build_ingest_workflow, mark_job_failed
from corpusflow.workflow.client import INGEST_FLOW_CONTROL, INGEST_WORKFLOW, PROCESS_DOCUMENT_WORKFLOW
from corpusflow.workflow.context import WorkflowContext

from tests.conftest import FakeWorkflowClient, Tenancy, add_job


def _run(session_factory: sessionmaker[Session], client: FakeWorkflowClient, job_id: str = "job-1", run_id: str = "wf-1") -> Any:
    return build_ingest_workflow(client)(session_factory, {"jobId": job_id}, run_id)


def _job(session_factory: sessionmaker[Session], job_id: str = "job-1") -> IngestJob | None:
    with session_factory() as session:
        return session.get(IngestJob, job_id)


def _documents(session_factory: sessionmaker[Session]) -> list[Document]:
    with session_factory() as session:
        return list(session.scalars(select(Document)))


def _counters(session_factory: sessionmaker[Session], tenancy: Tenancy) -> tuple[int, int]:
    with session_factory() as session:
        ns = session.get(Namespace, tenancy.namespace_id)
        org = session.get(Organization, tenancy.organization_id)
        return ns.total_documents, org.total_documents


class TestIngestWorkflow:
    def test_text_job_reaches_processing(
        self, session_factory: sessionmaker[Session], workflow_client: FakeWorkflowClient, tenancy: Tenancy
    ) -> None:
        add_job(session_factory, tenancy.namespace_id, {"type": "TEXT", "text": "hello world"})

        _run(session_factory, workflow_client)

        job = _job(session_factory)
        assert job.status == IngestJobStatus.PROCESSING
        assert job.pre_processing_at is not None
        assert job.processing_at is not None
        assert job.error is None

        (doc,) = _documents(session_factory)
        assert doc.total_characters == 11
        assert doc.source["type"] == "TEXT"
        assert workflow_client.bodies_for(PROCESS_DOCUMENT_WORKFLOW) == [{"documentId": doc.id}]
        assert doc.workflow_runs_ids == ["run-1"]
        assert workflow_client.flow_controls == [INGEST_FLOW_CONTROL]

    def test_managed_files_counts_and_run_ids(
        self, session_factory: sessionmaker[Session], workflow_client: FakeWorkflowClient, tenancy: Tenancy
    ) -> None:
        files = [{"key": f"namespaces/ns-1/{i}.pdf"} for i in range(45)]
        add_job(session_factory, tenancy.namespace_id, {"type": "MANAGED_FILES", "files": files})

        _run(session_factory, workflow_client)

        docs = _documents(session_factory)
        assert len(docs) == 45
        assert _counters(session_factory, tenancy) == (45, 45)
        assert len(workflow_client.bodies_for(PROCESS_DOCUMENT_WORKFLOW)) == 45
        assert all(len(d.workflow_runs_ids) == 1 for d in docs)
        assert len({d.workflow_runs_ids[0] for d in docs}) == 45

        triggered_ids = {b["documentId"] for b in workflow_client.bodies_for(PROCESS_DOCUMENT_WORKFLOW)}
        assert triggered_ids == {d.id for d in docs}

    def test_counters_add_to_existing_totals(
        self, session_factory: sessionmaker[Session], workflow_client: FakeWorkflowClient, tenancy: Tenancy
    ) -> None:
        with session_scope(session_factory) as session:
            session.get(Namespace, tenancy.namespace_id).total_documents = 5
            session.get(Organization, tenancy.organization_id).total_documents = 7
        add_job(session_factory, tenancy.namespace_id, {"type": "URLS", "urls": ["https://a.io", "https://b.io"]})

        _run(session_factory, workflow_client)

        assert _counters(session_factory, tenancy) == (7, 9)

    def test_missing_job_is_a_noop(
        self, session_factory: sessionmaker[Session], workflow_client: FakeWorkflowClient, tenancy: Tenancy
    ) -> None:
        _run(session_factory, workflow_client, job_id="does-not-exist")

        assert workflow_client.triggered == []
        assert _documents(session_factory) == []

    @pytest.mark.parametrize("status", [IngestJobStatus.QUEUED_FOR_DELETE, IngestJobStatus.DELETING])
    def test_job_being_deleted_is_left_alone(
        self,
        session_factory: sessionmaker[Session],
        workflow_client: FakeWorkflowClient,
        tenancy: Tenancy,
        status: IngestJobStatus,
    ) -> None:
        add_job(session_factory, tenancy.namespace_id, {"type": "TEXT", "text": "x"}, status=status)

        _run(session_factory, workflow_client)

        assert _job(session_factory).status == status
        assert _documents(session_factory) == []
        assert workflow_client.triggered == []

    def test_dispatch_failure_marks_job_failed(
        self, session_factory: sessionmaker[Session], tenancy: Tenancy
    ) -> None:
        client = FakeWorkflowClient(fail_workflows={PROCESS_DOCUMENT_WORKFLOW})
        add_job(session_factory, tenancy.namespace_id, {"type": "TEXT", "text": "x"})

        with pytest.raises(DispatchError):
            _run(session_factory, client)

        job = _job(session_factory)
        assert job.status == IngestJobStatus.FAILED
        assert "Failed to trigger process-document workflow" in job.error
        assert job.failed_at is not None

    def test_replay_does_not_duplicate_work(
        self, session_factory: sessionmaker[Session], workflow_client: FakeWorkflowClient, tenancy: Tenancy
    ) -> None:
        add_job(session_factory, tenancy.namespace_id, {"type": "URLS", "urls": [f"https://x.io/{i}" for i in range(25)]})

        _run(session_factory, workflow_client, run_id="wf-1")
        triggered = len(workflow_client.triggered)
        _run(session_factory, workflow_client, run_id="wf-1")

        assert len(workflow_client.triggered) == triggered == 25
        assert len(_documents(session_factory)) == 25
        assert _counters(session_factory, tenancy) == (25, 25)
        assert all(len(d.workflow_runs_ids) == 1 for d in _documents(session_factory))

    def test_resync_requeues_existing_documents(
        self, session_factory: sessionmaker[Session], workflow_client: FakeWorkflowClient, tenancy: Tenancy
    ) -> None:
        add_job(session_factory, tenancy.namespace_id, {"type": "TEXT", "text": "hello"})
        _run(session_factory, workflow_client, run_id="wf-1")

        with session_scope(session_factory) as session:
            session.get(IngestJob, "job-1").status = IngestJobStatus.QUEUED_FOR_RESYNC
            for doc in session.scalars(select(Document)):
                doc.status = DocumentStatus.FAILED
                doc.error = "parser crashed"

        _run(session_factory, workflow_client, run_id="wf-2")

        (doc,) = _documents(session_factory)
        assert doc.status == DocumentStatus.QUEUED
        assert doc.error is None
        assert doc.workflow_runs_ids == ["run-1", "run-2"]
        assert _job(session_factory).status == IngestJobStatus.PROCESSING
        assert _counters(session_factory, tenancy) == (1, 1)


class TestMarkJobFailed:
    def test_defaults_to_unknown_error(self, session_factory: sessionmaker[Session], tenancy: Tenancy) -> None:
        add_job(session_factory, tenancy.namespace_id, {"type": "TEXT", "text": "x"})
        ctx = WorkflowContext(session_factory, {"jobId": "job-1"}, "wf-1")

        with session_scope(session_factory) as session:
            mark_job_failed(ctx, session, "")

        job = _job(session_factory)
        assert job.status == IngestJobStatus.FAILED
        assert job.error == "Unknown error"

    def test_tolerates_deleted_job(self, session_factory: sessionmaker[Session], tenancy: Tenancy) -> None:
        ctx = WorkflowContext(session_factory, {"jobId": "gone"}, "wf-1")
        with session_scope(session_factory) as session:
            mark_job_failed(ctx, session, "boom")
        assert _job(session_factory, "gone") is None

    @pytest.mark.parametrize("status", [IngestJobStatus.QUEUED_FOR_DELETE, IngestJobStatus.DELETING])
    def test_leaves_job_being_deleted_alone(
        self, session_factory: sessionmaker[Session], tenancy: Tenancy, status: IngestJobStatus
    ) -> None:
        add_job(session_factory, tenancy.namespace_id, {"type": "TEXT", "text": "x"}, status=status)
        ctx = WorkflowContext(session_factory, {"jobId": "job-1"}, "wf-1")

        with session_scope(session_factory) as session:
            mark_job_failed(ctx, session, "cancelled mid-run")

        job = _job(session_factory)
        assert job.status == status
        assert job.error is None
        assert job.failed_at is None

    def test_run_failing_after_delete_request_keeps_deleting(
        self, session_factory: sessionmaker[Session], tenancy: Tenancy
    ) -> None:
        add_job(session_factory, tenancy.namespace_id, {"type": "TEXT", "text": "x"})

        class _DeletedMidRunClient(FakeWorkflowClient):
            def trigger_document_job(self, document_id: str) -> str:
                with session_scope(session_factory) as session:
                    session.get(IngestJob, "job-1").status = IngestJobStatus.DELETING
                raise DispatchError("run cancelled")

        with pytest.raises(DispatchError):
            _run(session_factory, _DeletedMidRunClient())

        assert _job(session_factory).status == IngestJobStatus.DELETING

    def test_registered_as_the_workflow_failure_function(self) -> None:
        workflow = build_ingest_workflow(FakeWorkflowClient())
        assert workflow.name == INGEST_WORKFLOW
        assert workflow.failure_function is mark_job_failed
