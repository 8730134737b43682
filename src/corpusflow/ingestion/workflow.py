"""Ingestion workflow — drives an IngestJob from QUEUED to PROCESSING.

Steps, each checkpointed by the durable runner::

    get-config
      → update-status-pre-processing
      → create-documents | create-documents-{i}      (fresh ingestion)
        get-documents → reset-documents              (resync)
      → update-total-documents                       (fresh ingestion)
      → enqueue-documents
      → update-status-processing
      → update-documents-with-workflowRunIds-{i}     (parallel)

COMPLETED is reached later, when the external per-document processors
report back.  Any error marks the job FAILED through the failure function.
A job that is being deleted is never moved back into a processing state:
the status updates are conditional and the run stops when they do not apply.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session, selectinload

from corpusflow.config import settings
from corpusflow.db.models import (
    DELETION_STATUSES,
    Document,
    DocumentStatus,
    IngestJob,
    IngestJobStatus,
    Namespace,
    Organization,
)
from corpusflow.ingestion.materializer import DocumentMaterializer, chunk_list
from corpusflow.schemas import TriggerIngestionJobBody
from corpusflow.workflow.client import INGEST_WORKFLOW, WorkflowClient
from corpusflow.workflow.context import Workflow, WorkflowContext, serve

logger = logging.getLogger(__name__)


# ── Step bodies ───────────────────────────────────────────────────────


def load_job_config(session: Session, job_id: str) -> dict[str, Any] | None:
    """Snapshot of the job and its owners, or ``None`` when the job is gone."""
    job = session.scalar(
        select(IngestJob).where(IngestJob.id == job_id).options(selectinload(IngestJob.namespace))
    )
    if job is None:
        return None
    return {
        "id": job.id,
        "tenantId": job.tenant_id,
        "payload": job.payload,
        "status": job.status.value,
        "namespaceId": job.namespace_id,
        "organizationId": job.namespace.organization_id,
    }


def set_job_status(session: Session, job_id: str, status: IngestJobStatus, **timestamps: datetime) -> bool:
    """Move the job to *status* unless it is queued for / undergoing deletion.

    Returns ``False`` when nothing was updated.
    """
    result = session.execute(
        update(IngestJob)
        .where(IngestJob.id == job_id, IngestJob.status.not_in(DELETION_STATUSES))
        .values(status=status, **timestamps)
    )
    return result.rowcount > 0


def increment_total_documents(session: Session, namespace_id: str, organization_id: str, count: int) -> None:
    session.execute(
        update(Namespace)
        .where(Namespace.id == namespace_id)
        .values(total_documents=Namespace.total_documents + count)
    )
    session.execute(
        update(Organization)
        .where(Organization.id == organization_id)
        .values(total_documents=Organization.total_documents + count)
    )


def append_document_run_ids(session: Session, pairs: list[dict[str, str]]) -> None:
    """Append each ``workflowRunId`` to its document's run list (one transaction)."""
    ids = [p["documentId"] for p in pairs]
    documents = {d.id: d for d in session.scalars(select(Document).where(Document.id.in_(ids)))}
    for pair in pairs:
        document = documents.get(pair["documentId"])
        if document is None:
            logger.warning("Document %s vanished before its run id was recorded", pair["documentId"])
            continue
        document.workflow_runs_ids = [*document.workflow_runs_ids, pair["workflowRunId"]]


def enqueue_documents(client: WorkflowClient, document_ids: list[str]) -> list[dict[str, str]]:
    """Trigger one processing run per document, in parallel.

    Any trigger failure propagates; no document is silently skipped.
    """
    if not document_ids:
        return []
    with ThreadPoolExecutor(max_workers=min(len(document_ids), 16)) as pool:
        run_ids = list(pool.map(client.trigger_document_job, document_ids))
    return [
        {"documentId": document_id, "workflowRunId": run_id}
        for document_id, run_id in zip(document_ids, run_ids)
    ]


# ── Workflow ──────────────────────────────────────────────────────────


def mark_job_failed(context: WorkflowContext, session: Session, fail_response: str) -> None:
    """Failure function: persist FAILED with the error text.

    No-op if the job is gone or already queued for / undergoing deletion;
    the cascade owns the job from then on.
    """
    job_id = context.request_payload.get("jobId")
    if not job_id:
        return
    result = session.execute(
        update(IngestJob)
        .where(IngestJob.id == job_id, IngestJob.status.not_in(DELETION_STATUSES))
        .values(
            status=IngestJobStatus.FAILED,
            error=fail_response or "Unknown error",
            failed_at=datetime.now(timezone.utc),
        )
    )
    if result.rowcount == 0:
        logger.info("Ingest job %s is gone or being deleted; not marking it failed", job_id)


def build_ingest_workflow(client: WorkflowClient) -> Workflow:
    """Return the ingestion workflow bound to *client* for child triggers."""

    @serve(INGEST_WORKFLOW, failure_function=mark_job_failed)
    def ingest(context: WorkflowContext) -> None:
        body = TriggerIngestionJobBody.model_validate(context.request_payload)

        job = context.run("get-config", lambda session: load_job_config(session, body.job_id))
        if job is None:
            logger.info("Ingest job %s not found; assuming it was deleted", body.job_id)
            return

        moved = context.run(
            "update-status-pre-processing",
            lambda session: set_job_status(
                session,
                job["id"],
                IngestJobStatus.PRE_PROCESSING,
                pre_processing_at=datetime.now(timezone.utc),
            ),
        )
        if not moved:
            logger.info("Ingest job %s is being deleted; stopping ingestion", job["id"])
            return

        if job["status"] == IngestJobStatus.QUEUED_FOR_RESYNC.value:
            document_ids = _resync_documents(context, job)
        else:
            document_ids = DocumentMaterializer(context, job).materialize()
            context.run(
                "update-total-documents",
                lambda session: increment_total_documents(
                    session, job["namespaceId"], job["organizationId"], len(document_ids)
                ),
            )

        pairs = context.run(
            "enqueue-documents", lambda: enqueue_documents(client, document_ids), transactional=False
        )
        logger.info("Enqueued %d documents for ingest job %s", len(pairs), job["id"])

        moved = context.run(
            "update-status-processing",
            lambda session: set_job_status(
                session,
                job["id"],
                IngestJobStatus.PROCESSING,
                processing_at=datetime.now(timezone.utc),
            ),
        )
        if not moved:
            logger.info("Ingest job %s entered deletion while documents were enqueued", job["id"])

        context.run_parallel(
            [
                (
                    f"update-documents-with-workflowRunIds-{i}",
                    lambda session, batch=batch: append_document_run_ids(session, batch),
                )
                for i, batch in enumerate(chunk_list(pairs, settings.run_id_batch_size))
            ]
        )

    return ingest


def _resync_documents(context: WorkflowContext, job: dict[str, Any]) -> list[str]:
    """Re-queue the job's existing documents instead of creating new ones."""

    def _get_documents(session: Session) -> list[str]:
        return list(
            session.scalars(
                select(Document.id)
                .where(Document.ingest_job_id == job["id"], Document.status != DocumentStatus.DELETING)
                .order_by(Document.created_at, Document.id)
            )
        )

    document_ids = context.run("get-documents", _get_documents)

    def _reset_documents(session: Session) -> None:
        if not document_ids:
            return
        session.execute(
            update(Document)
            .where(Document.id.in_(document_ids))
            .values(status=DocumentStatus.QUEUED, error=None, queued_at=datetime.now(timezone.utc))
        )

    context.run("reset-documents", _reset_documents)
    return document_ids
