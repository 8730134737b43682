"""Deletion cascade workflow — the inverse of ingestion.

Steps::

    get-config
      → update-status-deleting
      → cancel-ingest-job-workflows
      → get-documents
      → enqueue-delete-documents-{i}        (documents exist, sequential)
        or
        delete-ingest-job                   (no documents)
          → check-and-delete-namespace      (deleteNamespaceWhenDone)
          → check-and-delete-org            (deleteOrgWhenDone)

When the job still has documents the job row is left in place: every
per-document delete run carries ``deleteJobWhenDone`` and the last one to
finish removes the job and fixes the counters.

The namespace / organization emptiness check and the delete run in the
same transaction, as the last statements of their step.  A row created
concurrently between the check and the delete is not seen; see DESIGN.md.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, selectinload, sessionmaker

from corpusflow.config import settings
from corpusflow.db.models import Document, DocumentStatus, IngestJob, IngestJobStatus, Namespace, Organization
from corpusflow.db.session import session_scope
from corpusflow.ingestion.materializer import chunk_list
from corpusflow.schemas import DeleteDocumentBody, DeleteIngestJobBody
from corpusflow.workflow.client import DELETE_INGEST_JOB_WORKFLOW, WorkflowClient
from corpusflow.workflow.context import Workflow, WorkflowContext, serve

logger = logging.getLogger(__name__)


# ── Step bodies ───────────────────────────────────────────────────────


def load_deletion_config(session: Session, body: DeleteIngestJobBody) -> dict[str, Any]:
    job = session.scalar(
        select(IngestJob).where(IngestJob.id == body.job_id).options(selectinload(IngestJob.namespace))
    )
    if job is None:
        return {"notFound": True, "shouldDeleteNamespace": False, "shouldDeleteOrg": False}
    return {
        "id": job.id,
        "tenantId": job.tenant_id,
        "payload": job.payload,
        "workflowRunsIds": list(job.workflow_runs_ids or []),
        "namespaceId": job.namespace_id,
        "organizationId": job.namespace.organization_id,
        "shouldDeleteNamespace": body.delete_namespace_when_done,
        "shouldDeleteOrg": body.delete_org_when_done,
    }


def cancel_sibling_runs(client: WorkflowClient, run_ids: list[str], current_run_id: str) -> list[str]:
    """Cancel every run of the job except the one executing this cascade.

    Cancellation is best effort: a transport error is logged and the
    cascade carries on.
    """
    ids_to_cancel = [run_id for run_id in run_ids if run_id != current_run_id]
    if not ids_to_cancel:
        return []
    try:
        client.cancel(ids_to_cancel)
    except httpx.HTTPError:
        logger.warning("Cancelling %d workflow runs failed; continuing", len(ids_to_cancel), exc_info=True)
    return ids_to_cancel


def enqueue_delete_documents(
    session_factory: sessionmaker[Session],
    client: WorkflowClient,
    document_ids: list[str],
    *,
    delete_namespace_when_done: bool,
    delete_org_when_done: bool,
) -> list[str]:
    """Mark a batch DELETING, trigger its delete runs and record the run ids.

    The two database writes are separate short transactions; the trigger
    call between them runs with no transaction open.
    """
    with session_scope(session_factory) as session:
        session.execute(
            update(Document).where(Document.id.in_(document_ids)).values(status=DocumentStatus.DELETING)
        )

    run_ids = client.trigger_delete_document_jobs(
        [
            DeleteDocumentBody(
                document_id=document_id,
                delete_job_when_done=True,
                delete_namespace_when_done=delete_namespace_when_done,
                delete_org_when_done=delete_org_when_done,
            )
            for document_id in document_ids
        ]
    )
    doc_id_to_run_id = dict(zip(document_ids, run_ids))

    with session_scope(session_factory) as session:
        for document in session.scalars(select(Document).where(Document.id.in_(document_ids))):
            document.workflow_runs_ids = [*document.workflow_runs_ids, doc_id_to_run_id[document.id]]
    return run_ids


def delete_job_row(session: Session, job_id: str, namespace_id: str, organization_id: str) -> bool:
    """Delete the job and decrement both ``total_ingest_jobs`` counters by one."""
    result = session.execute(delete(IngestJob).where(IngestJob.id == job_id))
    if result.rowcount == 0:
        logger.info("Ingest job %s already deleted", job_id)
        return False

    session.execute(
        update(Namespace)
        .where(Namespace.id == namespace_id)
        .values(total_ingest_jobs=Namespace.total_ingest_jobs - 1)
    )
    session.execute(
        update(Organization)
        .where(Organization.id == organization_id)
        .values(total_ingest_jobs=Organization.total_ingest_jobs - 1)
    )
    return True


def delete_namespace_if_empty(session: Session, namespace_id: str, organization_id: str) -> bool:
    remaining = session.scalar(select(IngestJob.id).where(IngestJob.namespace_id == namespace_id).limit(1))
    if remaining is not None:
        logger.info("Namespace %s still has ingest jobs; keeping it", namespace_id)
        return False

    result = session.execute(delete(Namespace).where(Namespace.id == namespace_id))
    if result.rowcount == 0:
        logger.info("Namespace %s already deleted", namespace_id)
        return False
    session.execute(
        update(Organization)
        .where(Organization.id == organization_id)
        .values(total_namespaces=Organization.total_namespaces - 1)
    )
    return True


def delete_organization_if_empty(session: Session, organization_id: str) -> bool:
    remaining = session.scalar(select(Namespace.id).where(Namespace.organization_id == organization_id).limit(1))
    if remaining is not None:
        logger.info("Organization %s still has namespaces; keeping it", organization_id)
        return False

    result = session.execute(delete(Organization).where(Organization.id == organization_id))
    if result.rowcount == 0:
        # Another cascade for a sibling job got here first.
        logger.info("Organization %s already deleted", organization_id)
    return True


# ── Workflow ──────────────────────────────────────────────────────────


def build_delete_ingest_job_workflow(client: WorkflowClient) -> Workflow:
    """Return the deletion cascade workflow bound to *client*."""

    @serve(DELETE_INGEST_JOB_WORKFLOW)
    def delete_ingest_job(context: WorkflowContext) -> None:
        body = DeleteIngestJobBody.model_validate(context.request_payload)

        data = context.run("get-config", lambda session: load_deletion_config(session, body))
        if data.get("notFound"):
            logger.info("Ingest job %s not found; nothing to delete", body.job_id)
            return

        job_id = data["id"]
        namespace_id = data["namespaceId"]
        organization_id = data["organizationId"]

        context.run(
            "update-status-deleting",
            lambda session: session.execute(
                update(IngestJob).where(IngestJob.id == job_id).values(status=IngestJobStatus.DELETING)
            ).rowcount,
        )

        context.run(
            "cancel-ingest-job-workflows",
            lambda: cancel_sibling_runs(client, data["workflowRunsIds"], context.workflow_run_id),
            transactional=False,
        )

        document_ids = context.run(
            "get-documents",
            lambda session: list(
                session.scalars(
                    select(Document.id)
                    .where(Document.ingest_job_id == job_id)
                    .order_by(Document.created_at, Document.id)
                )
            ),
        )

        if document_ids:
            batches = chunk_list(document_ids, settings.delete_batch_size)
            for i, batch in enumerate(batches):
                context.run(
                    f"enqueue-delete-documents-{i}",
                    lambda batch=batch: enqueue_delete_documents(
                        context.session_factory,
                        client,
                        batch,
                        delete_namespace_when_done=data["shouldDeleteNamespace"],
                        delete_org_when_done=data["shouldDeleteOrg"],
                    ),
                    transactional=False,
                )
            logger.info(
                "Enqueued deletion of %d documents in %d batches for ingest job %s",
                len(document_ids),
                len(batches),
                job_id,
            )
            return

        context.run(
            "delete-ingest-job",
            lambda session: delete_job_row(session, job_id, namespace_id, organization_id),
        )

        if data["shouldDeleteNamespace"]:
            context.run(
                "check-and-delete-namespace",
                lambda session: delete_namespace_if_empty(session, namespace_id, organization_id),
            )

        if data["shouldDeleteOrg"]:
            context.run(
                "check-and-delete-org",
                lambda session: delete_organization_if_empty(session, organization_id),
            )

    return delete_ingest_job
