"""Request-side operations on ingest jobs.

These run synchronously in the API process: they validate the job's
current status, persist the new status, and start the durable workflow
that does the actual work.  Plan-limit admission checks happen before
these functions are called.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from corpusflow.db.models import DELETION_STATUSES, IngestJob, IngestJobStatus, Namespace, Organization
from corpusflow.db.session import session_scope
from corpusflow.errors import InvalidJobStateError, NotFoundError
from corpusflow.schemas import DeleteIngestJobBody, IngestJobPayload
from corpusflow.workflow.client import WorkflowClient

logger = logging.getLogger(__name__)

_BUSY_STATUSES = (IngestJobStatus.PRE_PROCESSING, IngestJobStatus.PROCESSING)


def _append_job_run_id(session_factory: sessionmaker[Session], job_id: str, run_id: str) -> None:
    with session_scope(session_factory) as session:
        job = session.get(IngestJob, job_id)
        if job is not None:
            job.workflow_runs_ids = [*job.workflow_runs_ids, run_id]


def _get_job(session: Session, job_id: str, namespace_id: str | None) -> IngestJob:
    query = select(IngestJob).where(IngestJob.id == job_id)
    if namespace_id is not None:
        query = query.where(IngestJob.namespace_id == namespace_id)
    job = session.scalar(query)
    if job is None:
        raise NotFoundError(f"Ingest job {job_id} not found")
    return job


def create_ingest_job(
    session_factory: sessionmaker[Session],
    client: WorkflowClient,
    *,
    namespace_id: str,
    payload: IngestJobPayload,
    tenant_id: str | None = None,
) -> str:
    """Insert a QUEUED job, bump the job counters and start ingestion.

    Returns the new job id.  If the ingestion workflow cannot be
    triggered the job is marked FAILED and the error re-raised.
    """
    now = datetime.now(timezone.utc)
    with session_scope(session_factory) as session:
        namespace = session.get(Namespace, namespace_id)
        if namespace is None:
            raise NotFoundError(f"Namespace {namespace_id} not found")

        job = IngestJob(
            namespace_id=namespace.id,
            tenant_id=tenant_id,
            payload=payload.to_wire(),
            status=IngestJobStatus.QUEUED,
            queued_at=now,
            workflow_runs_ids=[],
        )
        session.add(job)
        namespace.total_ingest_jobs += 1
        session.execute(
            update(Organization)
            .where(Organization.id == namespace.organization_id)
            .values(total_ingest_jobs=Organization.total_ingest_jobs + 1)
        )
        session.flush()
        job_id = job.id

    try:
        run_id = client.trigger_ingest_job(job_id)
    except Exception as exc:
        with session_scope(session_factory) as session:
            session.execute(
                update(IngestJob)
                .where(IngestJob.id == job_id)
                .values(status=IngestJobStatus.FAILED, error=str(exc), failed_at=datetime.now(timezone.utc))
            )
        raise

    _append_job_run_id(session_factory, job_id, run_id)
    logger.info("Created ingest job %s (%s) in namespace %s", job_id, payload.type, namespace_id)
    return job_id


def delete_ingest_job(
    session_factory: sessionmaker[Session],
    client: WorkflowClient,
    job_id: str,
    *,
    namespace_id: str | None = None,
    delete_namespace_when_done: bool = False,
    delete_org_when_done: bool = False,
) -> str:
    """Queue a job for deletion and start the cascade; returns the run id.

    Raises
    ------
    NotFoundError
        The job does not exist (in *namespace_id*, when given).
    InvalidJobStateError
        The job is already queued for or undergoing deletion.
    DispatchError
        The cascade could not be triggered; the job keeps its previous status.
    """
    with session_scope(session_factory) as session:
        job = _get_job(session, job_id, namespace_id)
        if job.status in DELETION_STATUSES:
            raise InvalidJobStateError(f"Ingest job {job_id} is already {job.status.value}")
        previous_status = job.status
        job.status = IngestJobStatus.QUEUED_FOR_DELETE

    try:
        run_id = client.trigger_delete_ingest_job(
            DeleteIngestJobBody(
                job_id=job_id,
                delete_namespace_when_done=delete_namespace_when_done,
                delete_org_when_done=delete_org_when_done,
            )
        )
    except Exception:
        # Restore the previous status so the delete can be retried.
        with session_scope(session_factory) as session:
            session.execute(
                update(IngestJob)
                .where(IngestJob.id == job_id, IngestJob.status == IngestJobStatus.QUEUED_FOR_DELETE)
                .values(status=previous_status)
            )
        raise

    # The cascade skips its own run id when cancelling the job's runs.
    _append_job_run_id(session_factory, job_id, run_id)
    return run_id


def reingest_job(
    session_factory: sessionmaker[Session],
    client: WorkflowClient,
    job_id: str,
    *,
    namespace_id: str | None = None,
) -> str:
    """Queue a job for resync and re-run ingestion; returns the run id."""
    with session_scope(session_factory) as session:
        job = _get_job(session, job_id, namespace_id)
        if job.status in _BUSY_STATUSES:
            raise InvalidJobStateError("Job is already being processed")
        if job.status in DELETION_STATUSES:
            raise InvalidJobStateError(f"Ingest job {job_id} is {job.status.value}")
        job.status = IngestJobStatus.QUEUED_FOR_RESYNC
        job.queued_at = datetime.now(timezone.utc)

    run_id = client.trigger_reingest_job(job_id)
    _append_job_run_id(session_factory, job_id, run_id)
    return run_id


def delete_namespace(
    session_factory: sessionmaker[Session],
    client: WorkflowClient,
    namespace_id: str,
) -> list[str]:
    """Delete a namespace together with all of its ingest jobs.

    An empty namespace is removed immediately.  Otherwise every job that is
    not already being deleted gets a cascade with
    ``deleteNamespaceWhenDone``; the last cascade to finish removes the
    namespace.  Returns the triggered run ids.
    """
    with session_scope(session_factory) as session:
        namespace = session.get(Namespace, namespace_id)
        if namespace is None:
            raise NotFoundError(f"Namespace {namespace_id} not found")

        jobs = list(session.scalars(select(IngestJob).where(IngestJob.namespace_id == namespace_id)))
        if not jobs:
            organization_id = namespace.organization_id
            session.execute(delete(Namespace).where(Namespace.id == namespace_id))
            session.execute(
                update(Organization)
                .where(Organization.id == organization_id)
                .values(total_namespaces=Organization.total_namespaces - 1)
            )
            logger.info("Deleted empty namespace %s", namespace_id)
            return []

        job_ids = [job.id for job in jobs if job.status not in DELETION_STATUSES]

    return [
        delete_ingest_job(session_factory, client, job_id, delete_namespace_when_done=True)
        for job_id in job_ids
    ]
