"""Turn one ingest job payload into Document rows.

Single-item payloads (TEXT, FILE, MANAGED_FILE) create one document in the
``create-documents`` step.  Bulk payloads (MANAGED_FILES, URLS) are split
into chunks of ``settings.document_batch_size``; every chunk is its own
step (``create-documents-{i}``) and its own transaction, and chunks run
strictly one after another so a replay resumes at the first chunk that
has no checkpoint.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import ValidationError
from sqlalchemy.orm import Session

from corpusflow.config import settings
from corpusflow.db.models import Document, DocumentStatus
from corpusflow.errors import PayloadValidationError
from corpusflow.schemas import (
    FilePayload,
    FileSource,
    IngestJobPayload,
    ManagedFilePayload,
    ManagedFileSource,
    ManagedFilesPayload,
    TextPayload,
    TextSource,
    UrlsPayload,
    ingest_job_payload_adapter,
)
from corpusflow.workflow.context import WorkflowContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunk_list(items: Sequence[T], size: int) -> list[list[T]]:
    """Split *items* into consecutive lists of at most *size* elements."""
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def parse_payload(raw: dict[str, Any]) -> IngestJobPayload:
    """Validate a stored job payload into its tagged variant."""
    try:
        return ingest_job_payload_adapter.validate_python(raw)
    except ValidationError as exc:
        raise PayloadValidationError(f"Invalid ingest job payload (type={raw.get('type')!r}): {exc}") from exc


class DocumentMaterializer:
    """Creates the documents of one ingest job through checkpointed steps.

    Parameters
    ----------
    context:
        Step runner of the current ingestion run.
    job:
        The job snapshot returned by the ``get-config`` step
        (``id``, ``tenantId``, ``payload``).
    batch_size:
        Documents per bulk creation step (defaults to settings).
    """

    def __init__(self, context: WorkflowContext, job: dict[str, Any], *, batch_size: int | None = None) -> None:
        self.context = context
        self.job = job
        self.batch_size = batch_size or settings.document_batch_size

    def materialize(self) -> list[str]:
        """Create every document for the job and return their ids in payload order."""
        payload = parse_payload(self.job["payload"])

        match payload:
            case TextPayload() | FilePayload() | ManagedFilePayload():
                return self.context.run("create-documents", lambda session: self._create_single(session, payload))
            case ManagedFilesPayload(files=files):
                rows = [(ManagedFileSource(key=f.key), f.name) for f in files]
                return self._create_in_batches(rows)
            case UrlsPayload(urls=urls):
                rows = [(FileSource(file_url=url), None) for url in urls]
                return self._create_in_batches(rows)
            case _:
                raise PayloadValidationError(f"Unhandled payload type: {type(payload).__name__}")

    # -- internals ------------------------------------------------------------

    def _new_document(self, source: TextSource | FileSource | ManagedFileSource, name: str | None, **extra: Any) -> Document:
        return Document(
            ingest_job_id=self.job["id"],
            tenant_id=self.job.get("tenantId"),
            name=name,
            source=source.to_wire(),
            status=DocumentStatus.QUEUED,
            queued_at=datetime.now(timezone.utc),
            workflow_runs_ids=[],
            **extra,
        )

    def _create_single(self, session: Session, payload: TextPayload | FilePayload | ManagedFilePayload) -> list[str]:
        match payload:
            case TextPayload(text=text, name=name):
                document = self._new_document(TextSource(text=text), name, total_characters=len(text))
            case FilePayload(file_url=file_url, name=name):
                document = self._new_document(FileSource(file_url=file_url), name)
            case ManagedFilePayload(key=key, name=name):
                document = self._new_document(ManagedFileSource(key=key), name)
            case _:
                raise PayloadValidationError(f"Unhandled payload type: {type(payload).__name__}")

        session.add(document)
        session.flush()
        return [document.id]

    def _create_in_batches(self, rows: list[tuple[FileSource | ManagedFileSource, str | None]]) -> list[str]:
        batches = chunk_list(rows, self.batch_size)
        document_ids: list[str] = []

        for i, batch in enumerate(batches):

            def _create_batch(session: Session, batch: list[tuple[Any, str | None]] = batch) -> list[str]:
                documents = [self._new_document(source, name) for source, name in batch]
                session.add_all(documents)
                session.flush()
                return [d.id for d in documents]

            document_ids.extend(self.context.run(f"create-documents-{i}", _create_batch))

        logger.info(
            "Created %d documents in %d batches for job %s", len(document_ids), len(batches), self.job["id"]
        )
        return document_ids
