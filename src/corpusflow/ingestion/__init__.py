"""
Ingestion — turns ingest jobs into documents and dispatches their processing.

Public surface
--------------
- :class:`DocumentMaterializer` — payload → Document rows, in bounded batches.
- :func:`build_ingest_workflow` — the durable ingestion workflow.
- :func:`create_ingest_job`, :func:`delete_ingest_job`, :func:`reingest_job`,
  :func:`delete_namespace` — request-side job operations.
"""

from corpusflow.ingestion.jobs import create_ingest_job, delete_ingest_job, delete_namespace, reingest_job
from corpusflow.ingestion.materializer import DocumentMaterializer, chunk_list
from corpusflow.ingestion.workflow import build_ingest_workflow

__all__ = [
    "DocumentMaterializer",
    "build_ingest_workflow",
    "chunk_list",
    "create_ingest_job",
    "delete_ingest_job",
    "delete_namespace",
    "reingest_job",
]
