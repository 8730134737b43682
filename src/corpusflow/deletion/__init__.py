"""
Deletion — cascade workflow that tears down an ingest job and, when asked
and when they become empty, its namespace and organization.
"""

from corpusflow.deletion.workflow import build_delete_ingest_job_workflow

__all__ = ["build_delete_ingest_job_workflow"]
