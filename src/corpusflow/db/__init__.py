"""
Persistence — SQLAlchemy models and transaction helpers.

Public surface
--------------
- :class:`Organization`, :class:`Namespace`, :class:`IngestJob`,
  :class:`Document` — the records the workflows operate on.
- :class:`WorkflowStep` — checkpoint log of the durable step runner.
- :func:`make_session_factory`, :func:`session_scope`.
"""

from corpusflow.db.models import (
    DELETION_STATUSES,
    Base,
    Document,
    DocumentStatus,
    IngestJob,
    IngestJobStatus,
    Namespace,
    Organization,
    WorkflowStep,
)
from corpusflow.db.session import make_session_factory, session_scope

__all__ = [
    "Base",
    "DELETION_STATUSES",
    "Document",
    "DocumentStatus",
    "IngestJob",
    "IngestJobStatus",
    "Namespace",
    "Organization",
    "WorkflowStep",
    "make_session_factory",
    "session_scope",
]
