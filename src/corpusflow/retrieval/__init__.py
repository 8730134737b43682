"""
Retrieval — namespace-scoped vector search with optional re-ranking.

Queries go to one tenant-scoped index partition per namespace; the API
layer only sees :class:`QueryOptions` in and :class:`QueryResult` out.

Public surface
--------------
- :class:`NamespaceRetriever` / :func:`query_vector_store` — the query pipeline.
- :class:`VectorStoreBase` — abstract backend (subclass for Pinecone, etc.).
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`QueryOptions`, :class:`QueryResult`, :class:`FormattedResult` — data models.
- :func:`namespace_key` — tenant-scoped index partition key.
"""

from corpusflow.retrieval.base import VectorStoreBase, namespace_key
from corpusflow.retrieval.models import FormattedResult, QueryOptions, QueryResult
from corpusflow.retrieval.pipeline import NamespaceRetriever, query_vector_store

__all__ = [
    "ChromaVectorStore",
    "FormattedResult",
    "NamespaceRetriever",
    "QueryOptions",
    "QueryResult",
    "VectorStoreBase",
    "namespace_key",
    "query_vector_store",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from corpusflow.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
