"""Chroma implementation of the vector-index abstraction."""

from __future__ import annotations

import logging
import re
from typing import Any

import chromadb
from chromadb.errors import ChromaError

from corpusflow.config import settings
from corpusflow.retrieval.base import VectorStoreBase
from corpusflow.retrieval.models import VectorMatch, VectorQueryResponse

logger = logging.getLogger(__name__)

_OPERATORS = {"$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin"}


def collection_name_for(namespace: str) -> str:
    """Map a partition key to a valid Chroma collection name.

    Chroma names allow ``[a-zA-Z0-9._-]`` only, so the ``:`` separators of
    the key become ``--``.
    """
    name = re.sub(r"[^a-zA-Z0-9._-]", "-", namespace.replace(":", "--"))
    return name[:63]


def _build_chroma_where(filter: dict[str, Any] | None) -> dict[str, Any] | None:
    """Convert a ``{field: value | {"$op": value}}`` filter to Chroma ``where`` syntax."""
    if not filter:
        return None

    clauses: list[dict[str, Any]] = []
    for field, value in filter.items():
        if isinstance(value, dict):
            unknown = set(value) - _OPERATORS
            if unknown:
                raise ValueError(f"Unsupported filter operator: {sorted(unknown)[0]!r}")
            clauses.append({field: value})
        else:
            clauses.append({field: {"$eq": value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector index; one collection per partition key.

    Parameters
    ----------
    namespace:
        Tenant-scoped partition key.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    client:
        Pre-built Chroma client (tests, embedded mode).
    """

    def __init__(
        self,
        namespace: str,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        client: Any = None,
    ) -> None:
        super().__init__(namespace)
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collection_name = collection_name_for(namespace)

    def _get_collection(self) -> Any | None:
        """Look up the partition's collection; ``None`` when nothing was ever indexed into it."""
        try:
            return self._client.get_collection(self._collection_name)
        except (ValueError, ChromaError):
            # Older releases raise ValueError, newer ones a ChromaError subclass.
            logger.info("Chroma collection %s does not exist", self._collection_name)
            return None

    # -- VectorStoreBase overrides --------------------------------------------

    def query(
        self,
        vector: list[float],
        *,
        top_k: int,
        filter: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> VectorQueryResponse:
        collection = self._get_collection()
        if collection is None:
            return VectorQueryResponse(matches=[])

        include = ["distances", "metadatas"] if include_metadata else ["distances"]
        results = collection.query(
            query_embeddings=[vector],
            n_results=top_k,
            where=_build_chroma_where(filter),
            include=include,
        )

        ids = (results.get("ids") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0] if include_metadata else [None] * len(ids)

        matches: list[VectorMatch] = []
        for match_id, dist, meta in zip(ids, distances, metas):
            # Chroma returns distances; convert to a 0-1 similarity score.
            score = 1.0 / (1.0 + dist)
            matches.append(VectorMatch(id=match_id, score=score, metadata=dict(meta) if meta else None))
        return VectorQueryResponse(matches=matches)
