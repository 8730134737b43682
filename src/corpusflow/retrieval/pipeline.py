"""Namespace retrieval pipeline — embed, search, filter, parse, re-rank, format.

Usage::

    from corpusflow.retrieval.pipeline import query_vector_store
    from corpusflow.retrieval.models import QueryOptions

    result = query_vector_store(namespace, QueryOptions(query="What is KServe?", top_k=5))
    if result is None:
        ...  # matches came back but none could be parsed

``None`` and an empty ``results`` list are different outcomes: the first is
a pipeline failure, the second a legitimate "nothing matched".
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

from corpusflow.config import settings
from corpusflow.errors import ConfigurationError, NodeParseError
from corpusflow.retrieval.base import VectorStoreBase, namespace_key
from corpusflow.retrieval.embedding import get_namespace_embedding_model
from corpusflow.retrieval.models import FormattedResult, ParsedResult, QueryOptions, QueryResult, VectorMatch
from corpusflow.retrieval.nodes import metadata_dict_to_node
from corpusflow.retrieval.reranker import CohereReranker, RerankerBase

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from corpusflow.db.models import Namespace

logger = logging.getLogger(__name__)


def get_namespace_vector_store(namespace: Namespace, tenant_id: str | None = None) -> VectorStoreBase:
    """Open the vector index partition of *namespace* (and *tenant_id*)."""
    from corpusflow.retrieval.chroma_store import ChromaVectorStore

    key = namespace_key(namespace.id, tenant_id)
    config = namespace.vector_store_config
    if not config:
        return ChromaVectorStore(key)

    provider = config.get("provider")
    match provider:
        case "CHROMA":
            return ChromaVectorStore(
                key,
                host=config.get("host", settings.chroma_host),
                port=config.get("port", settings.chroma_port),
            )
        case _:
            raise ConfigurationError(f"Unknown vector store provider: {provider}")


def filter_by_min_score(matches: list[VectorMatch], min_score: float | None) -> list[VectorMatch]:
    """Keep matches with ``score >= min_score``; the boundary is inclusive."""
    if min_score is None:
        return matches
    return [m for m in matches if m.score is not None and m.score >= min_score]


def parse_matches(matches: list[VectorMatch]) -> list[ParsedResult]:
    """Parse every match into a node, dropping the ones that do not parse."""
    parsed: list[ParsedResult] = []
    for match in matches:
        try:
            node = metadata_dict_to_node(match.metadata)
        except NodeParseError as exc:
            logger.warning("Dropping match %s: %s", match.id, exc)
            continue
        parsed.append(ParsedResult(id=match.id, node=node, score=match.score))
    return parsed


def format_results(
    results: list[ParsedResult],
    *,
    include_metadata: bool = False,
    include_relationships: bool = False,
) -> list[FormattedResult]:
    return [
        FormattedResult(
            id=r.id,
            text=r.node.text,
            metadata=r.node.metadata if include_metadata else None,
            relationships=r.node.relationships if include_relationships else None,
            score=r.score,
            rerank_score=r.rerank_score,
        )
        for r in results
    ]


class NamespaceRetriever:
    """Runs retrieval queries against namespace-scoped vector indexes.

    Parameters
    ----------
    store_factory:
        ``(namespace, tenant_id) -> VectorStoreBase``.
    embedding_factory:
        ``(namespace) -> Embeddings``.
    reranker_factory:
        Builds the re-ranker, only when a request asks for re-ranking.
    """

    def __init__(
        self,
        *,
        store_factory: Callable[[Any, str | None], VectorStoreBase] = get_namespace_vector_store,
        embedding_factory: Callable[[Any], Embeddings] = get_namespace_embedding_model,
        reranker_factory: Callable[[], RerankerBase] = CohereReranker,
    ) -> None:
        self._store_factory = store_factory
        self._embedding_factory = embedding_factory
        self._reranker_factory = reranker_factory

    def query(self, namespace: Namespace, options: QueryOptions) -> QueryResult | None:
        """Run *options* against *namespace*.

        Returns ``None`` when the index returned matches and none of them
        could be parsed into a node.
        """
        # Model and index resolution are independent I/O.
        with ThreadPoolExecutor(max_workers=2) as pool:
            model_future = pool.submit(self._embedding_factory, namespace)
            store_future = pool.submit(self._store_factory, namespace, options.tenant_id)
            embedding_model = model_future.result()
            store = store_future.result()

        vector = embedding_model.embed_query(options.query)

        response = store.query(vector, top_k=options.top_k, filter=options.filter, include_metadata=True)
        matches = filter_by_min_score(response.matches, options.min_score)

        parsed = parse_matches(matches)
        if matches and not parsed:
            logger.error(
                "All %d matches for namespace %s failed to parse", len(matches), namespace.id
            )
            return None

        reranked: list[ParsedResult] | None = None
        if options.rerank:
            reranked = self._reranker_factory().rerank(
                parsed,
                query=options.query,
                limit=options.rerank_limit or options.top_k,
            )

        return QueryResult(
            query=options.query,
            unordered_ids=[r.id for r in parsed] if reranked is not None else None,
            results=format_results(
                reranked if reranked is not None else parsed,
                include_metadata=options.include_metadata,
                include_relationships=options.include_relationships,
            ),
        )


def query_vector_store(namespace: Namespace, options: QueryOptions) -> QueryResult | None:
    """Convenience wrapper around a default :class:`NamespaceRetriever`."""
    return NamespaceRetriever().query(namespace, options)
