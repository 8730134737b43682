"""Optional re-ranking step applied after vector retrieval."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from corpusflow.config import settings
from corpusflow.retrieval.models import ParsedResult

logger = logging.getLogger(__name__)


class RerankerBase(ABC):
    """Re-orders parsed results by relevance to the query."""

    @abstractmethod
    def rerank(self, results: list[ParsedResult], *, query: str, limit: int) -> list[ParsedResult]:
        """Return at most *limit* of *results*, most relevant first.

        Every returned result carries ``rerank_score``; its ``score`` is
        left untouched.
        """
        ...


class CohereReranker(RerankerBase):
    """Cohere ``/v2/rerank`` client.

    Parameters
    ----------
    api_key:
        Cohere API key (defaults to settings).
    model:
        Rerank model identifier.
    timeout:
        Request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str = settings.cohere_api_key,
        *,
        model: str = settings.cohere_rerank_model,
        url: str = settings.cohere_rerank_url,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model
        self._url = url
        self._client = httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            transport=transport,
        )

    def rerank(self, results: list[ParsedResult], *, query: str, limit: int) -> list[ParsedResult]:
        if not results:
            return []

        response = self._client.post(
            self._url,
            json={
                "model": self.model,
                "query": query,
                "documents": [r.node.text for r in results],
                "top_n": min(limit, len(results)),
            },
        )
        response.raise_for_status()

        reranked: list[ParsedResult] = []
        for item in response.json().get("results", []):
            original = results[item["index"]]
            reranked.append(original.model_copy(update={"rerank_score": item["relevance_score"]}))

        logger.debug("Re-ranked %d candidates into %d results", len(results), len(reranked))
        return reranked
