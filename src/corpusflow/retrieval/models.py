"""Domain models for vector queries, parsed content nodes and search results."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class VectorMatch(BaseModel):
    """One nearest-neighbour hit returned by a vector index."""

    id: str
    score: float | None = None
    metadata: dict[str, Any] | None = None


class VectorQueryResponse(BaseModel):
    matches: list[VectorMatch] = Field(default_factory=list)


class ContentNode(BaseModel):
    """A text node reconstructed from the metadata stored next to its vector.

    Attributes
    ----------
    id:
        Node identifier inside the indexing framework.
    text:
        The chunk text.
    metadata:
        User / document metadata attached at indexing time.
    relationships:
        Links to the source document and neighbouring nodes.
    """

    id: str | None = None
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    relationships: dict[str, Any] = Field(default_factory=dict)


class ParsedResult(BaseModel):
    """A match whose metadata parsed into a :class:`ContentNode`."""

    id: str
    node: ContentNode
    score: float | None = None
    rerank_score: float | None = None


class QueryOptions(BaseModel):
    """Parameters of one retrieval request.

    ``min_score`` is inclusive: a match scoring exactly ``min_score`` is kept.
    ``rerank_limit`` defaults to ``top_k`` when re-ranking is requested.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    query: str
    top_k: int = Field(default=10, ge=1, le=100)
    tenant_id: str | None = None
    min_score: float | None = None
    filter: dict[str, Any] | None = None
    include_metadata: bool = True
    include_relationships: bool = False
    rerank: bool = False
    rerank_limit: int | None = Field(default=None, ge=1)


class FormattedResult(BaseModel):
    """One result as returned to API callers.

    ``score`` is the raw vector-index similarity; ``rerank_score`` comes from
    the re-ranking service on its own scale and is not comparable to it.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    text: str
    metadata: dict[str, Any] | None = None
    relationships: dict[str, Any] | None = None
    score: float | None = None
    rerank_score: float | None = None


class QueryResult(BaseModel):
    """Pipeline output.  ``unordered_ids`` is set only when results were re-ranked."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    query: str
    results: list[FormattedResult] = Field(default_factory=list)
    unordered_ids: list[str] | None = None
