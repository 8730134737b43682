"""Abstract base class for vector-index backends.

Adding a new backend only requires subclassing :class:`VectorStoreBase`
and implementing :meth:`~VectorStoreBase.query`.  The rest of the
retrieval stack is backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from corpusflow.config import settings
from corpusflow.retrieval.models import VectorQueryResponse


def namespace_key(namespace_id: str, tenant_id: str | None = None, *, system: str | None = None) -> str:
    """Index partition key ``"<system>:<namespaceId>[:<tenantId>]"``.

    Tenants of one namespace live in separate index partitions, so isolation
    does not depend on a filter predicate.
    """
    prefix = system or settings.index_system_prefix
    key = f"{prefix}:{namespace_id}"
    return f"{key}:{tenant_id}" if tenant_id else key


class VectorStoreBase(ABC):
    """Backend-agnostic vector-index interface.

    Parameters
    ----------
    namespace:
        Tenant-scoped partition key (see :func:`namespace_key`).
    """

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def query(
        self,
        vector: list[float],
        *,
        top_k: int,
        filter: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> VectorQueryResponse:
        """Return the *top_k* nearest matches to *vector* in this partition.

        Scores are similarities: higher means closer.

        Parameters
        ----------
        vector:
            Dense query embedding.
        top_k:
            Maximum number of matches.
        filter:
            Optional metadata filter, ``{field: value}`` for equality or
            ``{field: {"$op": value}}`` for other comparisons.
        include_metadata:
            Whether matches carry their stored metadata.
        """
        ...
