"""Rebuild content nodes from vector metadata.

The indexer stores each node serialised as JSON under ``_node_content``,
next to the node's flattened metadata.  Reserved bookkeeping keys are not
part of the user-visible metadata.
"""

from __future__ import annotations

import json
from typing import Any

from corpusflow.errors import NodeParseError
from corpusflow.retrieval.models import ContentNode

NODE_CONTENT_KEY = "_node_content"

_RESERVED_KEYS = {NODE_CONTENT_KEY, "_node_type", "document_id", "doc_id", "ref_doc_id"}


def metadata_dict_to_node(metadata: dict[str, Any] | None) -> ContentNode:
    """Parse *metadata* into a :class:`ContentNode`.

    Raises
    ------
    NodeParseError
        When ``_node_content`` is missing, not valid JSON, or has no text.
    """
    if not metadata or not metadata.get(NODE_CONTENT_KEY):
        raise NodeParseError("match has no node content")

    raw = metadata[NODE_CONTENT_KEY]
    try:
        content = json.loads(raw) if isinstance(raw, str) else raw
    except json.JSONDecodeError as exc:
        raise NodeParseError(f"node content is not valid JSON: {exc}") from exc

    if not isinstance(content, dict) or not isinstance(content.get("text"), str):
        raise NodeParseError("node content has no text")

    flat = {k: v for k, v in metadata.items() if k not in _RESERVED_KEYS}
    return ContentNode(
        id=content.get("id_"),
        text=content["text"],
        metadata={**flat, **(content.get("metadata") or {})},
        relationships=content.get("relationships") or {},
    )
