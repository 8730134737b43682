"""Namespace-configured embedding models.

A namespace's ``embedding_config`` looks like::

    {"provider": "OPENAI", "model": "text-embedding-3-small",
     "apiKey": "...", "dimensions": 512}

A namespace without a config uses the default HuggingFace model from the
settings.  Provider-specific options (``encode_kwargs`` for HuggingFace,
``dimensions`` for OpenAI) are applied when the model is built.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal

from corpusflow.config import settings
from corpusflow.errors import ConfigurationError

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

    from corpusflow.db.models import Namespace

logger = logging.getLogger(__name__)

InputType = Literal["query", "document"]


def get_embedding_provider_options(namespace: Namespace, input_type: InputType) -> dict[str, Any]:
    """Constructor options for the namespace's embedding provider."""
    config = namespace.embedding_config or {}
    provider = config.get("provider", "HUGGINGFACE")

    match provider:
        case "HUGGINGFACE":
            encode_kwargs = {"normalize_embeddings": True, **config.get("options", {})}
            key = "query_encode_kwargs" if input_type == "query" else "encode_kwargs"
            return {key: encode_kwargs}
        case "OPENAI":
            return {"dimensions": config["dimensions"]} if config.get("dimensions") else {}
        case _:
            raise ConfigurationError(f"Unknown embedding provider: {provider}")


def get_namespace_embedding_model(namespace: Namespace, input_type: InputType = "query") -> Embeddings:
    """Build the LangChain embedding model configured for *namespace*."""
    config = namespace.embedding_config or {}
    provider = config.get("provider", "HUGGINGFACE")
    options = get_embedding_provider_options(namespace, input_type)

    match provider:
        case "HUGGINGFACE":
            from langchain_huggingface import HuggingFaceEmbeddings

            return HuggingFaceEmbeddings(model_name=config.get("model", settings.embedding_model), **options)
        case "OPENAI":
            from langchain_openai import OpenAIEmbeddings

            api_key = config.get("apiKey") or settings.openai_api_key
            if not api_key:
                raise ConfigurationError(f"Namespace {namespace.id} uses OPENAI embeddings without an API key")
            return OpenAIEmbeddings(model=config.get("model", "text-embedding-3-small"), api_key=api_key, **options)
        case _:
            raise ConfigurationError(f"Unknown embedding provider: {provider}")
