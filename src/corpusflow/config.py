"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Database
    database_url: str = Field(
        default="sqlite:///./corpusflow.db",
        description="SQLAlchemy URL of the primary database",
    )

    # Vector store
    index_system_prefix: str = Field(
        default="corpusflow",
        description="Leading segment of every tenant-scoped index namespace key",
    )
    chroma_host: str = "localhost"
    chroma_port: int = 8000

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    openai_api_key: str = Field(default="", description="OpenAI API key for OPENAI embedding configs")

    # Re-ranking
    cohere_api_key: str = ""
    cohere_rerank_model: str = "rerank-v3.5"
    cohere_rerank_url: str = "https://api.cohere.com/v2/rerank"

    # Durable workflows
    qstash_url: str = "https://qstash.upstash.io"
    qstash_token: str = ""
    workflow_base_url: str = Field(
        default="http://localhost:3000",
        description="Public base URL the workflow service calls back into",
    )
    max_parallel_steps: int = 8

    # Batching
    document_batch_size: int = 20
    run_id_batch_size: int = 30
    delete_batch_size: int = 30

    # Flow control
    ingest_parallelism: int = 200
    ingest_rate: int = 100
    ingest_period: str = "1s"
    delete_parallelism: int = 50
    delete_rate: int = 5
    delete_period: str = "3s"

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Logging
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "CORPUSFLOW_"}


# Singleton: import `settings` wherever needed.
settings = Settings()
