"""ORM models for organizations, namespaces, ingest jobs, documents and the
workflow checkpoint log.

Aggregate counters (``total_documents``, ``total_ingest_jobs``,
``total_namespaces``) live on the owning rows and are only ever changed in
the same transaction as the insert / delete they account for.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cuid() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    pass


class IngestJobStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    PRE_PROCESSING = "PRE_PROCESSING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    QUEUED_FOR_RESYNC = "QUEUED_FOR_RESYNC"
    QUEUED_FOR_DELETE = "QUEUED_FOR_DELETE"
    DELETING = "DELETING"


# Statuses from which a job may never move back into processing.
DELETION_STATUSES = (IngestJobStatus.QUEUED_FOR_DELETE, IngestJobStatus.DELETING)


class DocumentStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DELETING = "DELETING"


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_cuid)
    name: Mapped[str] = mapped_column(String(255))
    total_documents: Mapped[int] = mapped_column(Integer, default=0)
    total_namespaces: Mapped[int] = mapped_column(Integer, default=0)
    total_ingest_jobs: Mapped[int] = mapped_column(Integer, default=0)
    total_pages: Mapped[int] = mapped_column(Integer, default=0)
    pages_limit: Mapped[int] = mapped_column(Integer, default=1000)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    namespaces: Mapped[list[Namespace]] = relationship(back_populates="organization")


class Namespace(Base):
    __tablename__ = "namespaces"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_cuid)
    organization_id: Mapped[str] = mapped_column(ForeignKey("organizations.id"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255))
    embedding_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    vector_store_config: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    total_documents: Mapped[int] = mapped_column(Integer, default=0)
    total_ingest_jobs: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    organization: Mapped[Organization] = relationship(back_populates="namespaces")
    ingest_jobs: Mapped[list[IngestJob]] = relationship(back_populates="namespace")


class IngestJob(Base):
    __tablename__ = "ingest_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_cuid)
    namespace_id: Mapped[str] = mapped_column(ForeignKey("namespaces.id"), index=True)
    tenant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    status: Mapped[IngestJobStatus] = mapped_column(
        Enum(IngestJobStatus, native_enum=False), default=IngestJobStatus.QUEUED
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    workflow_runs_ids: Mapped[list[str]] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    queued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pre_processing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    namespace: Mapped[Namespace] = relationship(back_populates="ingest_jobs")
    documents: Mapped[list[Document]] = relationship(back_populates="ingest_job")


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_cuid)
    ingest_job_id: Mapped[str] = mapped_column(ForeignKey("ingest_jobs.id"), index=True)
    tenant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    source: Mapped[dict[str, Any]] = mapped_column(JSON)
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, native_enum=False), default=DocumentStatus.QUEUED
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    workflow_runs_ids: Mapped[list[str]] = mapped_column(JSON, default=list)

    total_chunks: Mapped[int] = mapped_column(Integer, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, default=0)
    total_characters: Mapped[int] = mapped_column(Integer, default=0)
    total_pages: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    queued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pre_processing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    ingest_job: Mapped[IngestJob] = relationship(back_populates="documents")


class WorkflowStep(Base):
    """One checkpointed step of a durable workflow run."""

    __tablename__ = "workflow_steps"
    __table_args__ = (UniqueConstraint("workflow_run_id", "name", name="uq_workflow_step_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_run_id: Mapped[str] = mapped_column(String(128), index=True)
    name: Mapped[str] = mapped_column(String(255))
    sequence: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(32), default="COMPLETED")
    result: Mapped[Any] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
