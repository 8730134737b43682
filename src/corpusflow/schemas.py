"""Wire models for ingest job payloads, document sources and workflow bodies.

Payloads and sources are tagged unions discriminated on ``type``.  They are
persisted as JSON on the job / document rows with camelCase keys
(``fileUrl``), which is the format in-flight workflows replay against, so
field aliases here are part of the on-disk contract.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """Dump with camelCase keys, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ── Ingest job payload variants ───────────────────────────────────────


class TextPayload(_WireModel):
    type: Literal["TEXT"] = "TEXT"
    text: str
    name: str | None = None


class FilePayload(_WireModel):
    type: Literal["FILE"] = "FILE"
    file_url: str
    name: str | None = None


class ManagedFilePayload(_WireModel):
    type: Literal["MANAGED_FILE"] = "MANAGED_FILE"
    key: str
    name: str | None = None


class ManagedFileItem(_WireModel):
    key: str
    name: str | None = None


class ManagedFilesPayload(_WireModel):
    type: Literal["MANAGED_FILES"] = "MANAGED_FILES"
    files: list[ManagedFileItem]


class UrlsPayload(_WireModel):
    type: Literal["URLS"] = "URLS"
    urls: list[str]


IngestJobPayload = Annotated[
    Union[TextPayload, FilePayload, ManagedFilePayload, ManagedFilesPayload, UrlsPayload],
    Field(discriminator="type"),
]

ingest_job_payload_adapter: TypeAdapter[IngestJobPayload] = TypeAdapter(IngestJobPayload)


# ── Document source variants ──────────────────────────────────────────


class TextSource(_WireModel):
    type: Literal["TEXT"] = "TEXT"
    text: str


class FileSource(_WireModel):
    type: Literal["FILE"] = "FILE"
    file_url: str


class ManagedFileSource(_WireModel):
    type: Literal["MANAGED_FILE"] = "MANAGED_FILE"
    key: str


DocumentSource = Annotated[
    Union[TextSource, FileSource, ManagedFileSource],
    Field(discriminator="type"),
]

document_source_adapter: TypeAdapter[DocumentSource] = TypeAdapter(DocumentSource)


# ── Workflow request bodies ───────────────────────────────────────────


class TriggerIngestionJobBody(_WireModel):
    """Body of the ingestion workflow (initial run and resync)."""

    job_id: str


class DeleteIngestJobBody(_WireModel):
    """Body of the deletion cascade workflow."""

    job_id: str
    delete_namespace_when_done: bool = False
    delete_org_when_done: bool = False


class TriggerDocumentJobBody(_WireModel):
    """Body of the external per-document processing workflow."""

    document_id: str


class DeleteDocumentBody(_WireModel):
    """Body of the external per-document deletion workflow."""

    document_id: str
    delete_job_when_done: bool = False
    delete_namespace_when_done: bool = False
    delete_org_when_done: bool = False
