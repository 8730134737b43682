"""FastAPI application: workflow delivery endpoints and the public search API."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session, sessionmaker

from corpusflow.config import settings
from corpusflow.db.models import Namespace
from corpusflow.db.session import make_session_factory
from corpusflow.deletion.workflow import build_delete_ingest_job_workflow
from corpusflow.errors import CorpusflowError, InvalidJobStateError, NotFoundError, RetrievalError
from corpusflow.ingestion.jobs import create_ingest_job, delete_ingest_job, reingest_job
from corpusflow.ingestion.workflow import build_ingest_workflow
from corpusflow.retrieval.models import QueryOptions
from corpusflow.retrieval.pipeline import NamespaceRetriever
from corpusflow.schemas import IngestJobPayload
from corpusflow.workflow.client import QStashWorkflowClient, WorkflowClient

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="corpusflow API",
    version="0.1.0",
    description="Durable ingestion workflows and namespace-scoped semantic search.",
)


# ── Dependencies ──────────────────────────────────────────────────────
@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    return make_session_factory(create_tables=True)


@lru_cache
def get_workflow_client() -> WorkflowClient:
    return QStashWorkflowClient()


def get_retriever() -> NamespaceRetriever:
    return NamespaceRetriever()


SessionFactoryDep = Annotated[sessionmaker[Session], Depends(get_session_factory)]
WorkflowClientDep = Annotated[WorkflowClient, Depends(get_workflow_client)]
RetrieverDep = Annotated[NamespaceRetriever, Depends(get_retriever)]


# ── Request / Response schemas ────────────────────────────────────────
class CreateIngestJobRequest(BaseModel):
    """Body of ``POST /v1/namespace/{id}/ingest-jobs``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    payload: IngestJobPayload
    tenant_id: str | None = None


class SearchRequest(QueryOptions):
    """Search body; the tenant comes from the ``x-tenant-id`` header."""


# ── Error mapping ─────────────────────────────────────────────────────
_ERROR_CODES: dict[type[CorpusflowError], tuple[int, str]] = {
    NotFoundError: (404, "not_found"),
    InvalidJobStateError: (400, "bad_request"),
    RetrievalError: (500, "internal_server_error"),
}


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": {"code": code, "message": message}})


@app.exception_handler(CorpusflowError)
async def corpusflow_error_handler(request: Request, exc: CorpusflowError) -> JSONResponse:
    status_code, code = _ERROR_CODES.get(type(exc), (500, "internal_server_error"))
    return _error_response(status_code, code, str(exc))


# ── Routes ────────────────────────────────────────────────────────────
@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@app.post("/workflows/ingest")
def ingest_workflow(
    body: dict[str, Any],
    session_factory: SessionFactoryDep,
    client: WorkflowClientDep,
    upstash_workflow_runid: Annotated[str, Header()],
) -> dict[str, str]:
    """Deliver (or re-deliver) one run of the ingestion workflow."""
    build_ingest_workflow(client)(session_factory, body, upstash_workflow_runid)
    return {"status": "ok"}


@app.post("/workflows/delete-ingest-job")
def delete_ingest_job_workflow(
    body: dict[str, Any],
    session_factory: SessionFactoryDep,
    client: WorkflowClientDep,
    upstash_workflow_runid: Annotated[str, Header()],
) -> dict[str, str]:
    """Deliver (or re-deliver) one run of the deletion cascade."""
    build_delete_ingest_job_workflow(client)(session_factory, body, upstash_workflow_runid)
    return {"status": "ok"}


@app.post("/v1/namespace/{namespace_id}/ingest-jobs", status_code=201)
def create_job(
    namespace_id: str,
    request: CreateIngestJobRequest,
    session_factory: SessionFactoryDep,
    client: WorkflowClientDep,
) -> dict[str, Any]:
    job_id = create_ingest_job(
        session_factory,
        client,
        namespace_id=namespace_id,
        payload=request.payload,
        tenant_id=request.tenant_id,
    )
    return {"success": True, "data": {"id": job_id}}


@app.delete("/v1/namespace/{namespace_id}/ingest-jobs/{job_id}")
def delete_job(
    namespace_id: str,
    job_id: str,
    session_factory: SessionFactoryDep,
    client: WorkflowClientDep,
) -> dict[str, Any]:
    run_id = delete_ingest_job(session_factory, client, job_id, namespace_id=namespace_id)
    return {"success": True, "data": {"id": job_id, "workflowRunId": run_id}}


@app.post("/v1/namespace/{namespace_id}/ingest-jobs/{job_id}/re-ingest")
def reingest(
    namespace_id: str,
    job_id: str,
    session_factory: SessionFactoryDep,
    client: WorkflowClientDep,
) -> dict[str, Any]:
    run_id = reingest_job(session_factory, client, job_id, namespace_id=namespace_id)
    return {"success": True, "data": {"id": job_id, "workflowRunId": run_id}}


@app.post("/v1/namespace/{namespace_id}/search")
def search(
    namespace_id: str,
    request: SearchRequest,
    session_factory: SessionFactoryDep,
    retriever: RetrieverDep,
    x_tenant_id: Annotated[str | None, Header()] = None,
) -> dict[str, Any]:
    """Semantic search over one namespace."""
    with session_factory() as session:
        namespace = session.get(Namespace, namespace_id)
        if namespace is None:
            raise NotFoundError(f"Namespace {namespace_id} not found")
        session.expunge(namespace)

    options = request.model_copy(update={"tenant_id": x_tenant_id or request.tenant_id})
    data = retriever.query(namespace, options)
    if data is None:
        raise RetrievalError("Failed to parse vector store results")

    return {
        "success": True,
        "data": [r.model_dump(by_alias=True, exclude_none=True) for r in data.results],
    }


def main() -> None:
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
