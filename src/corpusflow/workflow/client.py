"""Trigger and cancel API for durable workflow runs.

The orchestrators never start child work directly; they go through a
:class:`WorkflowClient`.  :class:`QStashWorkflowClient` talks to an Upstash
QStash-compatible workflow service over HTTP and declares per-workflow
flow control (concurrency and rate caps) on every trigger.  Tests inject a
fake subclass instead.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import httpx

from corpusflow.config import settings
from corpusflow.errors import DispatchError
from corpusflow.schemas import (
    DeleteDocumentBody,
    DeleteIngestJobBody,
    TriggerDocumentJobBody,
    TriggerIngestionJobBody,
)

logger = logging.getLogger(__name__)


# ── Workflow names (route suffixes) ───────────────────────────────────

INGEST_WORKFLOW = "ingest"
DELETE_INGEST_JOB_WORKFLOW = "delete-ingest-job"
PROCESS_DOCUMENT_WORKFLOW = "process-document"
DELETE_DOCUMENT_WORKFLOW = "delete-document"


@dataclass(frozen=True)
class FlowControl:
    """Admission limits the workflow service enforces for one key."""

    key: str
    parallelism: int
    rate: int
    period: str = "1s"

    def header_value(self) -> str:
        return f"parallelism={self.parallelism}, rate={self.rate}, period={self.period}"


INGEST_FLOW_CONTROL = FlowControl(
    key="ingest-job",
    parallelism=settings.ingest_parallelism,
    rate=settings.ingest_rate,
    period=settings.ingest_period,
)
DELETE_FLOW_CONTROL = FlowControl(
    key="delete-ingest-job",
    parallelism=settings.delete_parallelism,
    rate=settings.delete_rate,
    period=settings.delete_period,
)


class WorkflowClient(ABC):
    """Backend-agnostic trigger / cancel interface.

    Subclasses implement :meth:`trigger` and :meth:`cancel`; the typed
    helpers below build the request bodies and pick the flow control.
    """

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def trigger(self, workflow: str, body: dict[str, Any], *, flow_control: FlowControl | None = None) -> str:
        """Start one run of *workflow* with *body*; return its workflow run id.

        Raises
        ------
        DispatchError
            When the run could not be started.
        """
        ...

    @abstractmethod
    def cancel(self, ids: Sequence[str]) -> None:
        """Cancel the given runs.  Best effort; finished ids are ignored."""
        ...

    # -- typed helpers --------------------------------------------------------

    def trigger_ingest_job(self, job_id: str) -> str:
        body = TriggerIngestionJobBody(job_id=job_id).to_wire()
        return self.trigger(INGEST_WORKFLOW, body, flow_control=INGEST_FLOW_CONTROL)

    def trigger_reingest_job(self, job_id: str) -> str:
        # Resync reuses the ingestion workflow; it branches on the job status.
        return self.trigger_ingest_job(job_id)

    def trigger_delete_ingest_job(self, body: DeleteIngestJobBody) -> str:
        return self.trigger(DELETE_INGEST_JOB_WORKFLOW, body.to_wire(), flow_control=DELETE_FLOW_CONTROL)

    def trigger_document_job(self, document_id: str) -> str:
        body = TriggerDocumentJobBody(document_id=document_id).to_wire()
        return self.trigger(PROCESS_DOCUMENT_WORKFLOW, body, flow_control=INGEST_FLOW_CONTROL)

    def trigger_delete_document_jobs(self, bodies: Sequence[DeleteDocumentBody]) -> list[str]:
        """Batched delete trigger; one run id per body, in input order."""
        if not bodies:
            return []
        with ThreadPoolExecutor(max_workers=min(len(bodies), 10)) as pool:
            return list(
                pool.map(
                    lambda b: self.trigger(DELETE_DOCUMENT_WORKFLOW, b.to_wire(), flow_control=DELETE_FLOW_CONTROL),
                    bodies,
                )
            )


class QStashWorkflowClient(WorkflowClient):
    """HTTP client for a QStash-compatible workflow service.

    Parameters
    ----------
    base_url:
        Workflow service URL (``settings.qstash_url``).
    token:
        Bearer token for the service.
    callback_base_url:
        Public base URL of this deployment; runs are delivered to
        ``{callback_base_url}/workflows/{workflow}``.
    timeout:
        Per-request timeout in seconds.  Cancellation never waits longer.
    """

    def __init__(
        self,
        base_url: str = settings.qstash_url,
        *,
        token: str = settings.qstash_token,
        callback_base_url: str = settings.workflow_base_url,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._callback_base_url = callback_base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    def workflow_url(self, workflow: str) -> str:
        return f"{self._callback_base_url}/workflows/{workflow}"

    def trigger(self, workflow: str, body: dict[str, Any], *, flow_control: FlowControl | None = None) -> str:
        run_id = f"wfr_{uuid4().hex}"
        headers = {"Content-Type": "application/json", "Upstash-Workflow-RunId": run_id}
        if flow_control is not None:
            headers["Upstash-Flow-Control-Key"] = flow_control.key
            headers["Upstash-Flow-Control-Value"] = flow_control.header_value()

        try:
            response = self._client.post(f"/v2/trigger/{self.workflow_url(workflow)}", json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DispatchError(f"Failed to trigger {workflow} workflow: {exc}") from exc

        data = response.json() if response.content else {}
        return data.get("workflowRunId", run_id)

    def cancel(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        response = self._client.request("DELETE", "/v2/workflows/runs", json={"workflowRunIds": list(ids)})
        if response.status_code == 404:
            logger.info("Workflow runs already finished: %s", ", ".join(ids))
            return
        response.raise_for_status()

    def close(self) -> None:
        self._client.close()
