"""
Workflow — durable step runner and the trigger / cancel client.

Public surface
--------------
- :class:`WorkflowContext` — checkpointed ``run(step_name, fn)``.
- :class:`Workflow` / :func:`serve` — handler + failure function.
- :class:`WorkflowClient` — abstract trigger / cancel API.
- :class:`QStashWorkflowClient` — HTTP implementation.
"""

from corpusflow.workflow.client import (
    DELETE_FLOW_CONTROL,
    INGEST_FLOW_CONTROL,
    FlowControl,
    QStashWorkflowClient,
    WorkflowClient,
)
from corpusflow.workflow.context import Workflow, WorkflowContext, serve

__all__ = [
    "DELETE_FLOW_CONTROL",
    "FlowControl",
    "INGEST_FLOW_CONTROL",
    "QStashWorkflowClient",
    "Workflow",
    "WorkflowClient",
    "WorkflowContext",
    "serve",
]
