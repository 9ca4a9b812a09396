"""Temporal runtime helpers for API integration."""
from __future__ import annotations

import os
from typing import Any, Dict, Optional

from temporalio.client import Client, WorkflowHandle
from temporalio.common import WorkflowIDReusePolicy

from reconsafe.workflows.temporal_workflows import DriftMonitoringWorkflow


def temporal_enabled() -> bool:
    return os.getenv("TEMPORAL_ENABLED", "false").lower() == "true"


def task_queue() -> str:
    return os.getenv("TEMPORAL_TASK_QUEUE", "reconsafe")


class TemporalRuntime:
    def __init__(self) -> None:
        self.address = os.getenv("TEMPORAL_ADDRESS", "localhost:7233")
        self.namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
        self.task_queue = task_queue()

    async def _client(self) -> Client:
        return await Client.connect(self.address, namespace=self.namespace)

    async def start_drift_monitoring(
        self,
        tenant_id: str,
        workflow_id: Optional[str] = None,
        wait: bool = False,
        expire_after_hours: Optional[int] = None,
    ) -> Dict[str, Any]:
        client = await self._client()
        payload: Dict[str, Any] = {"tenant_id": tenant_id}
        if expire_after_hours:
            payload["expire_after_hours"] = expire_after_hours
        workflow_id = workflow_id or f"drift-{tenant_id}-{os.urandom(4).hex()}"
        handle = await client.start_workflow(
            DriftMonitoringWorkflow.run,
            payload,
            id=workflow_id,
            task_queue=self.task_queue,
            id_reuse_policy=WorkflowIDReusePolicy.ALLOW_DUPLICATE,
        )
        if wait:
            result = await handle.result()
            return {"workflow_id": workflow_id, "result": result}
        return {"workflow_id": workflow_id, "status": "started"}

    async def get_status(self, workflow_id: str) -> Dict[str, Any]:
        client = await self._client()
        handle: WorkflowHandle = client.get_workflow_handle(workflow_id)
        desc = await handle.describe()
        return {
            "workflow_id": workflow_id,
            "status": str(desc.status),
            "start_time": desc.start_time,
            "close_time": desc.close_time,
        }
