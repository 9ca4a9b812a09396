"""Temporal worker entrypoint for ReconSafe workflows."""
from __future__ import annotations

import asyncio
import os

from temporalio.client import Client
from temporalio.worker import Worker

from reconsafe.workflows.temporal_activities import (
    drift_detection_activity,
    expire_stale_suggestions_activity,
    repair_allocations_activity,
)
from reconsafe.workflows.temporal_runtime import task_queue
from reconsafe.workflows.temporal_workflows import DriftMonitoringWorkflow


async def main() -> None:
    address = os.getenv("TEMPORAL_ADDRESS", "localhost:7233")
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")

    client = await Client.connect(address, namespace=namespace)

    worker = Worker(
        client,
        task_queue=task_queue(),
        workflows=[DriftMonitoringWorkflow],
        activities=[
            expire_stale_suggestions_activity,
            drift_detection_activity,
            repair_allocations_activity,
        ],
    )
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
