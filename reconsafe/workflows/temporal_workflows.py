"""Temporal workflow definitions for ReconSafe."""
from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from reconsafe.workflows.temporal_activities import (
        drift_detection_activity,
        expire_stale_suggestions_activity,
        repair_allocations_activity,
    )


DEFAULT_RETRY = RetryPolicy(
    initial_interval=timedelta(seconds=1),
    backoff_coefficient=2.0,
    maximum_interval=timedelta(seconds=30),
    maximum_attempts=5,
)


@workflow.defn
class DriftMonitoringWorkflow:
    """
    Periodic safety pass for one tenant:
    time out stale suggestions, detect drift and govern, repair allocations.
    """

    @workflow.run
    async def run(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        expired = {"expired": 0}
        if payload.get("expire_after_hours"):
            expired = await workflow.execute_activity(
                expire_stale_suggestions_activity,
                payload,
                start_to_close_timeout=timedelta(seconds=60),
                retry_policy=DEFAULT_RETRY,
            )

        detection = await workflow.execute_activity(
            drift_detection_activity,
            payload,
            start_to_close_timeout=timedelta(seconds=120),
            retry_policy=DEFAULT_RETRY,
        )

        repair = await workflow.execute_activity(
            repair_allocations_activity,
            payload,
            start_to_close_timeout=timedelta(seconds=60),
            retry_policy=DEFAULT_RETRY,
        )

        return {
            "tenant_id": payload.get("tenant_id"),
            "expired": expired.get("expired", 0),
            "detection": detection,
            "repaired": repair.get("repaired", 0),
        }
