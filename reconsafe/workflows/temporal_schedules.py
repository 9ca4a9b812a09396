"""
Temporal schedules for periodic drift monitoring.

One schedule per tenant starts DriftMonitoringWorkflow on a cron. Supported
frequencies: hourly, daily, weekly.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Tuple

from temporalio.client import (
    Client,
    Schedule,
    ScheduleActionStartWorkflow,
    ScheduleAlreadyRunningError,
    ScheduleSpec,
    ScheduleState,
    ScheduleUpdate,
)

from reconsafe.workflows.temporal_runtime import task_queue
from reconsafe.workflows.temporal_workflows import DriftMonitoringWorkflow

logger = logging.getLogger(__name__)


def parse_time_of_day(time_str: Optional[str] = None) -> Tuple[int, int]:
    """Return (minute, hour); default from RECONSAFE_DRIFT_SCHEDULE_TIME or 02:00."""
    if not time_str:
        time_str = os.getenv("RECONSAFE_DRIFT_SCHEDULE_TIME", "02:00")
    parts = time_str.split(":")
    try:
        hour = int(parts[0])
        minute = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return 0, 2
    hour = max(0, min(23, hour))
    minute = max(0, min(59, minute))
    return minute, hour


def cron_from_frequency(frequency: str, time_of_day: Optional[str] = None) -> Optional[str]:
    minute, hour = parse_time_of_day(time_of_day)
    schedule_map = {
        "hourly": f"{minute} * * * *",
        "daily": f"{minute} {hour} * * *",
        "weekly": f"{minute} {hour} * * 1",
    }
    return schedule_map.get(frequency)


def schedule_id_for(tenant_id: str) -> str:
    return f"drift-monitoring-{tenant_id}"


class TemporalScheduleManager:
    def __init__(self) -> None:
        self.address = os.getenv("TEMPORAL_ADDRESS", "localhost:7233")
        self.namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
        self.task_queue = task_queue()

    def build_schedule(self, tenant_id: str, cron: str, expire_after_hours: Optional[int] = None) -> Schedule:
        payload: Dict[str, Any] = {"tenant_id": tenant_id}
        if expire_after_hours:
            payload["expire_after_hours"] = expire_after_hours
        return Schedule(
            action=ScheduleActionStartWorkflow(
                DriftMonitoringWorkflow.run,
                payload,
                id=f"drift-scheduled-{tenant_id}",
                task_queue=self.task_queue,
            ),
            spec=ScheduleSpec(cron_expressions=[cron]),
            state=ScheduleState(note=f"ReconSafe drift monitoring for {tenant_id}"),
        )

    async def ensure_schedule(
        self,
        tenant_id: str,
        frequency: str = "daily",
        time_of_day: Optional[str] = None,
        expire_after_hours: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Create the tenant's schedule, or replace its spec if it exists."""
        cron = cron_from_frequency(frequency, time_of_day)
        if not cron:
            return {"status": "skipped", "reason": f"unknown frequency '{frequency}'"}

        schedule_id = schedule_id_for(tenant_id)
        schedule = self.build_schedule(tenant_id, cron, expire_after_hours)
        client = await Client.connect(self.address, namespace=self.namespace)
        try:
            await client.create_schedule(schedule_id, schedule, trigger_immediately=False)
            logger.info("Created drift monitoring schedule %s (%s)", schedule_id, cron)
            return {"status": "created", "schedule_id": schedule_id, "cron": cron}
        except ScheduleAlreadyRunningError:
            handle = client.get_schedule_handle(schedule_id)
            await handle.update(lambda _: ScheduleUpdate(schedule=schedule))
            logger.info("Updated drift monitoring schedule %s (%s)", schedule_id, cron)
            return {"status": "updated", "schedule_id": schedule_id, "cron": cron}
