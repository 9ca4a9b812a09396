"""Temporal activities for ReconSafe workflows."""
from __future__ import annotations

from typing import Any, Dict

from temporalio import activity

from reconsafe.di.container import container


def _tenant(payload: Dict[str, Any]) -> str:
    tenant_id = payload.get("tenant_id")
    if not tenant_id:
        raise ValueError("tenant_id is required")
    return tenant_id


@activity.defn
async def expire_stale_suggestions_activity(payload: Dict[str, Any]) -> Dict[str, Any]:
    tenant_id = _tenant(payload)
    hours = int(payload.get("expire_after_hours") or 72)
    expired = container.lifecycle().expire_stale(tenant_id, older_than_hours=hours)
    return {"tenant_id": tenant_id, "expired": expired}


@activity.defn
async def drift_detection_activity(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Detect drift for one tenant and let the governor respond."""
    tenant_id = _tenant(payload)
    result = container.governor().run_detection(tenant_id)
    return {"tenant_id": tenant_id, **result}


@activity.defn
async def repair_allocations_activity(payload: Dict[str, Any]) -> Dict[str, Any]:
    tenant_id = _tenant(payload)
    repaired = container.lifecycle().repair_missing_allocations(tenant_id)
    return {"tenant_id": tenant_id, "repaired": repaired}
