"""ML monitoring endpoints: summary, drift history, detection and admin reset."""
from fastapi import APIRouter, Depends, Query

from reconsafe.api.auth import Caller, get_caller, require_admin
from reconsafe.api.deps import get_governor, get_ml_summary
from reconsafe.models.requests import AcknowledgeSignalRequest, ResetStatusRequest
from reconsafe.services.errors import MissingFieldError
from reconsafe.services.governor import AutoResponseGovernor
from reconsafe.services.ml_summary import MLSummaryService

router = APIRouter(prefix="/ml-monitoring", tags=["ml-monitoring"])


@router.get("/summary")
async def ml_summary(
    caller: Caller = Depends(get_caller),
    summary: MLSummaryService = Depends(get_ml_summary),
):
    return summary.summary(caller.tenant_id)


@router.get("/drift-events")
async def drift_events(
    limit: int = Query(default=50, ge=1, le=500),
    caller: Caller = Depends(get_caller),
    summary: MLSummaryService = Depends(get_ml_summary),
):
    return summary.drift_events(caller.tenant_id, limit=limit)


@router.post("/detect")
async def run_detection(
    caller: Caller = Depends(get_caller),
    governor: AutoResponseGovernor = Depends(get_governor),
):
    """Run drift detection and apply the governor's response."""
    return governor.run_detection(caller.tenant_id)


@router.post("/acknowledge")
async def acknowledge_signal(
    request: AcknowledgeSignalRequest,
    caller: Caller = Depends(get_caller),
    governor: AutoResponseGovernor = Depends(get_governor),
):
    if not request.signal_id:
        raise MissingFieldError("signalId")
    return governor.acknowledge(caller.tenant_id, request.signal_id, caller.user_id)


@router.post("/reset-status")
async def reset_status(
    request: ResetStatusRequest,
    caller: Caller = Depends(require_admin),
    governor: AutoResponseGovernor = Depends(get_governor),
):
    """Admin override; the only way out of DISABLED."""
    settings = governor.reset(caller.tenant_id, request.status, actor_id=caller.user_id)
    return {"success": True, "ml_status": settings.ml_status.value, "ml_enabled": settings.ml_enabled}
