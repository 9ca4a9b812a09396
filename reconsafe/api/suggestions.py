"""Reconciliation suggestion endpoints.

- Regenerate ranked suggestions for an exception
- Confirm, reject or auto-confirm a suggestion
- Calibration report of recent outcomes
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from reconsafe.api.auth import Caller, get_caller
from reconsafe.api.deps import (
    get_calibration_reporter,
    get_lifecycle,
    get_suggestion_generator,
)
from reconsafe.models.requests import SuggestionActionRequest
from reconsafe.services.calibration import CalibrationReporter
from reconsafe.services.errors import ForbiddenError, MissingFieldError
from reconsafe.services.lifecycle import SuggestionLifecycle
from reconsafe.services.suggestions import SuggestionGenerator

router = APIRouter(prefix="/reconciliation-suggestions", tags=["reconciliation-suggestions"])


def _require_suggestion_id(request: SuggestionActionRequest) -> str:
    if not request.suggestion_id:
        raise MissingFieldError("suggestionId")
    return request.suggestion_id


@router.get("/exception/{exception_id}")
async def generate_suggestions(
    exception_id: str,
    caller: Caller = Depends(get_caller),
    generator: SuggestionGenerator = Depends(get_suggestion_generator),
) -> List[Dict[str, Any]]:
    """Replace and return the ranked suggestions for one open exception."""
    suggestions = generator.generate(exception_id, tenant_id=caller.tenant_id)
    return [s.to_dict() for s in suggestions]


@router.post("/confirm")
async def confirm_suggestion(
    request: SuggestionActionRequest,
    caller: Caller = Depends(get_caller),
    lifecycle: SuggestionLifecycle = Depends(get_lifecycle),
):
    suggestion_id = _require_suggestion_id(request)
    result = lifecycle.confirm(suggestion_id, caller.user_id, tenant_id=caller.tenant_id)
    return result.to_dict()


@router.post("/reject")
async def reject_suggestion(
    request: SuggestionActionRequest,
    caller: Caller = Depends(get_caller),
    lifecycle: SuggestionLifecycle = Depends(get_lifecycle),
):
    suggestion_id = _require_suggestion_id(request)
    return lifecycle.reject(suggestion_id, caller.user_id, tenant_id=caller.tenant_id)


@router.post("/auto-confirm")
async def auto_confirm_suggestion(
    request: SuggestionActionRequest,
    caller: Caller = Depends(get_caller),
    lifecycle: SuggestionLifecycle = Depends(get_lifecycle),
):
    """Confirm without a human, if the automation guardrail allows it."""
    suggestion_id = _require_suggestion_id(request)
    result = lifecycle.auto_confirm(suggestion_id, tenant_id=caller.tenant_id)
    return result.to_dict()


@router.get("/calibration")
async def calibration_report(
    tenant_id: Optional[str] = Query(default=None),
    caller: Caller = Depends(get_caller),
    reporter: CalibrationReporter = Depends(get_calibration_reporter),
):
    if not tenant_id:
        raise MissingFieldError("tenant_id")
    if tenant_id != caller.tenant_id:
        raise ForbiddenError("Forbidden - tenant mismatch")
    return reporter.report(tenant_id)
