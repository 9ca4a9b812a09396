"""
ReconSafe Suggestion Lifecycle

Terminal dispositions of a suggestion. Each one consumes the suggestion and
appends exactly one outcome row:

- confirm       CONFIRMED_MANUAL / CORRECT, link created, exception resolved
- auto_confirm  AUTO_CONFIRMED / CORRECT, same path, gated by the guardrail
- reject        REJECTED / INCORRECT, exception stays open
- expire_stale  TIMED_OUT / INCORRECT for suggestions nobody acted on

Confirmation is a two-step saga. Step one (claim the suggestion, write the
link and the outcome, resolve the exception) commits atomically. Step two
writes the settlement allocation; if it fails the link stands and
repair_missing_allocations re-derives the allocation later.
"""
import json
import logging
from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import Any, Dict, Optional

from reconsafe.core.config import SuggestionConfig
from reconsafe.core.database import ReconDB
from reconsafe.core.models import (
    ExceptionItem,
    FinalResult,
    GuardrailAction,
    MLStatus,
    OutcomeType,
    ReconciliationLink,
    Suggestion,
    SuggestionOutcome,
    utcnow,
)
from reconsafe.services.errors import ConflictError, NotFoundError
from reconsafe.services.governor import TenantMLSettingsRepository
from reconsafe.services.logging import log_error
from reconsafe.services.metrics import record_disposition, record_error

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class ConfirmResult:
    success: bool
    reconciliation_link_id: str
    exception_resolved: bool
    allocation_created: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SuggestionLifecycle:
    def __init__(
        self,
        db: ReconDB,
        settings_repo: Optional[TenantMLSettingsRepository] = None,
        config: Optional[SuggestionConfig] = None,
    ):
        self.db = db
        self.settings_repo = settings_repo or TenantMLSettingsRepository(db)
        self.config = config or SuggestionConfig()

    def _load_suggestion(self, suggestion_id: str, tenant_id: Optional[str]) -> Suggestion:
        row = self.db.get_suggestion(suggestion_id)
        if row is None or (tenant_id is not None and row["tenant_id"] != tenant_id):
            raise NotFoundError("Suggestion", suggestion_id)
        return Suggestion.from_row(row)

    def _open_exception(self, suggestion: Suggestion) -> ExceptionItem:
        row = self.db.get_exception(suggestion.exception_id)
        if row is None or ExceptionItem.from_row(row).is_resolved:
            raise ConflictError(
                "Exception not found or already resolved",
                context={"exception_id": suggestion.exception_id},
            )
        return ExceptionItem.from_row(row)

    @staticmethod
    def _outcome(suggestion: Suggestion, outcome: OutcomeType, result: FinalResult, actor_id: Optional[str]) -> Dict[str, Any]:
        record = SuggestionOutcome(
            tenant_id=suggestion.tenant_id,
            suggestion_id=suggestion.id,
            exception_id=suggestion.exception_id,
            outcome=outcome,
            confidence_at_time=suggestion.confidence,
            final_result=result,
            rationale_snapshot=suggestion.rationale,
            decided_by=actor_id,
        )
        data = asdict(record)
        data["outcome"] = outcome.value
        data["final_result"] = result.value
        return data

    def confirm(self, suggestion_id: str, actor_id: Optional[str], tenant_id: Optional[str] = None) -> ConfirmResult:
        suggestion = self._load_suggestion(suggestion_id, tenant_id)
        return self._confirm(suggestion, actor_id, OutcomeType.CONFIRMED_MANUAL)

    def _confirm(self, suggestion: Suggestion, actor_id: Optional[str], outcome: OutcomeType) -> ConfirmResult:
        exception = self._open_exception(suggestion)

        link = ReconciliationLink(
            tenant_id=suggestion.tenant_id,
            bank_transaction_id=suggestion.bank_transaction_id,
            invoice_id=suggestion.invoice_id,
            matched_amount=suggestion.suggested_amount,
            confidence=suggestion.confidence,
            matched_by=actor_id,
            notes=(
                "Matched from exception suggestion. Rationale: "
                + json.dumps(suggestion.rationale, default=str)
            ),
        )
        notes = f"Resolved via suggested reconciliation. Suggestion confidence: {suggestion.confidence}%"

        with self.db.transaction() as cur:
            if not self.db.delete_suggestion(suggestion.id, cur=cur):
                raise NotFoundError("Suggestion", suggestion.id)
            # the exception is resolved below, so the rest of its pass goes too
            self.db.delete_predictions_for_open_suggestions(exception.id, cur=cur)
            self.db.delete_suggestions_for_exception(exception.id, cur=cur)
            self.db.insert_reconciliation_link(link.to_dict(), cur=cur)
            self.db.insert_outcome(self._outcome(suggestion, outcome, FinalResult.CORRECT, actor_id), cur=cur)
            if not self.db.resolve_exception(exception.id, actor_id, notes, cur=cur):
                raise ConflictError(
                    "Exception not found or already resolved",
                    context={"exception_id": exception.id},
                )

        allocation_created = self._allocate(link)
        record_disposition(outcome.value)
        logger.info(
            "Suggestion %s confirmed (%s) by %s, link %s",
            suggestion.id,
            outcome.value,
            actor_id,
            link.id,
        )
        return ConfirmResult(
            success=True,
            reconciliation_link_id=link.id,
            exception_resolved=True,
            allocation_created=allocation_created,
        )

    def _allocate(self, link: ReconciliationLink) -> bool:
        """Second saga step. A failure leaves the link for repair_missing_allocations."""
        if not link.invoice_id:
            return False
        try:
            self.db.insert_settlement_allocation(
                {
                    "tenant_id": link.tenant_id,
                    "reconciliation_link_id": link.id,
                    "invoice_id": link.invoice_id,
                    "allocated_amount": link.matched_amount,
                    "allocation_type": "principal",
                }
            )
        except Exception as exc:
            record_error("allocation_failed")
            log_error(
                "allocation_failed",
                "Settlement allocation failed; link kept for repair",
                {"reconciliation_link_id": link.id, "tenant_id": link.tenant_id},
                exc,
            )
            return False
        return True

    def repair_missing_allocations(self, tenant_id: str) -> int:
        """Create the principal allocation for every link that lacks one."""
        repaired = 0
        for row in self.db.list_links_without_allocation(tenant_id):
            self.db.insert_settlement_allocation(
                {
                    "tenant_id": row["tenant_id"],
                    "reconciliation_link_id": row["id"],
                    "invoice_id": row["invoice_id"],
                    "allocated_amount": row["matched_amount"],
                    "allocation_type": "principal",
                }
            )
            repaired += 1
        if repaired:
            logger.info("Repaired %d missing settlement allocations for tenant %s", repaired, tenant_id)
        return repaired

    def reject(self, suggestion_id: str, actor_id: Optional[str], tenant_id: Optional[str] = None) -> Dict[str, Any]:
        suggestion = self._load_suggestion(suggestion_id, tenant_id)
        with self.db.transaction() as cur:
            if not self.db.delete_suggestion(suggestion.id, cur=cur):
                raise NotFoundError("Suggestion", suggestion.id)
            self.db.insert_outcome(
                self._outcome(suggestion, OutcomeType.REJECTED, FinalResult.INCORRECT, actor_id), cur=cur
            )
        record_disposition(OutcomeType.REJECTED.value)
        logger.info("Suggestion %s rejected by %s", suggestion.id, actor_id)
        return {"success": True}

    def guardrail_check(self, suggestion: Suggestion) -> Optional[str]:
        """Reason automation must not confirm this suggestion, or None."""
        settings = self.settings_repo.get(suggestion.tenant_id)
        if settings.ml_status == MLStatus.DISABLED or not settings.ml_enabled:
            return "ml_disabled"
        if settings.ml_status == MLStatus.LIMITED:
            return "ml_limited"
        if suggestion.confidence < self.config.auto_confirm_threshold:
            return "below_confidence_threshold"
        return None

    def auto_confirm(self, suggestion_id: str, tenant_id: Optional[str] = None) -> ConfirmResult:
        suggestion = self._load_suggestion(suggestion_id, tenant_id)
        reason = self.guardrail_check(suggestion)
        self.db.insert_guardrail_event(
            {
                "tenant_id": suggestion.tenant_id,
                "suggestion_id": suggestion.id,
                "action": (GuardrailAction.BLOCK if reason else GuardrailAction.ALLOW).value,
                "reason": reason or "allowed",
            }
        )
        if reason:
            logger.info("Auto-confirm of suggestion %s blocked: %s", suggestion.id, reason)
            raise ConflictError(
                "Auto-confirm blocked by guardrail",
                detail=reason,
                context={"suggestion_id": suggestion.id, "reason": reason},
            )
        return self._confirm(suggestion, SYSTEM_ACTOR, OutcomeType.AUTO_CONFIRMED)

    def expire_stale(self, tenant_id: str, older_than_hours: int = 72) -> int:
        """Time out suggestions older than the cutoff; returns how many."""
        cutoff = utcnow() - timedelta(hours=older_than_hours)
        expired = 0
        for row in self.db.list_suggestions_created_before(tenant_id, cutoff):
            suggestion = Suggestion.from_row(row)
            with self.db.transaction() as cur:
                if not self.db.delete_suggestion(suggestion.id, cur=cur):
                    continue
                self.db.insert_outcome(
                    self._outcome(suggestion, OutcomeType.TIMED_OUT, FinalResult.INCORRECT, SYSTEM_ACTOR),
                    cur=cur,
                )
            record_disposition(OutcomeType.TIMED_OUT.value)
            expired += 1
        if expired:
            logger.info("Expired %d stale suggestions for tenant %s", expired, tenant_id)
        return expired
