"""
ReconSafe Suggestion Generator

Produces up to five ranked match suggestions for one open reconciliation
exception and replaces whatever suggestions the exception had before.

Every exception type reduces to the same search: one side of the match (a bank
transaction or an invoice) is fixed, the other side comes from a capped
candidate pool, a coarse amount window drops obvious misses, and the
confidence scorer ranks the rest.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Iterable, List, Optional

from reconsafe.core.config import SuggestionConfig
from reconsafe.core.database import ReconDB
from reconsafe.core.models import (
    BankTransaction,
    ExceptionItem,
    ExceptionType,
    Invoice,
    PredictionLog,
    Suggestion,
    SuggestionType,
    TenantMLSettings,
)
from reconsafe.services.candidates import CandidateRepository
from reconsafe.services.errors import ConflictError, NotFoundError
from reconsafe.services.governor import TenantMLSettingsRepository
from reconsafe.services.metrics import record_suggestions_generated
from reconsafe.services.scoring import ScoreResult, score_candidate

logger = logging.getLogger(__name__)


@dataclass
class CandidatePair:
    """A bank transaction and an invoice that might settle each other.

    `bank_amount` is the part of the bank transaction still available to
    match; how it is derived depends on the exception type.
    """
    bank: BankTransaction
    invoice: Invoice
    bank_amount: float


@dataclass
class ScoredCandidate:
    pair: CandidatePair
    result: ScoreResult

    @property
    def score(self) -> int:
        return self.result.score


def find_and_score_candidates(
    pivot_amount: float,
    pairs: Iterable[CandidatePair],
    config: SuggestionConfig,
) -> List[ScoredCandidate]:
    """
    Coarse-to-fine candidate search around a fixed pivot amount.

    Pairs whose bank and outstanding amounts differ by more than twice the
    tolerance window are dropped before scoring. Survivors below the admission
    score are discarded; the rest are sorted by score (stable, so the pool
    order breaks ties) and cut to `max_suggestions`.
    """
    window = 2 * config.amount_tolerance_pct * abs(pivot_amount)
    scored: List[ScoredCandidate] = []
    for pair in pairs:
        outstanding = pair.invoice.outstanding
        if outstanding <= 0:
            continue
        if abs(pair.bank_amount - outstanding) > window:
            continue
        result = score_candidate(
            bank_amount=pair.bank_amount,
            invoice_outstanding=outstanding,
            bank_description=pair.bank.description,
            invoice_number=pair.invoice.invoice_number,
            customer_name=pair.invoice.customer_name,
            bank_date=pair.bank.transaction_date,
            invoice_due_date=pair.invoice.due_date,
        )
        if result.score >= config.min_score:
            scored.append(ScoredCandidate(pair=pair, result=result))
    scored.sort(key=lambda candidate: candidate.score, reverse=True)
    return scored[: config.max_suggestions]


class SuggestionGenerator:
    def __init__(
        self,
        db: ReconDB,
        settings_repo: Optional[TenantMLSettingsRepository] = None,
        config: Optional[SuggestionConfig] = None,
    ):
        self.db = db
        self.config = config or SuggestionConfig()
        self.candidates = CandidateRepository(db, candidate_limit=self.config.candidate_limit)
        self.settings_repo = settings_repo or TenantMLSettingsRepository(db)

    def generate(self, exception_id: str, tenant_id: Optional[str] = None) -> List[Suggestion]:
        exception = self.candidates.get_exception(exception_id)
        if exception is None or (tenant_id is not None and exception.tenant_id != tenant_id):
            raise NotFoundError("Exception", exception_id)
        if exception.is_resolved:
            raise ConflictError(
                "Exception is already resolved",
                context={"exception_id": exception_id},
            )

        suggestion_type, scored = self._search(exception)
        settings = self.settings_repo.get(exception.tenant_id)
        suggestions = [
            self._build_suggestion(exception, suggestion_type, candidate, rank, settings)
            for rank, candidate in enumerate(scored)
        ]
        self._replace(exception, suggestions, settings)

        record_suggestions_generated(exception.exception_type.value, len(suggestions))
        logger.info(
            "Generated %d suggestions for exception %s (%s)",
            len(suggestions),
            exception.id,
            exception.exception_type.value,
        )
        return suggestions

    def _search(self, exception: ExceptionItem):
        tenant_id = exception.tenant_id
        if exception.exception_type == ExceptionType.AR_OVERDUE:
            invoice = self.candidates.get_invoice(tenant_id, exception.ref_id)
            if invoice is None or invoice.outstanding <= 0:
                return SuggestionType.INVOICE_EXPECT_BANK, []
            pairs = [
                CandidatePair(bank=bank, invoice=invoice, bank_amount=bank.available_amount)
                for bank in self.candidates.list_unmatched_bank_transactions(tenant_id)
            ]
            return SuggestionType.INVOICE_EXPECT_BANK, find_and_score_candidates(
                invoice.outstanding, pairs, self.config
            )

        bank = self.candidates.get_bank_transaction(tenant_id, exception.ref_id)
        if bank is None:
            return SuggestionType.BANK_TO_INVOICE, []
        if exception.exception_type == ExceptionType.PARTIAL_MATCH_STUCK:
            bank_amount = bank.remaining_amount
        else:
            bank_amount = abs(bank.amount)
        pairs = [
            CandidatePair(bank=bank, invoice=invoice, bank_amount=bank_amount)
            for invoice in self.candidates.list_open_invoices(tenant_id)
        ]
        return SuggestionType.BANK_TO_INVOICE, find_and_score_candidates(bank_amount, pairs, self.config)

    def _build_suggestion(
        self,
        exception: ExceptionItem,
        suggestion_type: SuggestionType,
        candidate: ScoredCandidate,
        rank: int,
        settings: TenantMLSettings,
    ) -> Suggestion:
        pair = candidate.pair
        outstanding = pair.invoice.outstanding
        rationale = dict(candidate.result.rationale)
        rationale["invoice_outstanding"] = outstanding
        if exception.exception_type == ExceptionType.PARTIAL_MATCH_STUCK:
            rationale["remaining_bank_amount"] = pair.bank_amount
        else:
            rationale["bank_amount"] = pair.bank_amount
        if suggestion_type == SuggestionType.INVOICE_EXPECT_BANK:
            rationale["bank_reference"] = pair.bank.reference
        else:
            rationale["invoice_number"] = pair.invoice.invoice_number
            rationale["customer_name"] = pair.invoice.customer_name

        confidence = candidate.score
        return Suggestion(
            tenant_id=exception.tenant_id,
            exception_id=exception.id,
            bank_transaction_id=pair.bank.id,
            invoice_id=pair.invoice.id,
            suggestion_type=suggestion_type,
            confidence=confidence,
            suggested_amount=min(pair.bank_amount, outstanding),
            currency=pair.bank.currency or self.config.default_currency,
            rationale=rationale,
            auto_confirm_eligible=(
                settings.automation_allowed and confidence >= self.config.auto_confirm_threshold
            ),
            rank=rank,
        )

    def _replace(self, exception: ExceptionItem, suggestions: List[Suggestion], settings: TenantMLSettings) -> None:
        """Delete the previous pass and insert this one atomically."""
        model_version = settings.ml_model_version or self.config.model_version
        with self.db.transaction() as cur:
            self.db.delete_predictions_for_open_suggestions(exception.id, cur=cur)
            self.db.delete_suggestions_for_exception(exception.id, cur=cur)
            for suggestion in suggestions:
                self.db.insert_suggestion(suggestion.to_dict(), cur=cur)
                prediction = PredictionLog(
                    tenant_id=suggestion.tenant_id,
                    suggestion_id=suggestion.id,
                    predicted_confidence=suggestion.confidence,
                    explanation=suggestion.rationale,
                    model_version=model_version,
                )
                self.db.insert_prediction_log(asdict(prediction), cur=cur)

    def list_for_exception(self, exception_id: str) -> List[Suggestion]:
        return [Suggestion.from_row(row) for row in self.db.list_suggestions_for_exception(exception_id)]
