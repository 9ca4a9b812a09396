from datetime import datetime, timezone

import pytest

from reconsafe.core.config import SuggestionConfig
from reconsafe.core.models import (
    BankTransaction,
    Invoice,
    MLStatus,
    ReconciliationLink,
    SuggestionType,
    TenantMLSettings,
)
from reconsafe.services.errors import ConflictError, NotFoundError
from reconsafe.services.governor import TenantMLSettingsRepository
from reconsafe.services.suggestions import CandidatePair, SuggestionGenerator, find_and_score_candidates

TENANT = "tenant-a"


def _enable_ml(db, tenant_id=TENANT, status=MLStatus.ACTIVE):
    TenantMLSettingsRepository(db).upsert(
        TenantMLSettings(tenant_id=tenant_id, ml_enabled=status != MLStatus.DISABLED, ml_status=status)
    )


def _seed_orphan(db, tenant_id=TENANT):
    bank = db.create_bank_transaction(
        {
            "id": "BT-1",
            "tenant_id": tenant_id,
            "amount": 1000.0,
            "currency": "USD",
            "description": "Payment for INV-100",
            "reference": "REF-1",
            "transaction_date": "2024-03-01",
        }
    )
    db.create_invoice(
        {"id": "INV-A", "tenant_id": tenant_id, "invoice_number": "INV-100", "customer_name": "Acme",
         "total_amount": 1000.0, "due_date": "2024-03-01"}
    )
    db.create_invoice(
        {"id": "INV-B", "tenant_id": tenant_id, "invoice_number": "INV-200", "customer_name": "Beta",
         "total_amount": 1030.0, "due_date": "2024-03-20"}
    )
    # Outside the coarse amount window
    db.create_invoice(
        {"id": "INV-C", "tenant_id": tenant_id, "invoice_number": "INV-300", "customer_name": "Gamma",
         "total_amount": 5000.0, "due_date": "2024-03-01"}
    )
    # Inside the window but below the admission score
    db.create_invoice(
        {"id": "INV-D", "tenant_id": tenant_id, "invoice_number": "INV-400", "customer_name": "Delta",
         "total_amount": 1090.0, "due_date": "2024-06-01"}
    )
    exception = db.create_exception(
        {"id": "EX-1", "tenant_id": tenant_id, "exception_type": "ORPHAN_BANK_TXN", "ref_id": bank["id"]}
    )
    return exception


class TestFindAndScoreCandidates:
    def _pair(self, invoice_id, total, bank_amount=1000.0, description="", due_date=None):
        bank = BankTransaction(id="BT", tenant_id=TENANT, amount=bank_amount, description=description,
                               transaction_date="2024-03-01")
        invoice = Invoice(id=invoice_id, tenant_id=TENANT, invoice_number=invoice_id, customer_name=None,
                          total_amount=total, due_date=due_date)
        return CandidatePair(bank=bank, invoice=invoice, bank_amount=bank_amount)

    def test_window_filters_before_scoring(self):
        pairs = [self._pair("FAR", 1200.0), self._pair("NEAR", 1000.0)]
        scored = find_and_score_candidates(1000.0, pairs, SuggestionConfig())
        assert [c.pair.invoice.id for c in scored] == ["NEAR"]

    def test_settled_invoices_are_skipped(self):
        pair = self._pair("PAID", 1000.0)
        pair.invoice.paid_amount_settled = 1000.0
        assert find_and_score_candidates(1000.0, [pair], SuggestionConfig()) == []

    def test_top_n_keeps_pool_order_on_ties(self):
        pairs = [self._pair(f"I{i}", 1000.0) for i in range(4)]
        scored = find_and_score_candidates(1000.0, pairs, SuggestionConfig(max_suggestions=2))
        assert [c.pair.invoice.id for c in scored] == ["I0", "I1"]

    def test_sorted_by_score_descending(self):
        pairs = [
            self._pair("LOW", 1030.0),
            self._pair("HIGH", 1000.0, description="INV HIGH", due_date="2024-03-01"),
        ]
        scored = find_and_score_candidates(1000.0, pairs, SuggestionConfig())
        assert [c.pair.invoice.id for c in scored] == ["HIGH", "LOW"]
        assert scored[0].score > scored[1].score


def test_config_rejects_inconsistent_thresholds():
    with pytest.raises(ValueError):
        SuggestionConfig(min_score=90, auto_confirm_threshold=85)
    with pytest.raises(ValueError):
        SuggestionConfig(amount_tolerance_pct=0)


def test_orphan_bank_transaction_suggestions(db):
    _enable_ml(db)
    _seed_orphan(db)

    suggestions = SuggestionGenerator(db).generate("EX-1")

    assert [s.invoice_id for s in suggestions] == ["INV-A", "INV-B"]
    best, second = suggestions
    assert best.suggestion_type == SuggestionType.BANK_TO_INVOICE
    assert best.confidence == 85
    assert best.auto_confirm_eligible is True
    assert best.suggested_amount == 1000.0
    assert best.currency == "USD"
    assert best.rationale["invoice_number"] == "INV-100"
    assert best.rationale["bank_amount"] == 1000.0
    assert best.rationale["invoice_outstanding"] == 1000.0
    assert second.confidence == 25
    assert second.auto_confirm_eligible is False
    assert second.suggested_amount == 1000.0

    predictions = db.list_predictions(TENANT, datetime(2000, 1, 1, tzinfo=timezone.utc))
    assert sorted(p["predicted_confidence"] for p in predictions) == [25, 85]


def test_regeneration_replaces_previous_suggestions(db):
    _enable_ml(db)
    _seed_orphan(db)
    generator = SuggestionGenerator(db)

    first = generator.generate("EX-1")
    second = generator.generate("EX-1")

    stored = generator.list_for_exception("EX-1")
    assert len(stored) == 2
    assert {s.id for s in stored} == {s.id for s in second}
    assert not {s.id for s in stored} & {s.id for s in first}


def test_regeneration_keeps_one_prediction_per_live_suggestion(db):
    _enable_ml(db)
    _seed_orphan(db)
    generator = SuggestionGenerator(db)

    for _ in range(10):
        generator.generate("EX-1")

    live = generator.list_for_exception("EX-1")
    assert len(live) == 2
    assert db.count_predictions(TENANT) == len(live)
    since = datetime(2000, 1, 1, tzinfo=timezone.utc)
    assert {p["suggestion_id"] for p in db.list_predictions(TENANT, since)} == {s.id for s in live}


def test_disabled_tenant_never_marks_auto_confirm_eligible(db):
    _seed_orphan(db)
    suggestions = SuggestionGenerator(db).generate("EX-1")
    assert suggestions[0].confidence == 85
    assert all(not s.auto_confirm_eligible for s in suggestions)


def test_unknown_or_foreign_exception_is_not_found(db):
    _seed_orphan(db)
    generator = SuggestionGenerator(db)
    with pytest.raises(NotFoundError):
        generator.generate("missing")
    with pytest.raises(NotFoundError):
        generator.generate("EX-1", tenant_id="tenant-b")


def test_resolved_exception_conflicts(db):
    _seed_orphan(db)
    db.resolve_exception("EX-1", "user-1", "done")
    with pytest.raises(ConflictError):
        SuggestionGenerator(db).generate("EX-1")


def test_missing_reference_yields_no_suggestions(db):
    db.create_exception({"id": "EX-2", "tenant_id": TENANT, "exception_type": "ORPHAN_BANK_TXN", "ref_id": "nope"})
    assert SuggestionGenerator(db).generate("EX-2") == []


def test_ar_overdue_expects_bank_transaction(db):
    _enable_ml(db)
    db.create_invoice(
        {"id": "INV-A", "tenant_id": TENANT, "invoice_number": "INV-100", "customer_name": "Acme",
         "total_amount": 1000.0, "due_date": "2024-03-01"}
    )
    db.create_bank_transaction(
        {"id": "BT-IN", "tenant_id": TENANT, "amount": 1000.0, "description": "ACME INV-100",
         "reference": "REF-IN", "transaction_date": "2024-03-02"}
    )
    db.create_bank_transaction(
        {"id": "BT-OUT", "tenant_id": TENANT, "amount": -1000.0, "description": "INV-100 refund",
         "transaction_date": "2024-03-02"}
    )
    db.create_exception({"id": "EX-AR", "tenant_id": TENANT, "exception_type": "AR_OVERDUE", "ref_id": "INV-A"})

    suggestions = SuggestionGenerator(db).generate("EX-AR")

    assert [s.bank_transaction_id for s in suggestions] == ["BT-IN"]
    suggestion = suggestions[0]
    assert suggestion.suggestion_type == SuggestionType.INVOICE_EXPECT_BANK
    assert suggestion.rationale["bank_reference"] == "REF-IN"
    assert suggestion.confidence == 85


def test_partial_match_uses_remaining_amount(db):
    db.create_bank_transaction(
        {"id": "BT-P", "tenant_id": TENANT, "amount": 1500.0, "description": "Batch payment INV-500",
         "transaction_date": "2024-04-01"}
    )
    db.create_invoice(
        {"id": "INV-P", "tenant_id": TENANT, "invoice_number": "INV-500", "customer_name": "Zeta",
         "total_amount": 1000.0, "due_date": "2024-04-01"}
    )
    db.create_invoice(
        {"id": "INV-OLD", "tenant_id": TENANT, "invoice_number": "INV-499", "customer_name": "Zeta",
         "total_amount": 500.0, "due_date": "2024-03-01"}
    )
    link = ReconciliationLink(tenant_id=TENANT, bank_transaction_id="BT-P", invoice_id="INV-OLD",
                              matched_amount=500.0, confidence=90)
    db.insert_reconciliation_link(link.to_dict())
    db.insert_settlement_allocation(
        {"tenant_id": TENANT, "reconciliation_link_id": link.id, "invoice_id": "INV-OLD", "allocated_amount": 500.0}
    )
    db.create_exception({"id": "EX-P", "tenant_id": TENANT, "exception_type": "PARTIAL_MATCH_STUCK", "ref_id": "BT-P"})

    suggestions = SuggestionGenerator(db).generate("EX-P")

    assert [s.invoice_id for s in suggestions] == ["INV-P"]
    assert suggestions[0].rationale["remaining_bank_amount"] == 1000.0
    assert "bank_amount" not in suggestions[0].rationale
    assert suggestions[0].suggested_amount == 1000.0


def test_generation_is_idempotent(db):
    _enable_ml(db)
    _seed_orphan(db)
    generator = SuggestionGenerator(db)

    def ranked(suggestions):
        return [(s.invoice_id, s.confidence, s.suggested_amount, s.rank) for s in suggestions]

    assert ranked(generator.generate("EX-1")) == ranked(generator.generate("EX-1"))
