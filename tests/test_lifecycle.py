from datetime import datetime, timedelta, timezone

import pytest

from reconsafe.core.config import SuggestionConfig
from reconsafe.core.models import MLStatus, Suggestion, SuggestionType, TenantMLSettings
from reconsafe.services.errors import ConflictError, NotFoundError
from reconsafe.services.governor import TenantMLSettingsRepository
from reconsafe.services.lifecycle import SuggestionLifecycle
from reconsafe.services.metrics import get_metrics
from reconsafe.services.suggestions import SuggestionGenerator

TENANT = "tenant-a"
SINCE = datetime(2000, 1, 1, tzinfo=timezone.utc)


def _set_status(db, status, enabled=True):
    TenantMLSettingsRepository(db).upsert(TenantMLSettings(tenant_id=TENANT, ml_enabled=enabled, ml_status=status))


def _seed(db):
    db.create_bank_transaction(
        {"id": "BT-1", "tenant_id": TENANT, "amount": 1000.0, "currency": "USD",
         "description": "Payment for INV-100", "transaction_date": "2024-03-01"}
    )
    db.create_invoice(
        {"id": "INV-A", "tenant_id": TENANT, "invoice_number": "INV-100", "customer_name": "Acme",
         "total_amount": 1000.0, "due_date": "2024-03-01"}
    )
    db.create_invoice(
        {"id": "INV-B", "tenant_id": TENANT, "invoice_number": "INV-200", "customer_name": "Beta",
         "total_amount": 1030.0, "due_date": "2024-03-20"}
    )
    db.create_exception({"id": "EX-1", "tenant_id": TENANT, "exception_type": "ORPHAN_BANK_TXN", "ref_id": "BT-1"})
    return SuggestionGenerator(db).generate("EX-1")


class TestConfirm:
    def test_confirm_links_resolves_and_allocates(self, db):
        best, _ = _seed(db)
        lifecycle = SuggestionLifecycle(db)

        result = lifecycle.confirm(best.id, "user-1")

        assert result.success and result.exception_resolved and result.allocation_created
        assert db.get_suggestion(best.id) is None

        links = db.list_reconciliation_links(TENANT)
        assert [link["id"] for link in links] == [result.reconciliation_link_id]
        assert links[0]["matched_amount"] == 1000.0
        assert links[0]["match_type"] == "suggested"
        assert links[0]["notes"].startswith("Matched from exception suggestion. Rationale: ")

        exception = db.get_exception("EX-1")
        assert exception["status"] == "resolved"
        assert exception["resolved_by"] == "user-1"
        assert exception["triage_notes"] == "Resolved via suggested reconciliation. Suggestion confidence: 85%"

        outcomes = db.list_outcomes(TENANT)
        assert len(outcomes) == 1
        assert outcomes[0]["outcome"] == "CONFIRMED_MANUAL"
        assert outcomes[0]["final_result"] == "CORRECT"
        assert outcomes[0]["confidence_at_time"] == 85

        assert db.get_invoice(TENANT, "INV-A")["outstanding"] == 0
        assert db.get_bank_transaction(TENANT, "BT-1")["matched_amount"] == 1000.0

    def test_second_confirm_is_not_found(self, db):
        best, _ = _seed(db)
        lifecycle = SuggestionLifecycle(db)
        lifecycle.confirm(best.id, "user-1")
        with pytest.raises(NotFoundError):
            lifecycle.confirm(best.id, "user-2")
        assert len(db.list_reconciliation_links(TENANT)) == 1

    def test_confirm_clears_the_rest_of_the_pass(self, db):
        best, sibling = _seed(db)
        lifecycle = SuggestionLifecycle(db)
        lifecycle.confirm(best.id, "user-1")

        assert db.list_suggestions_for_exception("EX-1") == []
        assert db.count_predictions(TENANT) == 1
        with pytest.raises(NotFoundError):
            lifecycle.confirm(sibling.id, "user-1")

        assert lifecycle.expire_stale(TENANT, older_than_hours=0) == 0
        assert len(db.list_reconciliation_links(TENANT)) == 1
        assert len(db.list_outcomes(TENANT)) == 1

    def test_other_tenant_cannot_confirm(self, db):
        best, _ = _seed(db)
        with pytest.raises(NotFoundError):
            SuggestionLifecycle(db).confirm(best.id, "intruder", tenant_id="tenant-b")
        assert db.get_exception("EX-1")["status"] == "open"

    def test_failed_allocation_keeps_link_and_is_repaired(self, db, monkeypatch):
        best, _ = _seed(db)
        lifecycle = SuggestionLifecycle(db)
        original = db.insert_settlement_allocation

        def broken(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(db, "insert_settlement_allocation", broken)
        result = lifecycle.confirm(best.id, "user-1")
        monkeypatch.setattr(db, "insert_settlement_allocation", original)

        assert result.success is True
        assert result.allocation_created is False
        assert db.get_exception("EX-1")["status"] == "resolved"
        assert db.list_settlement_allocations(TENANT) == []
        assert get_metrics()["errors"]["by_type"]["allocation_failed"] == 1

        assert lifecycle.repair_missing_allocations(TENANT) == 1
        assert lifecycle.repair_missing_allocations(TENANT) == 0
        allocations = db.list_settlement_allocations(TENANT)
        assert allocations[0]["reconciliation_link_id"] == result.reconciliation_link_id
        assert allocations[0]["allocation_type"] == "principal"


def test_reject_records_incorrect_and_keeps_exception_open(db):
    best, _ = _seed(db)
    lifecycle = SuggestionLifecycle(db)

    assert lifecycle.reject(best.id, "user-1") == {"success": True}

    assert db.get_suggestion(best.id) is None
    assert db.get_exception("EX-1")["status"] == "open"
    outcome = db.list_outcomes(TENANT)[0]
    assert outcome["outcome"] == "REJECTED"
    assert outcome["final_result"] == "INCORRECT"
    with pytest.raises(NotFoundError):
        lifecycle.reject(best.id, "user-1")


class TestAutoConfirm:
    def _events(self, db, action=None):
        return db.count_guardrail_events(TENANT, SINCE, action=action)

    def test_allowed_when_active_and_confident(self, db):
        _set_status(db, MLStatus.ACTIVE)
        best, _ = _seed(db)

        result = SuggestionLifecycle(db).auto_confirm(best.id)

        assert result.exception_resolved
        outcome = db.list_outcomes(TENANT)[0]
        assert outcome["outcome"] == "AUTO_CONFIRMED"
        assert outcome["decided_by"] == "system"
        assert self._events(db, "ALLOW") == 1
        assert self._events(db, "BLOCK") == 0

    @pytest.mark.parametrize(
        "status,enabled,reason",
        [
            (MLStatus.LIMITED, True, "ml_limited"),
            (MLStatus.DISABLED, False, "ml_disabled"),
            (MLStatus.ACTIVE, False, "ml_disabled"),
        ],
    )
    def test_blocked_by_status(self, db, status, enabled, reason):
        _set_status(db, status, enabled=enabled)
        best, _ = _seed(db)

        with pytest.raises(ConflictError) as excinfo:
            SuggestionLifecycle(db).auto_confirm(best.id)

        assert excinfo.value.detail == reason
        assert db.get_suggestion(best.id) is not None
        assert db.get_exception("EX-1")["status"] == "open"
        assert self._events(db, "BLOCK") == 1

    def test_blocked_below_threshold(self, db):
        _set_status(db, MLStatus.ACTIVE)
        _, sibling = _seed(db)
        with pytest.raises(ConflictError) as excinfo:
            SuggestionLifecycle(db).auto_confirm(sibling.id)
        assert excinfo.value.detail == "below_confidence_threshold"

    def test_threshold_is_configurable(self, db):
        _set_status(db, MLStatus.ACTIVE)
        _, sibling = _seed(db)
        lifecycle = SuggestionLifecycle(db, config=SuggestionConfig(min_score=20, auto_confirm_threshold=20))
        assert lifecycle.auto_confirm(sibling.id).success


def test_expire_stale_times_out_old_suggestions(db):
    fresh, _ = _seed(db)
    old = Suggestion(
        tenant_id=TENANT,
        exception_id="EX-1",
        suggestion_type=SuggestionType.BANK_TO_INVOICE,
        confidence=40,
        suggested_amount=1000.0,
        currency="USD",
        bank_transaction_id="BT-1",
        invoice_id="INV-A",
        created_at=(datetime.now(timezone.utc) - timedelta(days=5)).isoformat(),
    )
    db.insert_suggestion(old.to_dict())

    expired = SuggestionLifecycle(db).expire_stale(TENANT, older_than_hours=72)

    assert expired == 1
    assert db.get_suggestion(old.id) is None
    assert db.get_suggestion(fresh.id) is not None
    outcome = db.list_outcomes(TENANT)[0]
    assert outcome["outcome"] == "TIMED_OUT"
    assert outcome["final_result"] == "INCORRECT"
