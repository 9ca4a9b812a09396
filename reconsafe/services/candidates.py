"""
Candidate Repository

Read-only lookups feeding the suggestion generator. Bank transactions carry
their matched amount (sum of reconciliation links); invoices carry the amount
already settled (sum of settlement allocations).
"""
from typing import List, Optional

from reconsafe.core.database import ReconDB
from reconsafe.core.models import BankTransaction, ExceptionItem, Invoice


class CandidateRepository:
    def __init__(self, db: ReconDB, candidate_limit: int = 50):
        self.db = db
        self.candidate_limit = candidate_limit

    def get_exception(self, exception_id: str) -> Optional[ExceptionItem]:
        row = self.db.get_exception(exception_id)
        return ExceptionItem.from_row(row) if row else None

    def get_bank_transaction(self, tenant_id: str, bank_transaction_id: str) -> Optional[BankTransaction]:
        row = self.db.get_bank_transaction(tenant_id, bank_transaction_id)
        return BankTransaction.from_row(row) if row else None

    def get_invoice(self, tenant_id: str, invoice_id: str) -> Optional[Invoice]:
        row = self.db.get_invoice(tenant_id, invoice_id)
        return Invoice.from_row(row) if row else None

    def list_open_invoices(self, tenant_id: str, limit: Optional[int] = None) -> List[Invoice]:
        """Invoices with something left to pay, latest due date first."""
        rows = self.db.list_open_invoices(tenant_id, limit=limit or self.candidate_limit)
        return [Invoice.from_row(row) for row in rows]

    def list_unmatched_bank_transactions(self, tenant_id: str, limit: Optional[int] = None) -> List[BankTransaction]:
        """Positive bank transactions that are not fully matched, latest first."""
        rows = self.db.list_unmatched_bank_transactions(tenant_id, limit=limit or self.candidate_limit)
        return [BankTransaction.from_row(row) for row in rows]
