"""
ReconSafe Core Data Models

Entities shared by the suggestion engine and the automation-safety monitor.
Rows come out of the store as dicts; `from_row` turns them into these
dataclasses and `to_dict` turns them back into JSON-ready maps.
"""

import json
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _load_json(value: Any) -> Dict[str, Any]:
    if value is None or value == "":
        return {}
    if isinstance(value, dict):
        return value
    return json.loads(value)


class ExceptionType(str, Enum):
    """Reconciliation discrepancy awaiting a suggested fix."""
    ORPHAN_BANK_TXN = "ORPHAN_BANK_TXN"
    AR_OVERDUE = "AR_OVERDUE"
    PARTIAL_MATCH_STUCK = "PARTIAL_MATCH_STUCK"


class ExceptionStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class SuggestionType(str, Enum):
    BANK_TO_INVOICE = "BANK_TO_INVOICE"
    BANK_SPLIT_TO_INVOICES = "BANK_SPLIT_TO_INVOICES"  # reserved, never generated
    INVOICE_EXPECT_BANK = "INVOICE_EXPECT_BANK"


class MatchState(str, Enum):
    UNMATCHED = "unmatched"
    PARTIAL = "partial"
    MATCHED = "matched"


class OutcomeType(str, Enum):
    CONFIRMED_MANUAL = "CONFIRMED_MANUAL"
    AUTO_CONFIRMED = "AUTO_CONFIRMED"
    REJECTED = "REJECTED"
    TIMED_OUT = "TIMED_OUT"


class FinalResult(str, Enum):
    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class DriftType(str, Enum):
    OUTCOME_SHIFT = "OUTCOME_SHIFT"
    CONFIDENCE_CALIBRATION = "CONFIDENCE_CALIBRATION"
    FEATURE_DISTRIBUTION = "FEATURE_DISTRIBUTION"
    AUTOMATION_RISK = "AUTOMATION_RISK"


class MLStatus(str, Enum):
    ACTIVE = "ACTIVE"
    LIMITED = "LIMITED"
    DISABLED = "DISABLED"


class AutoAction(str, Enum):
    NONE = "none"
    WARN = "warn"
    LIMIT = "limit"
    KILL_SWITCH = "kill_switch"


class GuardrailAction(str, Enum):
    ALLOW = "ALLOW"
    BLOCK = "BLOCK"


@dataclass
class ExceptionItem:
    """An unresolved reconciliation exception (owned by the upstream scan)."""
    id: str
    tenant_id: str
    exception_type: ExceptionType
    ref_id: str
    status: ExceptionStatus = ExceptionStatus.OPEN
    resolved_at: Optional[str] = None
    resolved_by: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ExceptionItem":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            exception_type=ExceptionType(row["exception_type"]),
            ref_id=row["ref_id"],
            status=ExceptionStatus(row.get("status") or "open"),
            resolved_at=row.get("resolved_at"),
            resolved_by=row.get("resolved_by"),
        )

    @property
    def is_resolved(self) -> bool:
        return self.status == ExceptionStatus.RESOLVED


@dataclass
class BankTransaction:
    id: str
    tenant_id: str
    amount: float
    currency: Optional[str] = None
    description: Optional[str] = None
    reference: Optional[str] = None
    transaction_date: Optional[str] = None
    matched_amount: float = 0.0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "BankTransaction":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            amount=float(row["amount"]),
            currency=row.get("currency"),
            description=row.get("description"),
            reference=row.get("reference"),
            transaction_date=row.get("transaction_date"),
            matched_amount=float(row.get("matched_amount") or 0),
        )

    @property
    def remaining_amount(self) -> float:
        """Unmatched part of the absolute amount."""
        return abs(self.amount) - self.matched_amount

    @property
    def available_amount(self) -> float:
        """Signed amount minus what links already consumed."""
        return self.amount - self.matched_amount

    @property
    def match_state(self) -> MatchState:
        if self.matched_amount <= 0:
            return MatchState.UNMATCHED
        if self.matched_amount + 1e-9 >= abs(self.amount):
            return MatchState.MATCHED
        return MatchState.PARTIAL


@dataclass
class Invoice:
    id: str
    tenant_id: str
    invoice_number: Optional[str]
    customer_name: Optional[str]
    total_amount: float
    due_date: Optional[str] = None
    issue_date: Optional[str] = None
    paid_amount_settled: float = 0.0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Invoice":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            invoice_number=row.get("invoice_number"),
            customer_name=row.get("customer_name"),
            total_amount=float(row["total_amount"]),
            due_date=row.get("due_date"),
            issue_date=row.get("issue_date"),
            paid_amount_settled=float(row.get("paid_amount_settled") or 0),
        )

    @property
    def outstanding(self) -> float:
        return self.total_amount - self.paid_amount_settled


@dataclass
class Suggestion:
    """A proposed match for one open exception."""
    tenant_id: str
    exception_id: str
    suggestion_type: SuggestionType
    confidence: int
    suggested_amount: float
    currency: str
    bank_transaction_id: Optional[str] = None
    invoice_id: Optional[str] = None
    rationale: Dict[str, Any] = field(default_factory=dict)
    auto_confirm_eligible: bool = False
    rank: int = 0
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=lambda: utcnow().isoformat())

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Suggestion":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            exception_id=row["exception_id"],
            bank_transaction_id=row.get("bank_transaction_id"),
            invoice_id=row.get("invoice_id"),
            suggestion_type=SuggestionType(row["suggestion_type"]),
            confidence=int(row["confidence"]),
            suggested_amount=float(row["suggested_amount"]),
            currency=row.get("currency") or "",
            rationale=_load_json(row.get("rationale")),
            auto_confirm_eligible=bool(row.get("auto_confirm_eligible")),
            rank=int(row.get("rank") or 0),
            created_at=row.get("created_at") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["suggestion_type"] = self.suggestion_type.value
        return data


@dataclass
class ReconciliationLink:
    """Immutable audit record created when a suggestion is confirmed."""
    tenant_id: str
    bank_transaction_id: Optional[str]
    invoice_id: Optional[str]
    matched_amount: float
    confidence: int
    matched_by: Optional[str] = None
    match_type: str = "suggested"
    match_source: str = "exception_suggestion"
    notes: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SuggestionOutcome:
    """Append-only disposition record; the ground truth for drift detection."""
    tenant_id: str
    suggestion_id: str
    exception_id: str
    outcome: OutcomeType
    confidence_at_time: int
    final_result: FinalResult
    rationale_snapshot: Dict[str, Any] = field(default_factory=dict)
    decided_by: Optional[str] = None
    decided_at: str = field(default_factory=lambda: utcnow().isoformat())
    id: str = field(default_factory=new_id)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SuggestionOutcome":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            suggestion_id=row["suggestion_id"],
            exception_id=row["exception_id"],
            outcome=OutcomeType(row["outcome"]),
            confidence_at_time=int(row.get("confidence_at_time") or 0),
            final_result=FinalResult(row["final_result"]),
            rationale_snapshot=_load_json(row.get("rationale_snapshot")),
            decided_by=row.get("decided_by"),
            decided_at=row.get("decided_at") or "",
        )


@dataclass
class PredictionLog:
    """One scored suggestion as seen by the model at generation time."""
    tenant_id: str
    suggestion_id: str
    predicted_confidence: int
    explanation: Dict[str, Any] = field(default_factory=dict)
    model_version: str = "v2.0"
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=lambda: utcnow().isoformat())

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PredictionLog":
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            suggestion_id=row["suggestion_id"],
            predicted_confidence=int(row.get("predicted_confidence") or 0),
            explanation=_load_json(row.get("explanation")),
            model_version=row.get("model_version") or "v2.0",
            created_at=row.get("created_at") or "",
        )


@dataclass
class DriftSignal:
    drift_type: DriftType
    severity: Severity
    metric: str
    baseline_value: Optional[float]
    current_value: Optional[float]
    delta: Optional[float]
    details: Dict[str, Any] = field(default_factory=dict)
    tenant_id: Optional[str] = None
    model_version: Optional[str] = None
    auto_action_taken: Optional[AutoAction] = None
    detected_at: Optional[str] = None
    acknowledged_at: Optional[str] = None
    acknowledged_by: Optional[str] = None
    id: str = field(default_factory=new_id)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DriftSignal":
        action = row.get("auto_action_taken")
        return cls(
            id=row["id"],
            tenant_id=row.get("tenant_id"),
            model_version=row.get("model_version"),
            drift_type=DriftType(row["drift_type"]),
            severity=Severity(row["severity"]),
            metric=row["metric"],
            baseline_value=row.get("baseline_value"),
            current_value=row.get("current_value"),
            delta=row.get("delta"),
            details=_load_json(row.get("details")),
            auto_action_taken=AutoAction(action) if action else None,
            detected_at=row.get("detected_at"),
            acknowledged_at=row.get("acknowledged_at"),
            acknowledged_by=row.get("acknowledged_by"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["drift_type"] = self.drift_type.value
        data["severity"] = self.severity.value
        data["auto_action_taken"] = self.auto_action_taken.value if self.auto_action_taken else None
        return data


@dataclass
class TenantMLSettings:
    tenant_id: str
    ml_enabled: bool = False
    ml_status: MLStatus = MLStatus.DISABLED
    ml_model_version: str = "v2.0"
    last_fallback_reason: Optional[str] = None
    last_fallback_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TenantMLSettings":
        return cls(
            tenant_id=row["tenant_id"],
            ml_enabled=bool(row.get("ml_enabled")),
            ml_status=MLStatus(row.get("ml_status") or "DISABLED"),
            ml_model_version=row.get("ml_model_version") or "v2.0",
            last_fallback_reason=row.get("last_fallback_reason"),
            last_fallback_at=row.get("last_fallback_at"),
            updated_at=row.get("updated_at"),
        )

    @property
    def automation_allowed(self) -> bool:
        """Whether anything may be confirmed without a human."""
        return self.ml_enabled and self.ml_status == MLStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["ml_status"] = self.ml_status.value
        return data
