"""
ReconSafe Confidence Scorer

Additive rubric for one bank-amount / invoice-outstanding pairing:

- Amount agreement (max 40): relative difference against the outstanding
  amount. <=1% exact, <=5% close, <=10% approximate.
- Description agreement (max 30): invoice number in the bank description
  beats customer name in the description (+30 vs +20).
- Date proximity (max 15): days between bank date and invoice due date.

The rationale is kept typed while scoring and flattened only when it is
persisted or returned over the API.
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional, Union

MAX_SCORE = 100
ADMISSION_SCORE = 20

_AMOUNT_TIERS = (
    (0.01, "exact", 40),
    (0.05, "close", 25),
    (0.10, "approximate", 10),
)

_DATE_TIERS = (
    (3, 15),
    (7, 10),
    (14, 5),
)


@dataclass
class AmountMatch:
    diff_ratio: float
    kind: Optional[str] = None
    score: int = 0


@dataclass
class DescriptionMatch:
    kind: Optional[str] = None
    score: int = 0


@dataclass
class DateProximity:
    days: Optional[int] = None
    score: int = 0


@dataclass
class ScoreResult:
    amount: AmountMatch
    description: DescriptionMatch = field(default_factory=DescriptionMatch)
    date: DateProximity = field(default_factory=DateProximity)

    @property
    def score(self) -> int:
        total = self.amount.score + self.description.score + self.date.score
        return min(total, MAX_SCORE)

    @property
    def admitted(self) -> bool:
        return self.score >= ADMISSION_SCORE

    @property
    def rationale(self) -> Dict[str, Any]:
        """Flat map used for storage, the API and drift feature extraction."""
        data: Dict[str, Any] = {
            "amount_diff_ratio": round(self.amount.diff_ratio, 6),
            "amount_match_score": self.amount.score,
            "description_match_score": self.description.score,
            "date_proximity_score": self.date.score,
        }
        if self.amount.kind:
            data["amount_match"] = self.amount.kind
        if self.description.kind:
            data["description_match"] = self.description.kind
        if self.date.days is not None:
            data["date_proximity_days"] = self.date.days
        return data


def _parse_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return date.fromisoformat(text[:10])


def score_amount(bank_amount: float, invoice_outstanding: float) -> AmountMatch:
    if invoice_outstanding > 0:
        ratio = abs(bank_amount - invoice_outstanding) / invoice_outstanding
    else:
        ratio = 1.0
    for limit, kind, points in _AMOUNT_TIERS:
        if ratio <= limit:
            return AmountMatch(diff_ratio=ratio, kind=kind, score=points)
    return AmountMatch(diff_ratio=ratio)


def score_description(
    bank_description: Optional[str],
    invoice_number: Optional[str],
    customer_name: Optional[str],
) -> DescriptionMatch:
    description = (bank_description or "").casefold()
    number = (invoice_number or "").strip().casefold()
    name = (customer_name or "").strip().casefold()
    if number and number in description:
        return DescriptionMatch(kind="invoice_number", score=30)
    if name and name in description:
        return DescriptionMatch(kind="customer_name", score=20)
    return DescriptionMatch()


def score_date_proximity(bank_date, invoice_due_date) -> DateProximity:
    left = _parse_date(bank_date)
    right = _parse_date(invoice_due_date)
    if left is None or right is None:
        return DateProximity()
    days = abs((left - right).days)
    for limit, points in _DATE_TIERS:
        if days <= limit:
            return DateProximity(days=days, score=points)
    return DateProximity(days=days)


def score_candidate(
    bank_amount: float,
    invoice_outstanding: float,
    bank_description: Optional[str] = None,
    invoice_number: Optional[str] = None,
    customer_name: Optional[str] = None,
    bank_date=None,
    invoice_due_date=None,
) -> ScoreResult:
    """Score one candidate pairing. Never raises on missing text or dates."""
    return ScoreResult(
        amount=score_amount(bank_amount, invoice_outstanding),
        description=score_description(bank_description, invoice_number, customer_name),
        date=score_date_proximity(bank_date, invoice_due_date),
    )
