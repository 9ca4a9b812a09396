"""
ReconSafe Drift Detector

Compares a recent window (last 7 days) with a baseline window (7 to 30 days
ago) and returns one DriftSignal per check that fires:

- accuracy: share of outcome-linked predictions that were CORRECT
- expected_calibration_error: confidence vs. observed accuracy, recent only
- amount_diff_ratio_psi: feature drift of the scorer's amount ratio
- incorrect_rate: spike in INCORRECT outcomes
- false_auto_rate: AUTO_CONFIRMED outcomes later found INCORRECT
- guardrail_block_rate: share of guardrail checks that blocked automation

A check without enough samples is skipped, never reported as an error.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from reconsafe.core.config import DriftThresholds
from reconsafe.core.database import ReconDB
from reconsafe.core.models import (
    DriftSignal,
    DriftType,
    FinalResult,
    GuardrailAction,
    OutcomeType,
    PredictionLog,
    Severity,
    SuggestionOutcome,
    utcnow,
)
from reconsafe.services.metrics import record_drift_signal

logger = logging.getLogger(__name__)


def _bin_index(value: float, lower: float, width: float, bins: int) -> Optional[int]:
    """Equal-width bin for value; the top edge of the last bin is inclusive."""
    if value < lower:
        return None
    index = int((value - lower) / width)
    if index >= bins:
        upper = lower + width * bins
        if value <= upper + 1e-12:
            return bins - 1
        return None
    return index


def expected_calibration_error(pairs: Sequence[Tuple[float, bool]], bins: int = 10) -> float:
    """
    Expected Calibration Error over (predicted probability, was_correct) pairs.

    Predictions fall into `bins` equal-width bins over [0, 1]. Each non-empty
    bin contributes |mean confidence - accuracy| weighted by its share.
    """
    if not pairs:
        return 0.0
    width = 1.0 / bins
    buckets: Dict[int, List[Tuple[float, bool]]] = {}
    for predicted, actual in pairs:
        index = _bin_index(predicted, 0.0, width, bins)
        if index is None:
            continue
        buckets.setdefault(index, []).append((predicted, actual))

    total = len(pairs)
    ece = 0.0
    for members in buckets.values():
        mean_confidence = sum(p for p, _ in members) / len(members)
        accuracy = sum(1 for _, a in members if a) / len(members)
        ece += abs(mean_confidence - accuracy) * (len(members) / total)
    return ece


def population_stability_index(
    baseline: Sequence[float],
    current: Sequence[float],
    bins: int = 10,
    floor: float = 0.0001,
) -> float:
    """
    PSI between two samples over `bins` equal-width bins spanning the pooled
    [min, max]. Bin shares are floored so empty bins stay finite.
    """
    if not baseline or not current:
        return 0.0
    lower = min(min(baseline), min(current))
    upper = max(max(baseline), max(current))
    width = (upper - lower) / bins or 1.0

    def _shares(values: Sequence[float]) -> List[float]:
        counts = [0] * bins
        for value in values:
            index = _bin_index(value, lower, width, bins)
            if index is not None:
                counts[index] += 1
        return [max(count / len(values), floor) for count in counts]

    psi = 0.0
    for base_pct, cur_pct in zip(_shares(baseline), _shares(current)):
        psi += (cur_pct - base_pct) * math.log(cur_pct / base_pct)
    return psi


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _rate(items: Iterable, predicate) -> float:
    items = list(items)
    if not items:
        return 0.0
    return sum(1 for item in items if predicate(item)) / len(items)


class DriftDetector:
    def __init__(self, db: ReconDB, thresholds: Optional[DriftThresholds] = None):
        self.db = db
        self.thresholds = thresholds or DriftThresholds()

    def detect(self, tenant_id: str, now: Optional[datetime] = None) -> List[DriftSignal]:
        t = self.thresholds
        now = now or utcnow()
        recent_start = now - timedelta(days=t.recent_days)
        baseline_start = now - timedelta(days=t.baseline_days)

        predictions = [PredictionLog.from_row(row) for row in self.db.list_predictions(tenant_id, baseline_start)]
        recent_predictions = [p for p in predictions if _parse_ts(p.created_at) >= recent_start]
        baseline_predictions = [p for p in predictions if _parse_ts(p.created_at) < recent_start]

        outcomes = [SuggestionOutcome.from_row(row) for row in self.db.list_outcomes(tenant_id, since=baseline_start)]
        outcome_by_suggestion = {o.suggestion_id: o for o in outcomes}

        signals: List[DriftSignal] = []
        for check in (
            self._accuracy_drift(recent_predictions, baseline_predictions, outcome_by_suggestion),
            self._calibration_drift(recent_predictions, outcome_by_suggestion),
            self._feature_drift(recent_predictions, baseline_predictions),
            self._incorrect_rate_shift(outcomes, recent_start),
            self._false_auto_rate(outcomes),
            self._guardrail_block_rate(tenant_id, recent_start),
        ):
            if check is not None:
                signals.append(check)
                record_drift_signal(check.metric, check.severity.value)

        logger.info(
            "Drift detection for tenant %s: %d signal(s) from %d recent / %d baseline predictions",
            tenant_id,
            len(signals),
            len(recent_predictions),
            len(baseline_predictions),
        )
        return signals

    def _accuracy_drift(self, recent, baseline, outcome_by_suggestion) -> Optional[DriftSignal]:
        t = self.thresholds
        recent_linked = [p for p in recent if p.suggestion_id in outcome_by_suggestion]
        baseline_linked = [p for p in baseline if p.suggestion_id in outcome_by_suggestion]
        if len(recent_linked) < t.min_accuracy_samples or len(baseline_linked) < t.min_accuracy_samples:
            return None

        def correct(p: PredictionLog) -> bool:
            return outcome_by_suggestion[p.suggestion_id].final_result == FinalResult.CORRECT

        recent_accuracy = _rate(recent_linked, correct)
        baseline_accuracy = _rate(baseline_linked, correct)
        drop = baseline_accuracy - recent_accuracy
        if drop <= t.accuracy_drop:
            return None
        if drop > t.accuracy_drop_critical:
            severity = Severity.CRITICAL
        elif drop > t.accuracy_drop_high:
            severity = Severity.HIGH
        else:
            severity = Severity.MEDIUM
        return DriftSignal(
            drift_type=DriftType.OUTCOME_SHIFT,
            severity=severity,
            metric="accuracy",
            baseline_value=baseline_accuracy,
            current_value=recent_accuracy,
            delta=-drop,
            details={
                "baseline_sample_size": len(baseline_linked),
                "recent_sample_size": len(recent_linked),
            },
        )

    def _calibration_drift(self, recent, outcome_by_suggestion) -> Optional[DriftSignal]:
        t = self.thresholds
        pairs = [
            (p.predicted_confidence / 100.0, outcome_by_suggestion[p.suggestion_id].final_result == FinalResult.CORRECT)
            for p in recent
            if p.suggestion_id in outcome_by_suggestion
        ]
        if len(pairs) < t.min_calibration_samples:
            return None
        ece = expected_calibration_error(pairs, bins=t.histogram_bins)
        if ece <= t.calibration_error:
            return None
        return DriftSignal(
            drift_type=DriftType.CONFIDENCE_CALIBRATION,
            severity=Severity.HIGH if ece > t.calibration_error_high else Severity.MEDIUM,
            metric="expected_calibration_error",
            baseline_value=0.0,
            current_value=ece,
            delta=ece,
            details={"sample_size": len(pairs), "threshold": t.calibration_error},
        )

    def _feature_drift(self, recent, baseline) -> Optional[DriftSignal]:
        t = self.thresholds

        def feature(predictions: List[PredictionLog]) -> List[float]:
            values = []
            for p in predictions:
                value = p.explanation.get("amount_diff_ratio", 0)
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    values.append(float(value))
            return values

        baseline_values = feature(baseline)
        current_values = feature(recent)
        if len(baseline_values) < t.min_psi_samples or len(current_values) < t.min_psi_samples:
            return None
        psi = population_stability_index(baseline_values, current_values, bins=t.histogram_bins, floor=t.psi_floor)
        if psi <= t.psi:
            return None
        return DriftSignal(
            drift_type=DriftType.FEATURE_DISTRIBUTION,
            severity=Severity.HIGH if psi > t.psi_high else Severity.MEDIUM,
            metric="amount_diff_ratio_psi",
            baseline_value=0.0,
            current_value=psi,
            delta=psi,
            details={
                "baseline_sample_size": len(baseline_values),
                "current_sample_size": len(current_values),
                "threshold": t.psi,
            },
        )

    def _incorrect_rate_shift(self, outcomes: List[SuggestionOutcome], recent_start: datetime) -> Optional[DriftSignal]:
        t = self.thresholds
        recent = [o for o in outcomes if _parse_ts(o.decided_at) >= recent_start]
        baseline = [o for o in outcomes if _parse_ts(o.decided_at) < recent_start]
        if len(recent) < t.min_outcome_samples or len(baseline) < t.min_outcome_samples:
            return None

        def incorrect(o: SuggestionOutcome) -> bool:
            return o.final_result == FinalResult.INCORRECT

        recent_rate = _rate(recent, incorrect)
        baseline_rate = _rate(baseline, incorrect)
        if baseline_rate <= 0 or recent_rate <= baseline_rate * t.incorrect_rate_multiplier:
            return None
        return DriftSignal(
            drift_type=DriftType.OUTCOME_SHIFT,
            severity=Severity.HIGH if recent_rate > t.incorrect_rate_high else Severity.MEDIUM,
            metric="incorrect_rate",
            baseline_value=baseline_rate,
            current_value=recent_rate,
            delta=recent_rate - baseline_rate,
            details={
                "multiplier": recent_rate / baseline_rate,
                "threshold_multiplier": t.incorrect_rate_multiplier,
            },
        )

    def _false_auto_rate(self, outcomes: List[SuggestionOutcome]) -> Optional[DriftSignal]:
        t = self.thresholds
        auto_confirmed = [o for o in outcomes if o.outcome == OutcomeType.AUTO_CONFIRMED]
        if len(auto_confirmed) < t.min_auto_confirmed:
            return None
        false_positives = sum(1 for o in auto_confirmed if o.final_result == FinalResult.INCORRECT)
        rate = false_positives / len(auto_confirmed)
        if rate <= t.false_auto_rate:
            return None
        if rate > t.false_auto_rate_critical:
            severity = Severity.CRITICAL
        elif rate > t.false_auto_rate_high:
            severity = Severity.HIGH
        else:
            severity = Severity.MEDIUM
        return DriftSignal(
            drift_type=DriftType.AUTOMATION_RISK,
            severity=severity,
            metric="false_auto_rate",
            baseline_value=t.false_auto_rate,
            current_value=rate,
            delta=rate - t.false_auto_rate,
            details={
                "auto_confirmed_count": len(auto_confirmed),
                "false_positives": false_positives,
            },
        )

    def _guardrail_block_rate(self, tenant_id: str, recent_start: datetime) -> Optional[DriftSignal]:
        t = self.thresholds
        total = self.db.count_guardrail_events(tenant_id, recent_start)
        if total < t.min_guardrail_events:
            return None
        blocked = self.db.count_guardrail_events(tenant_id, recent_start, action=GuardrailAction.BLOCK.value)
        rate = blocked / total
        if rate <= t.guardrail_block_rate:
            return None
        return DriftSignal(
            drift_type=DriftType.AUTOMATION_RISK,
            severity=Severity.HIGH if rate > t.guardrail_block_rate_high else Severity.MEDIUM,
            metric="guardrail_block_rate",
            baseline_value=t.guardrail_block_rate,
            current_value=rate,
            delta=rate - t.guardrail_block_rate,
            details={"total_events": total, "blocked_events": blocked},
        )
