from datetime import datetime, timedelta, timezone

import pytest

from reconsafe.core.config import DriftThresholds
from reconsafe.core.models import new_id
from reconsafe.services.drift_detection import (
    DriftDetector,
    _bin_index,
    expected_calibration_error,
    population_stability_index,
)

TENANT = "tenant-a"
NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)
RECENT = NOW - timedelta(days=2)
BASELINE = NOW - timedelta(days=15)


def _prediction(db, at, confidence=70, ratio=0.0, suggestion_id=None):
    suggestion_id = suggestion_id or new_id()
    db.insert_prediction_log(
        {
            "id": new_id(),
            "tenant_id": TENANT,
            "suggestion_id": suggestion_id,
            "model_version": "v2.0",
            "predicted_confidence": confidence,
            "explanation": {"amount_diff_ratio": ratio},
            "created_at": at.isoformat(),
        }
    )
    return suggestion_id


def _outcome(db, at, suggestion_id=None, correct=True, outcome="CONFIRMED_MANUAL"):
    db.insert_outcome(
        {
            "id": new_id(),
            "tenant_id": TENANT,
            "suggestion_id": suggestion_id or new_id(),
            "exception_id": new_id(),
            "outcome": outcome,
            "confidence_at_time": 70,
            "final_result": "CORRECT" if correct else "INCORRECT",
            "rationale_snapshot": {},
            "decided_by": "user-1",
            "decided_at": at.isoformat(),
        }
    )


def _linked(db, at, count, correct, confidence=70):
    for i in range(count):
        suggestion_id = _prediction(db, at, confidence=confidence)
        _outcome(db, at, suggestion_id, correct=i < correct)


def _by_metric(signals):
    return {s.metric: s for s in signals}


class TestStatistics:
    def test_last_bin_is_inclusive(self):
        assert _bin_index(1.0, 0.0, 0.1, 10) == 9
        assert _bin_index(0.0, 0.0, 0.1, 10) == 0
        assert _bin_index(-0.1, 0.0, 0.1, 10) is None

    def test_calibration_error_is_zero_when_confidence_matches_accuracy(self):
        pairs = [(0.85, True)] * 17 + [(0.85, False)] * 3
        assert expected_calibration_error(pairs) == pytest.approx(0.0, abs=1e-9)

    def test_calibration_error_weights_bins(self):
        pairs = [(0.9, False)] * 10 + [(0.2, False)] * 10
        assert expected_calibration_error(pairs) == pytest.approx(0.55)
        assert expected_calibration_error([]) == 0.0

    def test_psi_identical_samples(self):
        assert population_stability_index([0.1, 0.2, 0.3], [0.1, 0.2, 0.3]) == pytest.approx(0.0)

    def test_psi_shifted_samples(self):
        baseline = [0.0] * 10
        assert population_stability_index(baseline, [0.0] * 5 + [1.0] * 5) == pytest.approx(4.6, abs=0.01)
        assert population_stability_index(baseline, [1.0] * 10) == pytest.approx(18.42, abs=0.01)

    def test_psi_empty_sample(self):
        assert population_stability_index([], [1.0]) == 0.0


class TestDriftDetector:
    def test_no_data_no_signals(self, db):
        assert DriftDetector(db).detect(TENANT, now=NOW) == []

    def test_accuracy_drop_is_critical(self, db):
        _linked(db, BASELINE, 10, correct=9)
        _linked(db, RECENT, 10, correct=7)

        signals = _by_metric(DriftDetector(db).detect(TENANT, now=NOW))

        accuracy = signals["accuracy"]
        assert accuracy.severity.value == "critical"
        assert accuracy.drift_type.value == "OUTCOME_SHIFT"
        assert accuracy.baseline_value == pytest.approx(0.9)
        assert accuracy.current_value == pytest.approx(0.7)
        assert accuracy.delta == pytest.approx(-0.2)
        assert accuracy.details == {"baseline_sample_size": 10, "recent_sample_size": 10}

        # 30% incorrect now against 10% before
        assert signals["incorrect_rate"].severity.value == "high"
        assert "expected_calibration_error" not in signals

    def test_small_accuracy_drop_is_medium(self, db):
        _linked(db, BASELINE, 10, correct=10)
        _linked(db, RECENT, 10, correct=9, confidence=90)
        signals = _by_metric(DriftDetector(db).detect(TENANT, now=NOW))
        assert signals["accuracy"].severity.value == "medium"
        # no incorrect outcomes in the baseline, so no rate to compare against
        assert "incorrect_rate" not in signals

    def test_incorrect_rate_needs_nonzero_baseline(self, db):
        for _ in range(20):
            _outcome(db, BASELINE, correct=True)
        for i in range(20):
            _outcome(db, RECENT, correct=i >= 10)
        signals = _by_metric(DriftDetector(db).detect(TENANT, now=NOW))
        assert "incorrect_rate" not in signals

    def test_moderate_incorrect_rate_rise_is_medium(self, db):
        for i in range(20):
            _outcome(db, BASELINE, correct=i >= 1)
        for i in range(20):
            _outcome(db, RECENT, correct=i >= 3)

        signal = _by_metric(DriftDetector(db).detect(TENANT, now=NOW))["incorrect_rate"]

        assert signal.severity.value == "medium"
        assert signal.baseline_value == pytest.approx(0.05)
        assert signal.current_value == pytest.approx(0.15)
        assert signal.details["multiplier"] == pytest.approx(3.0)

    def test_accuracy_needs_minimum_samples(self, db):
        _linked(db, BASELINE, 10, correct=10)
        _linked(db, RECENT, 4, correct=0)
        signals = _by_metric(DriftDetector(db).detect(TENANT, now=NOW))
        assert "accuracy" not in signals

    def test_miscalibration(self, db):
        _linked(db, RECENT, 20, correct=10, confidence=90)
        signal = _by_metric(DriftDetector(db).detect(TENANT, now=NOW))["expected_calibration_error"]
        assert signal.severity.value == "high"
        assert signal.current_value == pytest.approx(0.4)
        assert signal.details["sample_size"] == 20

    def test_feature_distribution_shift(self, db):
        for _ in range(10):
            _prediction(db, BASELINE, ratio=0.0)
            _prediction(db, RECENT, ratio=0.09)
        signal = _by_metric(DriftDetector(db).detect(TENANT, now=NOW))["amount_diff_ratio_psi"]
        assert signal.drift_type.value == "FEATURE_DISTRIBUTION"
        assert signal.severity.value == "high"
        assert signal.current_value == pytest.approx(18.42, abs=0.01)

    def test_stable_features_do_not_fire(self, db):
        for _ in range(10):
            _prediction(db, BASELINE, ratio=0.02)
            _prediction(db, RECENT, ratio=0.02)
        assert "amount_diff_ratio_psi" not in _by_metric(DriftDetector(db).detect(TENANT, now=NOW))

    def test_false_auto_rate_is_critical(self, db):
        for i in range(10):
            _outcome(db, RECENT, correct=i > 0, outcome="AUTO_CONFIRMED")
        signal = _by_metric(DriftDetector(db).detect(TENANT, now=NOW))["false_auto_rate"]
        assert signal.severity.value == "critical"
        assert signal.drift_type.value == "AUTOMATION_RISK"
        assert signal.current_value == pytest.approx(0.1)
        assert signal.details == {"auto_confirmed_count": 10, "false_positives": 1}

    def test_false_auto_rate_needs_minimum_samples(self, db):
        for _ in range(4):
            _outcome(db, RECENT, correct=False, outcome="AUTO_CONFIRMED")
        assert DriftDetector(db).detect(TENANT, now=NOW) == []

    def test_guardrail_block_rate(self, db):
        for i in range(10):
            db.insert_guardrail_event(
                {
                    "tenant_id": TENANT,
                    "suggestion_id": new_id(),
                    "action": "BLOCK" if i < 5 else "ALLOW",
                    "reason": "ml_limited" if i < 5 else "allowed",
                    "created_at": RECENT.isoformat(),
                }
            )
        signal = _by_metric(DriftDetector(db).detect(TENANT, now=NOW))["guardrail_block_rate"]
        assert signal.severity.value == "high"
        assert signal.details == {"total_events": 10, "blocked_events": 5}

    def test_data_outside_baseline_window_is_ignored(self, db):
        old = NOW - timedelta(days=45)
        _linked(db, old, 10, correct=10)
        _linked(db, RECENT, 10, correct=5)
        assert "accuracy" not in _by_metric(DriftDetector(db).detect(TENANT, now=NOW))

    def test_other_tenants_are_isolated(self, db):
        _linked(db, BASELINE, 10, correct=10)
        _linked(db, RECENT, 10, correct=5)
        assert DriftDetector(db).detect("tenant-b", now=NOW) == []

    def test_thresholds_are_configurable(self, db):
        _linked(db, BASELINE, 10, correct=10)
        _linked(db, RECENT, 10, correct=9, confidence=90)
        strict = DriftThresholds(accuracy_drop=0.2, accuracy_drop_high=0.3, accuracy_drop_critical=0.4)
        assert "accuracy" not in _by_metric(DriftDetector(db, strict).detect(TENANT, now=NOW))


def test_psi_grows_as_distribution_shifts():
    baseline = [i / 100 for i in range(20)]
    values = []
    for shift in (0.0, 0.05, 0.1, 0.2):
        values.append(population_stability_index(baseline, [v + shift for v in baseline]))
    assert values[0] == pytest.approx(0.0)
    assert values == sorted(values)
    assert values[-1] > values[1]
