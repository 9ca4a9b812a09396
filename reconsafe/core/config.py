"""
ReconSafe Configuration

Tunable thresholds for:
- Suggestion generation (amount tolerance, admission score, top-N, candidate caps)
- Auto-confirm guardrail (minimum confidence)
- Drift detection (sample minimums, alert thresholds, window sizes)

Defaults reproduce the production rubric. Every value can be overridden from
the environment so a deployment can tune without a code change.
"""

import os
from dataclasses import dataclass, asdict
from typing import Any, Dict


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass
class SuggestionConfig:
    """
    Settings for the suggestion engine.

    - amount_tolerance_pct: fraction of the pivot amount used for the coarse
      pre-filter; candidates further than 2x this are never scored
    - min_score: admission threshold for surfacing a suggestion at all
    - auto_confirm_threshold: minimum confidence the guardrail lets through
      for automated confirmation
    """
    amount_tolerance_pct: float = 0.05
    min_score: int = 20
    max_suggestions: int = 5
    candidate_limit: int = 50
    auto_confirm_threshold: int = 85
    default_currency: str = "VND"
    model_version: str = "v2.0"

    def __post_init__(self):
        if not (0 < self.amount_tolerance_pct < 1):
            raise ValueError("amount_tolerance_pct must be between 0 and 1")
        if not (0 <= self.min_score <= self.auto_confirm_threshold <= 100):
            raise ValueError("Scores must satisfy 0 <= min_score <= auto_confirm_threshold <= 100")
        if self.max_suggestions < 1 or self.candidate_limit < 1:
            raise ValueError("max_suggestions and candidate_limit must be positive")

    @classmethod
    def from_env(cls) -> "SuggestionConfig":
        return cls(
            amount_tolerance_pct=_env_float("SUGGESTION_AMOUNT_TOLERANCE", 0.05),
            min_score=_env_int("SUGGESTION_MIN_SCORE", 20),
            max_suggestions=_env_int("SUGGESTION_MAX_RESULTS", 5),
            candidate_limit=_env_int("SUGGESTION_CANDIDATE_LIMIT", 50),
            auto_confirm_threshold=_env_int("AUTO_CONFIRM_MIN_CONFIDENCE", 85),
            default_currency=os.getenv("DEFAULT_CURRENCY", "VND"),
            model_version=os.getenv("ML_MODEL_VERSION", "v2.0"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DriftThresholds:
    """
    Thresholds for drift detection.

    Windows: recent = last `recent_days`, baseline = `recent_days` to
    `baseline_days` ago. A signal is skipped (not an error) when its sample
    minimum is not met.
    """
    recent_days: int = 7
    baseline_days: int = 30

    accuracy_drop: float = 0.05
    accuracy_drop_high: float = 0.10
    accuracy_drop_critical: float = 0.15
    min_accuracy_samples: int = 5

    calibration_error: float = 0.08
    calibration_error_high: float = 0.15
    min_calibration_samples: int = 10

    psi: float = 0.25
    psi_high: float = 0.5
    min_psi_samples: int = 10

    incorrect_rate_multiplier: float = 2.0
    incorrect_rate_high: float = 0.2
    min_outcome_samples: int = 5

    false_auto_rate: float = 0.01
    false_auto_rate_high: float = 0.02
    false_auto_rate_critical: float = 0.05
    min_auto_confirmed: int = 5

    guardrail_block_rate: float = 0.20
    guardrail_block_rate_high: float = 0.4
    min_guardrail_events: int = 10

    histogram_bins: int = 10
    psi_floor: float = 0.0001

    def __post_init__(self):
        if not (0 < self.recent_days < self.baseline_days):
            raise ValueError("recent_days must be positive and smaller than baseline_days")
        if self.histogram_bins < 1:
            raise ValueError("histogram_bins must be positive")
        if not (self.accuracy_drop <= self.accuracy_drop_high <= self.accuracy_drop_critical):
            raise ValueError("Accuracy thresholds must be ascending")
        if not (self.false_auto_rate <= self.false_auto_rate_high <= self.false_auto_rate_critical):
            raise ValueError("False-auto thresholds must be ascending")

    @classmethod
    def from_env(cls) -> "DriftThresholds":
        return cls(
            recent_days=_env_int("DRIFT_RECENT_DAYS", 7),
            baseline_days=_env_int("DRIFT_BASELINE_DAYS", 30),
            accuracy_drop=_env_float("DRIFT_ACCURACY_DROP", 0.05),
            calibration_error=_env_float("DRIFT_CALIBRATION_ERROR", 0.08),
            psi=_env_float("DRIFT_PSI_THRESHOLD", 0.25),
            false_auto_rate=_env_float("DRIFT_FALSE_AUTO_RATE", 0.01),
            guardrail_block_rate=_env_float("DRIFT_GUARDRAIL_BLOCK_RATE", 0.20),
        )
