"""
ML Monitoring Summary

Read-only dashboard view of a tenant's automation health over the last 30
days: current status, accuracy, calibration, automation risk and the most
recent drift signals.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from reconsafe.core.config import DriftThresholds
from reconsafe.core.database import ReconDB
from reconsafe.core.models import (
    DriftSignal,
    FinalResult,
    GuardrailAction,
    OutcomeType,
    PredictionLog,
    SuggestionOutcome,
    utcnow,
)
from reconsafe.services.drift_detection import expected_calibration_error
from reconsafe.services.governor import TenantMLSettingsRepository

RECENT_SIGNAL_LIMIT = 10


class MLSummaryService:
    def __init__(
        self,
        db: ReconDB,
        settings_repo: Optional[TenantMLSettingsRepository] = None,
        thresholds: Optional[DriftThresholds] = None,
    ):
        self.db = db
        self.settings_repo = settings_repo or TenantMLSettingsRepository(db)
        self.thresholds = thresholds or DriftThresholds()

    def summary(self, tenant_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        horizon = now - timedelta(days=self.thresholds.baseline_days)
        recent_start = now - timedelta(days=self.thresholds.recent_days)

        settings = self.settings_repo.get(tenant_id)
        predictions = [PredictionLog.from_row(row) for row in self.db.list_predictions(tenant_id, horizon)]
        outcomes = [SuggestionOutcome.from_row(row) for row in self.db.list_outcomes(tenant_id, since=horizon)]
        by_suggestion = {o.suggestion_id: o for o in outcomes}

        linked = [p for p in predictions if p.suggestion_id in by_suggestion]
        pairs = [
            (p.predicted_confidence / 100.0, by_suggestion[p.suggestion_id].final_result == FinalResult.CORRECT)
            for p in linked
        ]
        accuracy = None
        if pairs:
            accuracy = round(sum(1 for _, correct in pairs if correct) / len(pairs) * 100, 1)
        calibration_error = expected_calibration_error(pairs, bins=self.thresholds.histogram_bins)

        auto_confirmed = [o for o in outcomes if o.outcome == OutcomeType.AUTO_CONFIRMED]
        false_auto_rate = 0.0
        if auto_confirmed:
            false_auto = sum(1 for o in auto_confirmed if o.final_result == FinalResult.INCORRECT)
            false_auto_rate = false_auto / len(auto_confirmed) * 100

        total_events = self.db.count_guardrail_events(tenant_id, horizon)
        blocked_events = self.db.count_guardrail_events(tenant_id, horizon, action=GuardrailAction.BLOCK.value)
        block_rate = blocked_events / total_events * 100 if total_events else 0.0

        signals = [
            DriftSignal.from_row(row)
            for row in self.db.list_drift_signals(tenant_id, since=recent_start, limit=RECENT_SIGNAL_LIMIT)
        ]

        return {
            "model_version": settings.ml_model_version,
            "ml_status": settings.ml_status.value,
            "ml_enabled": settings.ml_enabled,
            "last_fallback_reason": settings.last_fallback_reason,
            "last_fallback_at": settings.last_fallback_at,
            "accuracy": accuracy,
            "calibration_error": round(calibration_error, 3),
            "sample_size": len(predictions),
            "false_auto_rate": round(false_auto_rate, 2),
            "guardrail_block_rate": round(block_rate, 1),
            "auto_confirmed_count": len(auto_confirmed),
            "drift_signals": [
                {
                    "id": s.id,
                    "type": s.drift_type.value,
                    "severity": s.severity.value,
                    "metric": s.metric,
                    "delta": s.delta,
                    "detected_at": s.detected_at,
                    "acknowledged": bool(s.acknowledged_at),
                    "auto_action_taken": s.auto_action_taken.value if s.auto_action_taken else None,
                }
                for s in signals
            ],
            "active_drift_count": sum(1 for s in signals if not s.acknowledged_at),
        }

    def drift_events(self, tenant_id: str, limit: int = 50) -> Dict[str, Any]:
        events = [DriftSignal.from_row(row).to_dict() for row in self.db.list_drift_signals(tenant_id, limit=limit)]
        return {"events": events, "total": len(events)}
