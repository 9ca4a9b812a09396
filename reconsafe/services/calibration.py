"""Calibration report: empirical success rate of recent suggestion outcomes."""
from typing import Any, Dict

from reconsafe.core.database import ReconDB
from reconsafe.core.models import OutcomeType

RECENT_OUTCOME_LIMIT = 100

_CONFIRMED = {OutcomeType.CONFIRMED_MANUAL.value, OutcomeType.AUTO_CONFIRMED.value}


class CalibrationReporter:
    def __init__(self, db: ReconDB):
        self.db = db

    def report(self, tenant_id: str) -> Dict[str, Any]:
        stats = self.db.list_calibration_stats(tenant_id)
        outcomes = self.db.list_outcomes(tenant_id, limit=RECENT_OUTCOME_LIMIT)

        recent = {
            "total": len(outcomes),
            "confirmed": sum(1 for o in outcomes if o["outcome"] in _CONFIRMED),
            "rejected": sum(1 for o in outcomes if o["outcome"] == OutcomeType.REJECTED.value),
            "timed_out": sum(1 for o in outcomes if o["outcome"] == OutcomeType.TIMED_OUT.value),
        }
        rate = recent["confirmed"] / recent["total"] * 100 if recent["total"] else 0

        return {
            "calibration_stats": stats,
            "recent_outcomes": recent,
            "empirical_success_rate": round(rate, 2),
            "sample_size": recent["total"],
        }
