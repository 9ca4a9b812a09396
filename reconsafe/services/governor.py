"""
ReconSafe Auto-Response Governor

Turns drift signals into a change of the tenant's ML status:

    severity   ACTIVE     LIMITED    DISABLED
    critical   DISABLED   DISABLED   DISABLED
    high       LIMITED    LIMITED    DISABLED
    medium     ACTIVE     LIMITED    DISABLED
    low        ACTIVE     LIMITED    DISABLED

DISABLED (the kill switch) is left only through an explicit admin reset.
Every signal is persisted with the action the governor took for it.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from reconsafe.core.config import DriftThresholds
from reconsafe.core.database import ReconDB
from reconsafe.core.models import (
    AutoAction,
    DriftSignal,
    MLStatus,
    Severity,
    TenantMLSettings,
    utcnow,
)
from reconsafe.services.drift_detection import DriftDetector
from reconsafe.services.errors import ConflictError, NotFoundError, ValidationError
from reconsafe.services.logging import log_error, log_governance_event
from reconsafe.services.metrics import record_error, record_governor_action

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[MLStatus, Dict[Severity, MLStatus]] = {
    MLStatus.ACTIVE: {
        Severity.CRITICAL: MLStatus.DISABLED,
        Severity.HIGH: MLStatus.LIMITED,
        Severity.MEDIUM: MLStatus.ACTIVE,
        Severity.LOW: MLStatus.ACTIVE,
    },
    MLStatus.LIMITED: {
        Severity.CRITICAL: MLStatus.DISABLED,
        Severity.HIGH: MLStatus.LIMITED,
        Severity.MEDIUM: MLStatus.LIMITED,
        Severity.LOW: MLStatus.LIMITED,
    },
    MLStatus.DISABLED: {
        Severity.CRITICAL: MLStatus.DISABLED,
        Severity.HIGH: MLStatus.DISABLED,
        Severity.MEDIUM: MLStatus.DISABLED,
        Severity.LOW: MLStatus.DISABLED,
    },
}

ACTIONS: Dict[Severity, AutoAction] = {
    Severity.CRITICAL: AutoAction.KILL_SWITCH,
    Severity.HIGH: AutoAction.LIMIT,
    Severity.MEDIUM: AutoAction.WARN,
    Severity.LOW: AutoAction.NONE,
}

RESETTABLE = {MLStatus.ACTIVE.value, MLStatus.LIMITED.value}


def next_status(current: MLStatus, severity: Severity) -> MLStatus:
    return TRANSITIONS[current][severity]


def max_severity(signals: List[DriftSignal]) -> Optional[Severity]:
    if not signals:
        return None
    return max((s.severity for s in signals), key=lambda sev: sev.rank)


class TenantMLSettingsRepository:
    """Per-tenant ML settings. A tenant without a row is treated as DISABLED."""

    def __init__(self, db: ReconDB):
        self.db = db

    def get(self, tenant_id: str, cur=None) -> TenantMLSettings:
        row = self.db.get_ml_settings(tenant_id, cur=cur)
        if row is None:
            return TenantMLSettings(tenant_id=tenant_id)
        return TenantMLSettings.from_row(row)

    def exists(self, tenant_id: str) -> bool:
        return self.db.get_ml_settings(tenant_id) is not None

    def upsert(self, settings: TenantMLSettings) -> TenantMLSettings:
        settings.updated_at = utcnow().isoformat()
        self.db.upsert_ml_settings(settings.to_dict())
        return settings

    def compare_and_set(self, tenant_id: str, expected: MLStatus, updates: Dict[str, Any]) -> bool:
        return self.db.compare_and_set_ml_settings(tenant_id, expected.value, updates)


@dataclass
class GovernorDecision:
    action: AutoAction
    ml_status: MLStatus
    previous_status: MLStatus
    signals: List[DriftSignal] = field(default_factory=list)

    @property
    def status_changed(self) -> bool:
        return self.ml_status != self.previous_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signals": [s.to_dict() for s in self.signals],
            "action": self.action.value,
            "ml_status": self.ml_status.value,
            "previous_status": self.previous_status.value,
            "status_changed": self.status_changed,
        }


class AutoResponseGovernor:
    def __init__(
        self,
        db: ReconDB,
        settings_repo: Optional[TenantMLSettingsRepository] = None,
        detector: Optional[DriftDetector] = None,
        thresholds: Optional[DriftThresholds] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.db = db
        self.settings_repo = settings_repo or TenantMLSettingsRepository(db)
        self.detector = detector or DriftDetector(db, thresholds)
        self.http_client = http_client

    def respond(self, tenant_id: str, signals: List[DriftSignal]) -> GovernorDecision:
        severity = max_severity(signals)
        action = ACTIONS[severity] if severity else AutoAction.NONE

        settings = self.settings_repo.get(tenant_id)
        previous = settings.ml_status
        target = next_status(previous, severity) if severity else previous
        reason = None
        applied = False
        if target != previous:
            reason = self._fallback_reason(signals) if target == MLStatus.DISABLED else None
            settings, applied = self._transition(tenant_id, settings, severity, reason)
            target = settings.ml_status

        detected_at = utcnow().isoformat()
        for signal in signals:
            signal.tenant_id = tenant_id
            signal.model_version = settings.ml_model_version
            signal.auto_action_taken = action
            signal.detected_at = detected_at
            self.db.insert_drift_signal(signal.to_dict())

        decision = GovernorDecision(action=action, ml_status=target, previous_status=previous, signals=signals)
        record_governor_action(action.value)
        if applied:
            log_governance_event(
                tenant_id,
                action.value,
                target.value,
                reason=reason,
                previous_status=previous.value,
                signal_count=len(signals),
            )
            if target == MLStatus.DISABLED:
                self._send_kill_switch_alert(tenant_id, reason, signals)
        return decision

    def _transition(
        self,
        tenant_id: str,
        settings: TenantMLSettings,
        severity: Severity,
        reason: Optional[str],
    ):
        """
        Move to the next status with an optimistic check on the status read
        before, retrying once. Returns the settings and whether this call made
        the change.
        """
        for _ in range(2):
            target = next_status(settings.ml_status, severity)
            if target == settings.ml_status:
                return settings, False
            updates: Dict[str, Any] = {"ml_status": target.value}
            if target == MLStatus.DISABLED:
                updates.update(
                    ml_enabled=False,
                    last_fallback_reason=reason,
                    last_fallback_at=utcnow().isoformat(),
                )
            if self.settings_repo.compare_and_set(tenant_id, settings.ml_status, updates):
                return self.settings_repo.get(tenant_id), True
            settings = self.settings_repo.get(tenant_id)
        raise ConflictError(
            "ML settings changed concurrently",
            context={"tenant_id": tenant_id},
        )

    @staticmethod
    def _fallback_reason(signals: List[DriftSignal]) -> str:
        for signal in signals:
            if signal.severity == Severity.CRITICAL:
                return signal.metric
        return "critical_drift"

    def _send_kill_switch_alert(self, tenant_id: str, reason: Optional[str], signals: List[DriftSignal]) -> None:
        webhook = os.getenv("ALERT_SLACK_WEBHOOK", "").strip()
        if not webhook:
            return
        critical = [s for s in signals if s.severity == Severity.CRITICAL]
        details = json.dumps([s.to_dict() for s in critical], default=str)[:500]
        message = {
            "text": f"[CRITICAL] ML kill switch activated for tenant {tenant_id}",
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": "ML kill switch activated"},
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Tenant:*\n{tenant_id}"},
                        {"type": "mrkdwn", "text": f"*Reason:*\n{reason}"},
                        {"type": "mrkdwn", "text": f"*Signals:*\n{len(signals)}"},
                    ],
                },
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"*Critical signals:*\n```{details}```"},
                },
            ],
        }
        try:
            if self.http_client is not None:
                self.http_client.post(webhook, json=message, timeout=10)
            else:
                with httpx.Client() as client:
                    client.post(webhook, json=message, timeout=10)
        except httpx.HTTPError as exc:
            record_error("alert_failed")
            log_error("alert_failed", "Failed to send kill switch alert", {"tenant_id": tenant_id}, exc)

    def run_detection(self, tenant_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        settings = self.settings_repo.get(tenant_id)
        if not settings.ml_enabled and settings.ml_status != MLStatus.LIMITED:
            return {
                "skipped": True,
                "message": "ML not active, skipping drift detection",
                "ml_status": settings.ml_status.value,
                "signals": [],
                "action": AutoAction.NONE.value,
            }
        signals = self.detector.detect(tenant_id, now=now)
        decision = self.respond(tenant_id, signals)
        result = decision.to_dict()
        result["skipped"] = False
        return result

    def acknowledge(self, tenant_id: str, signal_id: str, actor_id: Optional[str]) -> Dict[str, Any]:
        if not self.db.acknowledge_drift_signal(tenant_id, signal_id, actor_id):
            raise NotFoundError("Drift signal", signal_id)
        logger.info("Drift signal %s acknowledged by %s", signal_id, actor_id)
        return {"success": True}

    def reset(self, tenant_id: str, status: Optional[str], actor_id: Optional[str] = None) -> TenantMLSettings:
        if status not in RESETTABLE:
            raise ValidationError("status", "status must be ACTIVE or LIMITED")
        current = self.settings_repo.get(tenant_id)
        target = MLStatus(status)
        updated = TenantMLSettings(
            tenant_id=tenant_id,
            ml_enabled=target == MLStatus.ACTIVE,
            ml_status=target,
            ml_model_version=current.ml_model_version,
            last_fallback_reason=None,
            last_fallback_at=None,
        )
        self.settings_repo.upsert(updated)
        record_governor_action("reset")
        log_governance_event(
            tenant_id,
            "reset",
            target.value,
            previous_status=current.ml_status.value,
            actor_id=actor_id,
        )
        return updated
