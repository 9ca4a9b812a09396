import asyncio

import pytest

from reconsafe.core.models import MLStatus, TenantMLSettings
from reconsafe.services.governor import TenantMLSettingsRepository
from reconsafe.workflows.temporal_activities import (
    drift_detection_activity,
    expire_stale_suggestions_activity,
    repair_allocations_activity,
)
from reconsafe.workflows.temporal_runtime import temporal_enabled
from reconsafe.workflows.temporal_schedules import (
    TemporalScheduleManager,
    cron_from_frequency,
    parse_time_of_day,
    schedule_id_for,
)

TENANT = "tenant-a"


def test_drift_detection_activity_skips_disabled_tenant(db):
    result = asyncio.run(drift_detection_activity({"tenant_id": TENANT}))
    assert result["tenant_id"] == TENANT
    assert result["skipped"] is True


def test_drift_detection_activity_runs_for_active_tenant(db):
    TenantMLSettingsRepository(db).upsert(
        TenantMLSettings(tenant_id=TENANT, ml_enabled=True, ml_status=MLStatus.ACTIVE)
    )
    result = asyncio.run(drift_detection_activity({"tenant_id": TENANT}))
    assert result["skipped"] is False
    assert result["ml_status"] == "ACTIVE"


def test_activities_require_tenant(db):
    with pytest.raises(ValueError):
        asyncio.run(repair_allocations_activity({}))


def test_maintenance_activities_on_empty_tenant(db):
    assert asyncio.run(repair_allocations_activity({"tenant_id": TENANT})) == {"tenant_id": TENANT, "repaired": 0}
    assert asyncio.run(
        expire_stale_suggestions_activity({"tenant_id": TENANT, "expire_after_hours": 24})
    ) == {"tenant_id": TENANT, "expired": 0}


def test_temporal_enabled_flag(monkeypatch):
    monkeypatch.setenv("TEMPORAL_ENABLED", "false")
    assert temporal_enabled() is False
    monkeypatch.setenv("TEMPORAL_ENABLED", "TRUE")
    assert temporal_enabled() is True


def test_cron_from_frequency():
    assert cron_from_frequency("daily", "03:30") == "30 3 * * *"
    assert cron_from_frequency("hourly", "03:15") == "15 * * * *"
    assert cron_from_frequency("weekly", "23:00") == "0 23 * * 1"
    assert cron_from_frequency("monthly") is None


def test_parse_time_of_day_defaults_and_clamps(monkeypatch):
    monkeypatch.delenv("RECONSAFE_DRIFT_SCHEDULE_TIME", raising=False)
    assert parse_time_of_day() == (0, 2)
    assert parse_time_of_day("25:75") == (59, 23)
    assert parse_time_of_day("late") == (0, 2)


def test_build_schedule(monkeypatch):
    monkeypatch.setenv("TEMPORAL_TASK_QUEUE", "reconsafe-test")
    schedule = TemporalScheduleManager().build_schedule(TENANT, "0 2 * * *", expire_after_hours=72)
    assert schedule.spec.cron_expressions == ["0 2 * * *"]
    assert schedule.action.task_queue == "reconsafe-test"
    assert schedule.action.id == f"drift-scheduled-{TENANT}"
    assert schedule_id_for(TENANT) == f"drift-monitoring-{TENANT}"
