from reconsafe.workflows.temporal_runtime import TemporalRuntime, temporal_enabled
from reconsafe.workflows.temporal_schedules import TemporalScheduleManager, cron_from_frequency

__all__ = [
    "TemporalRuntime",
    "temporal_enabled",
    "TemporalScheduleManager",
    "cron_from_frequency",
]
