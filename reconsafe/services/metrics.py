"""
Metrics collection for the ReconSafe API.
"""
from typing import Dict, Any
from collections import defaultdict
from datetime import datetime, timezone


def _fresh() -> Dict[str, Any]:
    return {
        "requests": defaultdict(int),
        "errors": defaultdict(int),
        "suggestions": defaultdict(int),
        "dispositions": defaultdict(int),
        "drift_signals": defaultdict(int),
        "governor_actions": defaultdict(int),
        "response_times": [],
        "start_time": datetime.now(timezone.utc).isoformat(),
    }


# In-memory metrics store (use Prometheus/StatsD in production)
_metrics: Dict[str, Any] = _fresh()


def record_request(method: str, path: str, status_code: int, duration_ms: float):
    """Record HTTP request metrics."""
    _metrics["requests"][f"{method} {path}"] += 1
    _metrics["requests"][f"status_{status_code}"] += 1

    # Keep last 1000 response times
    _metrics["response_times"].append(duration_ms)
    if len(_metrics["response_times"]) > 1000:
        _metrics["response_times"] = _metrics["response_times"][-1000:]


def record_error(error_type: str, path: str = ""):
    """Record error metrics."""
    _metrics["errors"][error_type] += 1
    if path:
        _metrics["errors"][f"{error_type}:{path}"] += 1


def record_suggestions_generated(exception_type: str, count: int):
    _metrics["suggestions"][f"runs:{exception_type}"] += 1
    _metrics["suggestions"]["generated"] += count


def record_disposition(outcome: str):
    _metrics["dispositions"][outcome] += 1


def record_drift_signal(metric: str, severity: str):
    _metrics["drift_signals"][f"{metric}:{severity}"] += 1


def record_governor_action(action: str):
    _metrics["governor_actions"][action] += 1


def get_metrics() -> Dict[str, Any]:
    """Get current metrics."""
    response_times = _metrics["response_times"]
    avg_response_time = sum(response_times) / len(response_times) if response_times else 0
    p95_response_time = sorted(response_times)[int(len(response_times) * 0.95)] if len(response_times) >= 20 else 0

    total_requests = sum(v for k, v in _metrics["requests"].items() if not k.startswith("status_"))
    total_errors = sum(_metrics["errors"].values())

    uptime_seconds = (datetime.now(timezone.utc) - datetime.fromisoformat(_metrics["start_time"])).total_seconds()

    return {
        "uptime_seconds": int(uptime_seconds),
        "uptime_human": _format_uptime(uptime_seconds),
        "requests": {
            "total": total_requests,
            "by_endpoint": {k: v for k, v in _metrics["requests"].items() if not k.startswith("status_")},
            "by_status": {k: v for k, v in _metrics["requests"].items() if k.startswith("status_")},
        },
        "errors": {
            "total": total_errors,
            "by_type": dict(_metrics["errors"]),
        },
        "suggestions": dict(_metrics["suggestions"]),
        "dispositions": dict(_metrics["dispositions"]),
        "drift_signals": dict(_metrics["drift_signals"]),
        "governor_actions": dict(_metrics["governor_actions"]),
        "performance": {
            "avg_response_time_ms": round(avg_response_time, 2),
            "p95_response_time_ms": round(p95_response_time, 2),
        },
    }


def _format_uptime(seconds: float) -> str:
    """Format uptime in human-readable format."""
    days = int(seconds // 86400)
    hours = int((seconds % 86400) // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)


def reset_metrics():
    """Reset all metrics (for testing)."""
    global _metrics
    _metrics = _fresh()
