"""
Structured logging for ReconSafe.

All records go through the ``reconsafe`` logger. Set ``USE_JSON_LOGS=true``
for one JSON object per line; helper functions attach their fields under
``extra_fields`` so both formats carry the same message.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("reconsafe")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # records built by _emit have no source location
        if record.pathname:
            log_data["module"] = record.module
            log_data["function"] = record.funcName
            log_data["line"] = record.lineno

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update(getattr(record, "extra_fields", {}))
        return json.dumps(log_data, default=str)


def configure_logging(
    level: Optional[str] = None,
    json_logs: Optional[bool] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """(Re)attach the single console handler; arguments default to the environment."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_logs is None:
        json_logs = os.getenv("USE_JSON_LOGS", "false").lower() == "true"

    handler = logging.StreamHandler(stream or sys.stdout)
    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    logger.propagate = False
    return logger


configure_logging()


def _emit(level: int, message: str, extra_fields: Dict[str, Any], exc_info=None) -> None:
    # handle() skips the logger's level check
    if not logger.isEnabledFor(level):
        return
    record = logger.makeRecord(logger.name, level, "", 0, message, (), exc_info)
    record.extra_fields = extra_fields
    logger.handle(record)


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_id: Optional[str] = None,
    **kwargs
):
    """Log HTTP request."""
    extra_fields = {
        "type": "http_request",
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if client_id:
        extra_fields["client_id"] = client_id
    extra_fields.update(kwargs)
    _emit(logging.INFO, f"{method} {path} {status_code}", extra_fields)


def log_error(
    error_type: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    exception: Optional[BaseException] = None
):
    extra_fields = {"type": "error", "error_type": error_type, **(context or {})}
    exc_info = (type(exception), exception, exception.__traceback__) if exception else None
    _emit(logging.ERROR, message, extra_fields, exc_info)


def log_governance_event(
    tenant_id: str,
    action: str,
    ml_status: str,
    reason: Optional[str] = None,
    **kwargs
):
    """
    Log an automated governance decision.

    Kill-switch activations are logged at WARNING, everything else at INFO.
    """
    extra_fields = {
        "type": "governance",
        "tenant_id": tenant_id,
        "action": action,
        "ml_status": ml_status,
    }
    if reason:
        extra_fields["reason"] = reason
    extra_fields.update(kwargs)
    level = logging.WARNING if action == "kill_switch" else logging.INFO
    _emit(level, f"ML governance {action} for tenant {tenant_id} -> {ml_status}", extra_fields)
