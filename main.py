"""
ReconSafe - FastAPI Backend

Reconciliation suggestions with an automation-safety monitor.

Run Instructions:
-----------------
1. Install the package:
   pip install -e .

2. Run the app locally with uvicorn:
   uvicorn main:app --host 0.0.0.0 --port 8000 --reload

3. Test /health endpoint:
   curl http://localhost:8000/health

4. Generate suggestions for an exception:
   curl -H "Authorization: Bearer <token>" \
     http://localhost:8000/reconciliation-suggestions/exception/<exception_id>
"""
import os
import time
import uuid

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from reconsafe.api import ml_monitoring_router, suggestions_router
from reconsafe.core.database import get_db
from reconsafe.services.errors import ReconSafeError, status_for
from reconsafe.services.logging import log_error, log_request, logger
from reconsafe.services.metrics import get_metrics, record_error, record_request
from reconsafe.services.rate_limit import RateLimitMiddleware
from reconsafe.workflows.temporal_runtime import temporal_enabled
from reconsafe.workflows.temporal_schedules import TemporalScheduleManager

app = FastAPI(
    title="ReconSafe API",
    description="""
    ReconSafe API - Reconciliation Suggestions & Automation Safety

    - Ranked match suggestions for open reconciliation exceptions
    - Confirm / reject / guarded auto-confirm
    - Drift detection with an automatic kill switch
    """,
    version="1.0.0",
)

app.include_router(suggestions_router)
app.include_router(ml_monitoring_router)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and record metrics."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        client_id = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000

            log_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
                client_id=client_id,
            )
            record_request(request.method, request.url.path, response.status_code, duration_ms)

            if response.status_code >= 400:
                record_error(f"http_{response.status_code}", request.url.path)

            return response
        except Exception as e:
            record_error("exception", request.url.path)
            log_error("request_exception", str(e), {"path": request.url.path, "method": request.method})
            raise


# Middleware order: last added is first executed
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RateLimitMiddleware)


@app.exception_handler(ReconSafeError)
async def reconsafe_exception_handler(request: Request, exc: ReconSafeError):
    """Handle all ReconSafeErrors with structured responses."""
    status_code = status_for(exc)
    log_error(
        exc.code.value,
        str(exc),
        {"path": str(request.url.path), "method": request.method, "status_code": status_code, **exc.context},
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    error_id = str(uuid.uuid4())
    record_error("unhandled", request.url.path)
    log_error(
        "unhandled_exception",
        str(exc),
        {"error_id": error_id, "path": str(request.url.path), "method": request.method},
        exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "error_id": error_id,
            "message": "An unexpected error occurred. Please try again or contact support.",
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Initialize the store and, with Temporal enabled, the drift monitoring schedules."""
    get_db().initialize()
    if not temporal_enabled():
        return

    tenants = [t.strip() for t in os.getenv("RECONSAFE_DRIFT_TENANTS", "").split(",") if t.strip()]
    frequency = os.getenv("RECONSAFE_DRIFT_SCHEDULE", "daily")
    manager = TemporalScheduleManager()
    for tenant_id in tenants:
        try:
            result = await manager.ensure_schedule(tenant_id, frequency=frequency)
            logger.info(f"Drift monitoring schedule for {tenant_id}: {result.get('status')}")
        except Exception as exc:
            logger.warning(f"Drift monitoring schedule for {tenant_id} not registered: {exc}")


@app.get(
    "/health",
    tags=["System"],
    summary="Health Check",
    description="Check API health and version",
)
async def health():
    """No authentication required."""
    db = get_db()
    return {
        "status": "healthy",
        "version": "v1.0.0",
        "database": "postgres" if db.use_postgres else "sqlite",
        "temporal_enabled": temporal_enabled(),
    }


@app.get(
    "/metrics",
    tags=["System"],
    summary="Get Metrics",
    description="Get API performance, suggestion and governance metrics",
)
async def metrics_endpoint():
    return get_metrics()
