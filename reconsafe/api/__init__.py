from reconsafe.api.suggestions import router as suggestions_router
from reconsafe.api.ml_monitoring import router as ml_monitoring_router

__all__ = ["suggestions_router", "ml_monitoring_router"]
