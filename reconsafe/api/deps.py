"""FastAPI dependencies for ReconSafe core services."""
from reconsafe.di.container import container


def get_suggestion_generator():
    return container.generator()


def get_lifecycle():
    return container.lifecycle()


def get_governor():
    return container.governor()


def get_calibration_reporter():
    return container.calibration()


def get_ml_summary():
    return container.summary()
