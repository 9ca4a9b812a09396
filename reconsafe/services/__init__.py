# Lazy imports to avoid dependency chains at startup
def __getattr__(name):
    if name == "SuggestionGenerator":
        from reconsafe.services.suggestions import SuggestionGenerator
        return SuggestionGenerator
    elif name == "SuggestionLifecycle":
        from reconsafe.services.lifecycle import SuggestionLifecycle
        return SuggestionLifecycle
    elif name == "DriftDetector":
        from reconsafe.services.drift_detection import DriftDetector
        return DriftDetector
    elif name == "AutoResponseGovernor":
        from reconsafe.services.governor import AutoResponseGovernor
        return AutoResponseGovernor
    elif name == "TenantMLSettingsRepository":
        from reconsafe.services.governor import TenantMLSettingsRepository
        return TenantMLSettingsRepository
    elif name == "CalibrationReporter":
        from reconsafe.services.calibration import CalibrationReporter
        return CalibrationReporter
    elif name == "MLSummaryService":
        from reconsafe.services.ml_summary import MLSummaryService
        return MLSummaryService
    elif name == "score_candidate":
        from reconsafe.services.scoring import score_candidate
        return score_candidate
    raise AttributeError(f"module 'reconsafe.services' has no attribute '{name}'")
