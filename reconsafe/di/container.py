"""Dependency injection container for core services."""
from reconsafe.core.config import DriftThresholds, SuggestionConfig
from reconsafe.core.database import ReconDB, get_db
from reconsafe.services.calibration import CalibrationReporter
from reconsafe.services.drift_detection import DriftDetector
from reconsafe.services.governor import AutoResponseGovernor, TenantMLSettingsRepository
from reconsafe.services.lifecycle import SuggestionLifecycle
from reconsafe.services.ml_summary import MLSummaryService
from reconsafe.services.suggestions import SuggestionGenerator


class ServiceContainer:
    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._db = None
        self._suggestion_config = None
        self._thresholds = None
        self._settings = None
        self._generator = None
        self._lifecycle = None
        self._detector = None
        self._governor = None
        self._calibration = None
        self._summary = None

    def db(self) -> ReconDB:
        current = get_db()
        if self._db is not current:
            # The store singleton was swapped (tests, reconfiguration); rebuild.
            self.reset()
            self._db = current
        return self._db

    def suggestion_config(self) -> SuggestionConfig:
        if not self._suggestion_config:
            self._suggestion_config = SuggestionConfig.from_env()
        return self._suggestion_config

    def thresholds(self) -> DriftThresholds:
        if not self._thresholds:
            self._thresholds = DriftThresholds.from_env()
        return self._thresholds

    def settings(self) -> TenantMLSettingsRepository:
        db = self.db()
        if not self._settings:
            self._settings = TenantMLSettingsRepository(db)
        return self._settings

    def generator(self) -> SuggestionGenerator:
        db = self.db()
        if not self._generator:
            self._generator = SuggestionGenerator(db, settings_repo=self.settings(), config=self.suggestion_config())
        return self._generator

    def lifecycle(self) -> SuggestionLifecycle:
        db = self.db()
        if not self._lifecycle:
            self._lifecycle = SuggestionLifecycle(db, settings_repo=self.settings(), config=self.suggestion_config())
        return self._lifecycle

    def detector(self) -> DriftDetector:
        db = self.db()
        if not self._detector:
            self._detector = DriftDetector(db, self.thresholds())
        return self._detector

    def governor(self) -> AutoResponseGovernor:
        db = self.db()
        if not self._governor:
            self._governor = AutoResponseGovernor(db, settings_repo=self.settings(), detector=self.detector())
        return self._governor

    def calibration(self) -> CalibrationReporter:
        db = self.db()
        if not self._calibration:
            self._calibration = CalibrationReporter(db)
        return self._calibration

    def summary(self) -> MLSummaryService:
        db = self.db()
        if not self._summary:
            self._summary = MLSummaryService(db, settings_repo=self.settings(), thresholds=self.thresholds())
        return self._summary


container = ServiceContainer()
