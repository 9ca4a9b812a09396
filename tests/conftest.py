import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from reconsafe.core import database as db_module
from reconsafe.di.container import container
from reconsafe.services.metrics import reset_metrics
from reconsafe.services.rate_limit import reset_rate_limits


@pytest.fixture()
def db(tmp_path, monkeypatch):
    monkeypatch.setenv("RECONSAFE_DB_PATH", str(tmp_path / "reconsafe-test.db"))
    monkeypatch.setenv("RECONSAFE_SECRET_KEY", "test-secret-key")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("TEMPORAL_ENABLED", "false")
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("ALERT_SLACK_WEBHOOK", raising=False)
    db_module._DB_INSTANCE = None
    container.reset()
    reset_metrics()
    reset_rate_limits()
    db = db_module.get_db()
    db.initialize()
    return db
