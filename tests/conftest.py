import sys
from pathlib import Path

import pytest
from freezegun import freeze_time

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from margin_engine.engine.ledger.ledger import SkuLedger  # noqa: E402
from margin_engine.engine.service import build_engine  # noqa: E402
from margin_engine.util.metrics import CloudWatchMetrics  # noqa: E402

DEFAULT_ENV = {
    "AWS_ACCESS_KEY_ID": "test-access-key",
    "AWS_SECRET_ACCESS_KEY": "test-secret-key",
    "AWS_SESSION_TOKEN": "test-session",
    "AWS_DEFAULT_REGION": "us-east-1",
    "CLOUDWATCH_METRICS_ENABLED": "false",
}


@pytest.fixture(scope="session")
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture(autouse=True)
def _test_env(monkeypatch):
    for key, value in DEFAULT_ENV.items():
        monkeypatch.setenv(key, value)
    for key in ("SKUS_TABLE", "PENDING_UPDATES_TABLE", "PRICE_RULES_TABLE", "API_KEYS", "ENGINE_CONFIG"):
        monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def freezer():
    with freeze_time("2020-01-01T00:00:00Z") as frozen_datetime:
        yield frozen_datetime


@pytest.fixture
def metrics() -> CloudWatchMetrics:
    return CloudWatchMetrics(namespace="MarginEngineTest", enabled=False)


@pytest.fixture
def ledger() -> SkuLedger:
    return SkuLedger()


@pytest.fixture
def engine(metrics):
    return build_engine(metrics=metrics)
