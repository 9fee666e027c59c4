import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from linkguard.api.main import app
from linkguard.core.observability.events import close_event_logs
from linkguard.core.observability.metrics import reset_metrics
from linkguard.core.settings import Settings


@pytest.fixture(scope="session", autouse=True)
def _force_test_env():
    # Make runtime behave deterministically in tests
    os.environ.setdefault("LINKGUARD_ENV", "dev")
    # API auth off unless a test turns it on
    os.environ.setdefault("LINKGUARD_AUTH_ENABLED", "0")


@pytest.fixture(autouse=True)
def _isolate_observability():
    reset_metrics()
    yield
    close_event_logs()


@pytest.fixture(autouse=True)
def _workspace_root(tmp_path: Path, monkeypatch):
    # API paths must sit under the workspace root
    monkeypatch.setenv("LINKGUARD_WORKSPACE_ROOT", str(tmp_path))
    return tmp_path


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(workers=2, max_verification_retries=1, state_dir=tmp_path / "state")
