from __future__ import annotations

from datetime import datetime, timedelta, timezone
import sys
from pathlib import Path

import pytest

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from site_coverage_app.config import AppConfig
from site_coverage_app.db import DatabricksSQLClient
from site_coverage_app.local_db_bootstrap import initialize_local_db
from site_coverage_app.sites.history import StatusHistoryRecorder
from site_coverage_app.sites.status import SiteStatusEngine
from site_coverage_app.store import SqlRecordStore
from site_coverage_app.web.runtime import reset_runtime

TEST_USER = "coordinator@example.com"


class StepClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


@pytest.fixture()
def isolated_local_db(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    db_path = tmp_path / "sitecov_local.db"
    initialize_local_db(db_path, reset=True)

    for key in ("SITECOV_REQUIRED_ROLES", "SITECOV_FQ_SCHEMA", "SITECOV_CATALOG", "SITECOV_SCHEMA"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SITECOV_ENV", "dev")
    monkeypatch.setenv("SITECOV_USE_LOCAL_DB", "true")
    monkeypatch.setenv("SITECOV_LOCAL_DB_PATH", str(db_path))
    monkeypatch.setenv("SITECOV_LOCAL_DB_AUTO_INIT", "false")
    monkeypatch.setenv("SITECOV_TEST_USER", TEST_USER)
    monkeypatch.setenv("SITECOV_IMPORT_BATCH_DELAY_MS", "0")
    monkeypatch.setenv("SITECOV_LOCKED_MODE", "false")
    reset_runtime()
    yield db_path
    reset_runtime()


@pytest.fixture()
def local_config(isolated_local_db: Path) -> AppConfig:
    return AppConfig.from_env()


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()


@pytest.fixture()
def local_store(local_config: AppConfig, clock: StepClock) -> SqlRecordStore:
    return SqlRecordStore(DatabricksSQLClient(local_config), local_config, clock=clock)


@pytest.fixture()
def recorder(local_store: SqlRecordStore, clock: StepClock) -> StatusHistoryRecorder:
    return StatusHistoryRecorder(local_store, clock=clock)


@pytest.fixture()
def engine(local_store: SqlRecordStore, recorder: StatusHistoryRecorder, local_config: AppConfig, clock: StepClock):
    return SiteStatusEngine(local_store, recorder, required_roles=local_config.required_roles, clock=clock)
