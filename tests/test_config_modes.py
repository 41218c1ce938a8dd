from __future__ import annotations

import sys
from pathlib import Path

import pytest

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from site_coverage_app.config import AppConfig


def _clear_mode_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "SITECOV_ENV",
        "SITECOV_USE_LOCAL_DB",
        "SITECOV_CATALOG",
        "SITECOV_SCHEMA",
        "SITECOV_FQ_SCHEMA",
        "SITECOV_REQUIRED_ROLES",
        "SITECOV_IMPORT_BATCH_SIZE",
        "SITECOV_IMPORT_BATCH_DELAY_MS",
        "SITECOV_LOCKED_MODE",
    ):
        monkeypatch.delenv(key, raising=False)


def test_dev_defaults_to_local_db(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_mode_env(monkeypatch)
    monkeypatch.setenv("SITECOV_ENV", "dev")

    config = AppConfig.from_env()

    assert config.env == "dev"
    assert config.is_dev_env is True
    assert config.use_local_db is True
    assert config.fq_schema == "site_tracking_dev.sitecov"
    assert config.required_roles == ("PI", "SC", "LABP", "CRC")
    assert config.import_batch_size == 10
    assert config.import_batch_delay_seconds == pytest.approx(0.3)
    assert config.locked_mode is False
    assert Path(config.local_db_path).is_absolute()


def test_prod_requires_catalog_and_schema(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_mode_env(monkeypatch)
    monkeypatch.setenv("SITECOV_ENV", "prod")

    with pytest.raises(RuntimeError):
        AppConfig.from_env()


def test_prod_defaults_to_databricks_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_mode_env(monkeypatch)
    monkeypatch.setenv("SITECOV_ENV", "prod")
    monkeypatch.setenv("SITECOV_FQ_SCHEMA", "clinops.site_tracking")

    config = AppConfig.from_env()

    assert config.env == "prod"
    assert config.is_dev_env is False
    assert config.use_local_db is False
    assert config.catalog == "clinops"
    assert config.schema == "site_tracking"


def test_prod_rejects_local_db_override(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_mode_env(monkeypatch)
    monkeypatch.setenv("SITECOV_ENV", "prod")
    monkeypatch.setenv("SITECOV_CATALOG", "clinops")
    monkeypatch.setenv("SITECOV_SCHEMA", "site_tracking")
    monkeypatch.setenv("SITECOV_USE_LOCAL_DB", "true")

    with pytest.raises(RuntimeError):
        AppConfig.from_env()


def test_malformed_fq_schema_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_mode_env(monkeypatch)
    monkeypatch.setenv("SITECOV_FQ_SCHEMA", "no_dot_here")

    with pytest.raises(RuntimeError):
        AppConfig.from_env()


def test_required_roles_are_configurable_but_keep_labp(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_mode_env(monkeypatch)
    monkeypatch.setenv("SITECOV_ENV", "dev")
    monkeypatch.setenv("SITECOV_REQUIRED_ROLES", "labp, pi")

    assert AppConfig.from_env().required_roles == ("LABP", "PI")

    monkeypatch.setenv("SITECOV_REQUIRED_ROLES", "PI,SC")
    with pytest.raises(RuntimeError):
        AppConfig.from_env()


def test_import_pacing_comes_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_mode_env(monkeypatch)
    monkeypatch.setenv("SITECOV_ENV", "local")
    monkeypatch.setenv("SITECOV_IMPORT_BATCH_SIZE", "25")
    monkeypatch.setenv("SITECOV_IMPORT_BATCH_DELAY_MS", "0")
    monkeypatch.setenv("SITECOV_LOCKED_MODE", "yes")

    config = AppConfig.from_env()

    assert config.import_batch_size == 25
    assert config.import_batch_delay_seconds == 0
    assert config.locked_mode is True
