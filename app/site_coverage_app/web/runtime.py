from __future__ import annotations

from functools import lru_cache

from site_coverage_app.config import AppConfig
from site_coverage_app.db import DatabricksSQLClient
from site_coverage_app.sites.history import StatusHistoryRecorder
from site_coverage_app.sites.status import SiteStatusEngine
from site_coverage_app.store import SqlRecordStore


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return AppConfig.from_env()


@lru_cache(maxsize=1)
def get_store() -> SqlRecordStore:
    config = get_config()
    return SqlRecordStore(DatabricksSQLClient(config), config)


@lru_cache(maxsize=1)
def get_engine() -> SiteStatusEngine:
    store = get_store()
    return SiteStatusEngine(store, StatusHistoryRecorder(store), required_roles=get_config().required_roles)


def reset_runtime() -> None:
    get_engine.cache_clear()
    get_store.cache_clear()
    get_config.cache_clear()
