from __future__ import annotations

import os

from site_coverage_app.core.util import as_bool, as_float, as_int

SITECOV_ENV = "SITECOV_ENV"
SITECOV_USE_LOCAL_DB = "SITECOV_USE_LOCAL_DB"
SITECOV_LOCAL_DB_PATH = "SITECOV_LOCAL_DB_PATH"
SITECOV_LOCAL_DB_AUTO_INIT = "SITECOV_LOCAL_DB_AUTO_INIT"
SITECOV_CATALOG = "SITECOV_CATALOG"
SITECOV_SCHEMA = "SITECOV_SCHEMA"
SITECOV_FQ_SCHEMA = "SITECOV_FQ_SCHEMA"
SITECOV_LOCKED_MODE = "SITECOV_LOCKED_MODE"
SITECOV_REQUIRED_ROLES = "SITECOV_REQUIRED_ROLES"
SITECOV_IMPORT_BATCH_SIZE = "SITECOV_IMPORT_BATCH_SIZE"
SITECOV_IMPORT_BATCH_DELAY_MS = "SITECOV_IMPORT_BATCH_DELAY_MS"
SITECOV_IMPORT_MAX_ROWS = "SITECOV_IMPORT_MAX_ROWS"
SITECOV_HISTORY_RECENT_LIMIT = "SITECOV_HISTORY_RECENT_LIMIT"
SITECOV_TEST_USER = "SITECOV_TEST_USER"

SITECOV_LOG_LEVEL = "SITECOV_LOG_LEVEL"
SITECOV_LOG_JSON = "SITECOV_LOG_JSON"
SITECOV_LOG_CAPTURE_ROOT = "SITECOV_LOG_CAPTURE_ROOT"
SITECOV_SLOW_QUERY_MS = "SITECOV_SLOW_QUERY_MS"
SITECOV_SQL_TRACE_ENABLED = "SITECOV_SQL_TRACE_ENABLED"
SITECOV_SQL_TRACE_MAX_LEN = "SITECOV_SQL_TRACE_MAX_LEN"
SITECOV_ERROR_INCLUDE_DETAILS = "SITECOV_ERROR_INCLUDE_DETAILS"

DATABRICKS_SERVER_HOSTNAME_KEYS = (
    "DATABRICKS_SERVER_HOSTNAME",
    "DATABRICKS_HOST",
    "DBSQL_SERVER_HOSTNAME",
)
DATABRICKS_HTTP_PATH_KEYS = (
    "DATABRICKS_HTTP_PATH",
    "DATABRICKS_SQL_HTTP_PATH",
    "DBSQL_HTTP_PATH",
)
DATABRICKS_WAREHOUSE_ID_KEYS = (
    "DATABRICKS_WAREHOUSE_ID",
    "DATABRICKS_SQL_WAREHOUSE_ID",
)
DATABRICKS_TOKEN = "DATABRICKS_TOKEN"
DATABRICKS_CLIENT_ID = "DATABRICKS_CLIENT_ID"
DATABRICKS_CLIENT_SECRET = "DATABRICKS_CLIENT_SECRET"


def get_env(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or "").strip()


def get_first_env(names: tuple[str, ...], default: str = "") -> str:
    for name in names:
        value = get_env(name)
        if value:
            return value
    return default


def get_env_bool(name: str, *, default: bool = False) -> bool:
    return as_bool(os.getenv(name), default=default)


def get_env_int(name: str, *, default: int, min_value: int | None = None, max_value: int | None = None) -> int:
    return as_int(os.getenv(name), default=default, min_value=min_value, max_value=max_value)


def get_env_float(
    name: str,
    *,
    default: float,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    return as_float(os.getenv(name), default=default, min_value=min_value, max_value=max_value)
