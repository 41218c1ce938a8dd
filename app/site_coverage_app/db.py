from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
import hashlib
import logging
from pathlib import Path
import re
import sqlite3
import threading
import time
from typing import Any, Iterable, Iterator, Sequence

import pandas as pd
from databricks import sql as dbsql
try:
    from databricks.sdk.core import Config as DatabricksSDKConfig
    from databricks.sdk.core import oauth_service_principal
except ImportError:  # pragma: no cover - databricks-sdk is only needed for OAuth auth
    DatabricksSDKConfig = None
    oauth_service_principal = None

from site_coverage_app.config import AppConfig
from site_coverage_app.core.defaults import DEFAULT_SLOW_QUERY_MS, DEFAULT_SQL_TRACE_MAX_LEN
from site_coverage_app.core.env import (
    SITECOV_SLOW_QUERY_MS,
    SITECOV_SQL_TRACE_ENABLED,
    SITECOV_SQL_TRACE_MAX_LEN,
    get_env_bool,
    get_env_float,
    get_env_int,
)

PERF_LOGGER = logging.getLogger("site_coverage_app.perf")

Statement = tuple[str, Sequence[Any]]

_STALE_CONNECTION_MARKERS = ("connection", "session", "closed", "timeout", "network", "socket", "unreachable")


class DataConnectionError(RuntimeError):
    """Raised when a database connection cannot be established."""


class DataQueryError(RuntimeError):
    """Raised when a query operation fails."""


class DataExecutionError(RuntimeError):
    """Raised when a non-query execution fails."""


def _sqlite_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


def _looks_stale(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _STALE_CONNECTION_MARKERS)


def _compact_sql(statement: str, max_len: int) -> str:
    flat = re.sub(r"\s+", " ", statement).strip()
    return flat if len(flat) <= max_len else flat[: max_len - 3] + "..."


class DatabricksSQLClient:
    """Runs SQL against the local SQLite file in dev or a Databricks SQL warehouse otherwise.

    Statements use ``%s`` placeholders and may carry the ``<catalog>.<schema>.`` prefix; both are
    rewritten for SQLite. Warehouse connections are kept per thread and dropped when a failure
    looks like a stale session.
    """

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self._local = threading.local()
        self._trace_all = get_env_bool(SITECOV_SQL_TRACE_ENABLED, default=False)
        self._trace_len = get_env_int(SITECOV_SQL_TRACE_MAX_LEN, default=DEFAULT_SQL_TRACE_MAX_LEN, min_value=80)
        self._slow_ms = get_env_float(SITECOV_SLOW_QUERY_MS, default=DEFAULT_SLOW_QUERY_MS, min_value=1.0)

    def _missing_warehouse_settings(self) -> list[str]:
        missing = []
        if not self.config.databricks_server_hostname:
            missing.append("DATABRICKS_SERVER_HOSTNAME")
        if not self.config.databricks_http_path:
            missing.append("DATABRICKS_HTTP_PATH")
        has_token = bool(self.config.databricks_token.strip())
        has_client = bool(self.config.databricks_client_id.strip() and self.config.databricks_client_secret.strip())
        if not (has_token or has_client or DatabricksSDKConfig is not None):
            missing.append("DATABRICKS_TOKEN or DATABRICKS_CLIENT_ID + DATABRICKS_CLIENT_SECRET")
        return missing

    def _credentials_provider(self):
        if DatabricksSDKConfig is None or oauth_service_principal is None:
            raise RuntimeError("OAuth authentication needs the databricks-sdk package, or set DATABRICKS_TOKEN.")
        host = f"https://{self.config.databricks_server_hostname}"
        client_id = self.config.databricks_client_id.strip()
        client_secret = self.config.databricks_client_secret.strip()
        if client_id and client_secret:
            header_factory = oauth_service_principal(
                DatabricksSDKConfig(host=host, client_id=client_id, client_secret=client_secret)
            )
        else:
            header_factory = DatabricksSDKConfig(host=host).authenticate
        # The connector calls the provider once and then calls the returned factory per request.
        return lambda: header_factory

    def _open_warehouse(self):
        missing = self._missing_warehouse_settings()
        if missing:
            raise DataConnectionError(f"Missing Databricks settings: {', '.join(missing)}")
        target = {
            "server_hostname": self.config.databricks_server_hostname,
            "http_path": self.config.databricks_http_path,
        }
        token = self.config.databricks_token.strip()
        try:
            if token:
                return dbsql.connect(access_token=token, **target)
            return dbsql.connect(credentials_provider=self._credentials_provider(), **target)
        except Exception as exc:
            raise DataConnectionError(f"Failed to connect to Databricks SQL warehouse. Details: {exc}") from exc

    def _forget_warehouse(self) -> None:
        conn = getattr(self._local, "conn", None)
        self._local.conn = None
        if conn is None:
            return
        try:
            conn.close()
        except Exception:  # pylint: disable=broad-except
            PERF_LOGGER.debug("Ignoring error while closing a stale Databricks connection.", exc_info=True)

    @contextmanager
    def _sqlite(self) -> Iterator[sqlite3.Connection]:
        db_path = Path(self.config.local_db_path).resolve()
        if not db_path.exists():
            raise DataConnectionError(
                f"Local DB not found: {db_path}. Run `python setup/local_db/init_local_db.py --reset` first."
            )
        try:
            conn = sqlite3.connect(str(db_path))
        except sqlite3.Error as exc:
            raise DataConnectionError(f"Failed to open local SQLite DB at {db_path}.") from exc
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _warehouse(self):
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._open_warehouse()
            self._local.conn = conn
        try:
            yield conn
        except Exception as exc:
            if _looks_stale(exc):
                self._forget_warehouse()
            raise

    def _connection(self):
        return self._sqlite() if self.config.use_local_db else self._warehouse()

    def _translate(self, statement: str, params: Iterable[Any] | None) -> Statement:
        text = str(statement or "").lstrip("\ufeff")
        values = tuple(params or ())
        if not self.config.use_local_db:
            return text, values
        text = text.replace(f"{self.config.fq_schema}.", "").replace("%s", "?")
        return text, tuple(_sqlite_value(value) for value in values)

    def _log_sql(self, op: str, statement: str, started: float, *, rows: int | None = None, failed: bool = False) -> None:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        slow = elapsed_ms >= self._slow_ms
        if not (self._trace_all or slow or failed):
            return
        log = PERF_LOGGER.warning if (slow or failed) else PERF_LOGGER.info
        log(
            "sql_perf op=%s ms=%.2f rows=%s error=%s hash=%s sql=%s",
            op,
            elapsed_ms,
            "-" if rows is None else rows,
            str(failed).lower(),
            hashlib.sha1(statement.encode("utf-8", errors="ignore")).hexdigest()[:12],
            _compact_sql(statement, self._trace_len),
        )

    def query(self, statement: str, params: Iterable[Any] | None = None) -> pd.DataFrame:
        sql_text, values = self._translate(statement, params)
        started = time.perf_counter()
        try:
            with self._connection() as conn:
                cursor = conn.cursor()
                try:
                    cursor.execute(sql_text, values)
                    rows = cursor.fetchall()
                    columns = [item[0] for item in cursor.description or ()]
                finally:
                    cursor.close()
        except DataConnectionError:
            self._log_sql("query", sql_text, started, failed=True)
            raise
        except Exception as exc:
            self._log_sql("query", sql_text, started, failed=True)
            raise DataQueryError("Query execution failed.") from exc
        frame = pd.DataFrame([tuple(row) for row in rows], columns=columns)
        self._log_sql("query", sql_text, started, rows=len(frame.index))
        return frame

    def execute_batch(self, statements: Sequence[Statement]) -> None:
        """Run statements on one connection. Local SQLite commits once, so a failure rolls back all of them."""
        if not statements:
            return
        translated = [self._translate(sql_text, params) for sql_text, params in statements]
        label = translated[0][0] if len(translated) == 1 else f"[batch x{len(translated)}] {translated[0][0]}"
        started = time.perf_counter()
        try:
            with self._connection() as conn:
                cursor = conn.cursor()
                try:
                    for sql_text, values in translated:
                        cursor.execute(sql_text, values)
                    if self.config.use_local_db:
                        conn.commit()
                except Exception:
                    if self.config.use_local_db:
                        conn.rollback()
                    raise
                finally:
                    cursor.close()
        except DataConnectionError:
            self._log_sql("execute", label, started, failed=True)
            raise
        except Exception as exc:
            self._log_sql("execute", label, started, failed=True)
            raise DataExecutionError("Statement execution failed.") from exc
        self._log_sql("execute", label, started)
