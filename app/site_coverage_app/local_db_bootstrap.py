from __future__ import annotations

from contextlib import closing
import logging
from pathlib import Path
import sqlite3

from site_coverage_app.config import AppConfig
from site_coverage_app.core.env import SITECOV_LOCAL_DB_AUTO_INIT, get_env_bool
from site_coverage_app.errors import SchemaBootstrapRequiredError
from site_coverage_app.store import TABLE_COLUMNS

LOGGER = logging.getLogger(__name__)

LOCAL_SCHEMA_PATH = Path(__file__).resolve().parent / "sql" / "schema" / "local_sqlite.sql"


def schema_problems(conn: sqlite3.Connection) -> list[str]:
    """List tables, or columns of tables, that the record store needs but the database lacks."""
    problems: list[str] = []
    for table, columns in TABLE_COLUMNS.items():
        present = {str(row[1]).lower() for row in conn.execute(f"PRAGMA table_info({table})")}
        if not present:
            problems.append(f"missing table: {table}")
            continue
        absent = [column for column in columns if column.lower() not in present]
        if absent:
            problems.append(f"{table} missing columns: {', '.join(absent)}")
    return problems


def initialize_local_db(db_path: str | Path, *, reset: bool = False, schema_path: Path | None = None) -> Path:
    resolved = Path(db_path).resolve()
    script = Path(schema_path or LOCAL_SCHEMA_PATH).resolve()
    if not script.is_file():
        raise FileNotFoundError(f"Schema SQL not found: {script}")
    if reset:
        resolved.unlink(missing_ok=True)
    resolved.parent.mkdir(parents=True, exist_ok=True)

    with closing(sqlite3.connect(str(resolved))) as conn:
        conn.executescript(script.read_text(encoding="utf-8"))
        conn.commit()
        problems = schema_problems(conn)
    if problems:
        raise SchemaBootstrapRequiredError(
            f"Local schema at {resolved} is incomplete; rerun with --reset. Details: {'; '.join(problems)}"
        )
    LOGGER.info("Local database ready. path=%s reset=%s", resolved, str(reset).lower())
    return resolved


def ensure_local_db_ready(config: AppConfig) -> None:
    """Create the local SQLite file on first start when auto-init is on."""
    if not config.use_local_db or not get_env_bool(SITECOV_LOCAL_DB_AUTO_INIT, default=True):
        return
    if not Path(config.local_db_path).exists():
        initialize_local_db(config.local_db_path)
