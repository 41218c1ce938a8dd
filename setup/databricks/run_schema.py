"""Render the site tracking DDL for SITECOV_FQ_SCHEMA (or catalog/schema) and optionally run it.

    python setup/databricks/run_schema.py                 # writes rendered/site_tracking_schema.sql
    python setup/databricks/run_schema.py --execute       # also runs it on the configured warehouse
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[2]
APP_ROOT = REPO_ROOT / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from site_coverage_app.config import AppConfig  # noqa: E402
from site_coverage_app.databricks_bootstrap import apply_schema_files, render_schema_statements  # noqa: E402
from site_coverage_app.db import DatabricksSQLClient  # noqa: E402

SCHEMA_DIR = Path(__file__).resolve().parent
LOGGER = logging.getLogger("site_coverage_app.setup")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--execute", action="store_true", help="Run the statements on the Databricks warehouse.")
    parser.add_argument("--rendered-output", type=Path, default=SCHEMA_DIR / "rendered" / "site_tracking_schema.sql")
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = build_parser().parse_args(argv)
    config = AppConfig.from_env()
    sql_files = sorted(SCHEMA_DIR.glob("[0-9][0-9][0-9]_*.sql"))

    rendered = [
        statement
        for path in sql_files
        for statement in render_schema_statements(path.read_text(encoding="utf-8"), config.fq_schema)
    ]
    args.rendered_output.parent.mkdir(parents=True, exist_ok=True)
    args.rendered_output.write_text(";\n\n".join(rendered) + ";\n", encoding="utf-8")
    LOGGER.info("Rendered schema bundle. path=%s schema=%s", args.rendered_output, config.fq_schema)

    if not args.execute:
        LOGGER.info("Execution skipped (--execute not set).")
        return 0
    if config.use_local_db:
        LOGGER.error("--execute targets Databricks; set SITECOV_USE_LOCAL_DB=false.")
        return 2
    apply_schema_files(DatabricksSQLClient(config), sql_files, config.fq_schema)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
