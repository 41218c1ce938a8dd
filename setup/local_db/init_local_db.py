"""Create the local SQLite database used when SITECOV_USE_LOCAL_DB is on.

    python setup/local_db/init_local_db.py --reset
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

from site_coverage_app.core.defaults import DEFAULT_LOCAL_DB_PATH  # noqa: E402
from site_coverage_app.local_db_bootstrap import LOCAL_SCHEMA_PATH, initialize_local_db  # noqa: E402


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--db-path", type=Path, default=REPO_ROOT / DEFAULT_LOCAL_DB_PATH)
    parser.add_argument(
        "--schema-path",
        type=Path,
        default=None,
        help=f"Schema script to run instead of {LOCAL_SCHEMA_PATH.name}.",
    )
    parser.add_argument("--reset", action="store_true", help="Drop the existing database file first.")
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    args = build_parser().parse_args(argv)
    initialize_local_db(args.db_path, reset=args.reset, schema_path=args.schema_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
