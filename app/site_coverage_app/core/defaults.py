from __future__ import annotations

# Environment and config defaults
DEFAULT_ENV_NAME = "dev"
DEFAULT_DEV_ENV_NAMES = ("dev", "development", "local")
DEFAULT_DEV_CATALOG = "site_tracking_dev"
DEFAULT_DEV_SCHEMA = "sitecov"
DEFAULT_LOCAL_DB_PATH = "setup/local_db/sitecov_local.db"

# Role coverage defaults
DEFAULT_REQUIRED_ROLES = ("PI", "SC", "LABP", "CRC")

# Import pacing defaults
DEFAULT_IMPORT_BATCH_SIZE = 10
DEFAULT_IMPORT_BATCH_DELAY_MS = 300
DEFAULT_IMPORT_MAX_ROWS = 20000

# Status history defaults
DEFAULT_HISTORY_RECENT_LIMIT = 5

# SQL client defaults
DEFAULT_SLOW_QUERY_MS = 750.0
DEFAULT_SQL_TRACE_MAX_LEN = 180
