from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from site_coverage_app.constants import LABP_ROLE
from site_coverage_app.core import defaults
from site_coverage_app.core.env import (
    DATABRICKS_CLIENT_ID,
    DATABRICKS_CLIENT_SECRET,
    DATABRICKS_HTTP_PATH_KEYS,
    DATABRICKS_SERVER_HOSTNAME_KEYS,
    DATABRICKS_TOKEN,
    DATABRICKS_WAREHOUSE_ID_KEYS,
    SITECOV_CATALOG,
    SITECOV_ENV,
    SITECOV_FQ_SCHEMA,
    SITECOV_HISTORY_RECENT_LIMIT,
    SITECOV_IMPORT_BATCH_DELAY_MS,
    SITECOV_IMPORT_BATCH_SIZE,
    SITECOV_IMPORT_MAX_ROWS,
    SITECOV_LOCAL_DB_PATH,
    SITECOV_LOCKED_MODE,
    SITECOV_REQUIRED_ROLES,
    SITECOV_SCHEMA,
    SITECOV_USE_LOCAL_DB,
    get_env,
    get_env_bool,
    get_env_int,
    get_first_env,
)
from site_coverage_app.core.util import as_csv_tuple

# app/site_coverage_app/config.py -> <repo>/
REPO_ROOT = Path(__file__).resolve().parents[2]


def _databricks_settings() -> dict[str, str]:
    host = get_first_env(DATABRICKS_SERVER_HOSTNAME_KEYS)
    for scheme in ("https://", "http://"):
        host = host.replace(scheme, "")
    http_path = get_first_env(DATABRICKS_HTTP_PATH_KEYS)
    warehouse_id = get_first_env(DATABRICKS_WAREHOUSE_ID_KEYS)
    if not http_path and warehouse_id:
        http_path = f"/sql/1.0/warehouses/{warehouse_id}"
    return {
        "databricks_server_hostname": host.rstrip("/"),
        "databricks_http_path": http_path,
        "databricks_token": get_env(DATABRICKS_TOKEN),
        "databricks_client_id": get_env(DATABRICKS_CLIENT_ID),
        "databricks_client_secret": get_env(DATABRICKS_CLIENT_SECRET),
    }


def _catalog_and_schema(is_dev: bool) -> tuple[str, str]:
    fq_schema = get_env(SITECOV_FQ_SCHEMA)
    if fq_schema:
        catalog, _, schema = (part.strip() for part in fq_schema.partition("."))
        if not catalog or not schema:
            raise RuntimeError("SITECOV_FQ_SCHEMA must be in '<catalog>.<schema>' format.")
        return catalog, schema
    catalog = get_env(SITECOV_CATALOG, defaults.DEFAULT_DEV_CATALOG if is_dev else "")
    schema = get_env(SITECOV_SCHEMA, defaults.DEFAULT_DEV_SCHEMA if is_dev else "")
    if not (catalog and schema):
        raise RuntimeError(
            "SITECOV_CATALOG and SITECOV_SCHEMA are required outside local/dev mode "
            "(or set SITECOV_FQ_SCHEMA)."
        )
    return catalog, schema


def _local_db_path() -> str:
    path = Path(get_env(SITECOV_LOCAL_DB_PATH, defaults.DEFAULT_LOCAL_DB_PATH))
    return str(path if path.is_absolute() else (REPO_ROOT / path).resolve())


def _required_roles() -> tuple[str, ...]:
    configured = as_csv_tuple(get_env(SITECOV_REQUIRED_ROLES), default=defaults.DEFAULT_REQUIRED_ROLES)
    roles = tuple(dict.fromkeys(role.upper() for role in configured))
    if LABP_ROLE not in roles:
        raise RuntimeError(f"SITECOV_REQUIRED_ROLES must include {LABP_ROLE}.")
    return roles


@dataclass(frozen=True)
class AppConfig:
    databricks_server_hostname: str = ""
    databricks_http_path: str = ""
    databricks_token: str = ""
    databricks_client_id: str = ""
    databricks_client_secret: str = ""
    env: str = defaults.DEFAULT_ENV_NAME
    catalog: str = defaults.DEFAULT_DEV_CATALOG
    schema: str = defaults.DEFAULT_DEV_SCHEMA
    use_local_db: bool = True
    local_db_path: str = defaults.DEFAULT_LOCAL_DB_PATH
    locked_mode: bool = False
    required_roles: tuple[str, ...] = defaults.DEFAULT_REQUIRED_ROLES
    import_batch_size: int = defaults.DEFAULT_IMPORT_BATCH_SIZE
    import_batch_delay_ms: int = defaults.DEFAULT_IMPORT_BATCH_DELAY_MS
    import_max_rows: int = defaults.DEFAULT_IMPORT_MAX_ROWS
    history_recent_limit: int = defaults.DEFAULT_HISTORY_RECENT_LIMIT

    @property
    def fq_schema(self) -> str:
        return f"{self.catalog}.{self.schema}"

    @property
    def is_dev_env(self) -> bool:
        return self.env in defaults.DEFAULT_DEV_ENV_NAMES

    @property
    def import_batch_delay_seconds(self) -> float:
        return max(0, int(self.import_batch_delay_ms)) / 1000.0

    @staticmethod
    def from_env() -> "AppConfig":
        """Build the config from ``SITECOV_*`` and ``DATABRICKS_*`` variables.

        Dev/local environments default to the SQLite file and the dev catalog; every other
        environment must name its schema and may not use the local database.
        """
        env_name = get_env(SITECOV_ENV, defaults.DEFAULT_ENV_NAME).lower() or defaults.DEFAULT_ENV_NAME
        is_dev = env_name in defaults.DEFAULT_DEV_ENV_NAMES
        catalog, schema = _catalog_and_schema(is_dev)
        use_local_db = get_env_bool(SITECOV_USE_LOCAL_DB, default=is_dev)
        if use_local_db and not is_dev:
            raise RuntimeError(
                "SITECOV_USE_LOCAL_DB=true is allowed only for dev/local environments. "
                "Set SITECOV_ENV=dev (or local), or disable SITECOV_USE_LOCAL_DB."
            )
        return AppConfig(
            env=env_name,
            catalog=catalog,
            schema=schema,
            use_local_db=use_local_db,
            local_db_path=_local_db_path(),
            locked_mode=get_env_bool(SITECOV_LOCKED_MODE, default=False),
            required_roles=_required_roles(),
            import_batch_size=get_env_int(
                SITECOV_IMPORT_BATCH_SIZE, default=defaults.DEFAULT_IMPORT_BATCH_SIZE, min_value=1
            ),
            import_batch_delay_ms=get_env_int(
                SITECOV_IMPORT_BATCH_DELAY_MS, default=defaults.DEFAULT_IMPORT_BATCH_DELAY_MS, min_value=0
            ),
            import_max_rows=get_env_int(SITECOV_IMPORT_MAX_ROWS, default=defaults.DEFAULT_IMPORT_MAX_ROWS, min_value=1),
            history_recent_limit=get_env_int(
                SITECOV_HISTORY_RECENT_LIMIT, default=defaults.DEFAULT_HISTORY_RECENT_LIMIT, min_value=1
            ),
            **_databricks_settings(),
        )
