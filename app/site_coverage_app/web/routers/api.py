from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from site_coverage_app import __version__
from site_coverage_app.web.identity import resolve_actor
from site_coverage_app.web.runtime import get_config, get_store

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.get("/health")
def api_health(request: Request):
    """Report the data mode and whether the site tracking tables are reachable."""
    config = get_config()
    payload = {
        "ok": True,
        "version": __version__,
        "mode": "local" if config.use_local_db else "databricks",
        "schema": config.fq_schema,
        "locked_mode": config.locked_mode,
        "required_roles": list(config.required_roles),
        "principal": resolve_actor(request, config) or None,
        "databricks_configured": {
            "server_hostname": bool(config.databricks_server_hostname),
            "http_path": bool(config.databricks_http_path),
            "token": bool(config.databricks_token.strip()),
            "client_credentials": bool(
                config.databricks_client_id.strip() and config.databricks_client_secret.strip()
            ),
        },
    }
    try:
        get_store().ensure_runtime_tables()
    except Exception as exc:  # pylint: disable=broad-except
        LOGGER.warning("Health check failed. mode=%s error=%s", payload["mode"], exc)
        payload.update(ok=False, error=str(exc))
        return JSONResponse(payload, status_code=503)
    return JSONResponse(payload, status_code=200)
