from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from site_coverage_app import __version__
from site_coverage_app.db import DataConnectionError
from site_coverage_app.errors import SchemaBootstrapRequiredError, SiteTrackingError
from site_coverage_app.local_db_bootstrap import ensure_local_db_ready
from site_coverage_app.logging import setup_app_logging
from site_coverage_app.web.errors import ApiError, api_error_response, normalize_exception
from site_coverage_app.web.routers import router as web_router
from site_coverage_app.web.runtime import get_config

LOGGER = logging.getLogger(__name__)
PERF_LOGGER = logging.getLogger("site_coverage_app.perf")

ENVELOPED_EXCEPTIONS = (
    ApiError,
    SiteTrackingError,
    SchemaBootstrapRequiredError,
    DataConnectionError,
    RequestValidationError,
    StarletteHTTPException,
    PermissionError,
    ValueError,
)


def _error_response(request: Request, exc: Exception):
    spec = normalize_exception(exc)
    if spec.status_code >= 500:
        LOGGER.warning(
            "API request failed. path=%s method=%s code=%s",
            request.url.path,
            request.method,
            spec.code,
            exc_info=exc,
        )
    return api_error_response(request, spec)


async def _enveloped_exception_handler(request: Request, exc: Exception):
    return _error_response(request, exc)


def create_app() -> FastAPI:
    setup_app_logging()

    @asynccontextmanager
    async def _lifespan(_app: FastAPI):
        config = get_config()
        ensure_local_db_ready(config)
        LOGGER.info(
            "Site coverage API started. env=%s mode=%s schema=%s locked=%s",
            config.env,
            "local" if config.use_local_db else "databricks",
            config.fq_schema,
            str(config.locked_mode).lower(),
        )
        yield

    app = FastAPI(title="Site Coverage", version=__version__, lifespan=_lifespan)

    @app.middleware("http")
    async def _request_id_middleware(request: Request, call_next):
        request_id = str(request.headers.get("x-request-id", "") or "").strip() or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception(
                "Unhandled API error. path=%s method=%s",
                request.url.path,
                request.method,
                extra={"event": "unhandled_api_error", "request_id": request_id},
            )
            response = _error_response(request, exc)
        response.headers["X-Request-ID"] = request_id
        route = request.scope.get("route")
        PERF_LOGGER.debug(
            "request_perf id=%s method=%s path=%s status=%s total_ms=%.2f",
            request_id,
            request.method,
            getattr(route, "path", None) or request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000.0,
        )
        return response

    for exc_class in ENVELOPED_EXCEPTIONS:
        app.add_exception_handler(exc_class, _enveloped_exception_handler)

    app.include_router(web_router)
    return app
