from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from site_coverage_app.core.env import (
    SITECOV_LOG_CAPTURE_ROOT,
    SITECOV_LOG_JSON,
    SITECOV_LOG_LEVEL,
    get_env,
    get_env_bool,
)

APP_LOGGER_NAME = "site_coverage_app"
TEXT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Attributes every LogRecord carries; anything else on a record came in through ``extra=``.
_STANDARD_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_configured = False


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line, with ``extra=`` fields merged in at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def _attach(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)


def setup_app_logging() -> None:
    """Route ``site_coverage_app.*`` loggers to stdout once per process."""
    global _configured  # pylint: disable=global-statement
    if _configured:
        return

    level_name = get_env(SITECOV_LOG_LEVEL, "INFO").upper() or "INFO"
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level_name, level = "INFO", logging.INFO
    as_json = get_env_bool(SITECOV_LOG_JSON, default=False)
    capture_root = get_env_bool(SITECOV_LOG_CAPTURE_ROOT, default=False)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLineFormatter() if as_json else logging.Formatter(TEXT_LOG_FORMAT))

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    _attach(app_logger, handler, level)
    app_logger.propagate = False
    if capture_root:
        _attach(logging.getLogger(), handler, level)

    _configured = True
    app_logger.info(
        "Logging configured. level=%s json=%s capture_root=%s",
        level_name,
        str(as_json).lower(),
        str(capture_root).lower(),
    )
