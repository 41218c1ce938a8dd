from __future__ import annotations

import logging
from pathlib import Path
import re
from typing import Iterable

from site_coverage_app.db import DatabricksSQLClient, Statement

LOGGER = logging.getLogger(__name__)

FQ_SCHEMA_TOKEN = "{fq_schema}"
_FQ_SCHEMA_PATTERN = re.compile(r"^[A-Za-z0-9_]+\.[A-Za-z0-9_]+$")


def render_schema_statements(sql_text: str, fq_schema: str) -> list[str]:
    """Substitute ``{fq_schema}`` and split a DDL script into single statements, dropping ``--`` comment lines."""
    if not _FQ_SCHEMA_PATTERN.match(fq_schema or ""):
        raise ValueError(f"Schema must look like '<catalog>.<schema>': {fq_schema!r}")
    body = "\n".join(line for line in sql_text.splitlines() if not line.lstrip().startswith("--"))
    rendered = body.replace(FQ_SCHEMA_TOKEN, fq_schema)
    return [statement.strip() for statement in rendered.split(";") if statement.strip()]


def apply_schema_files(client: DatabricksSQLClient, sql_files: Iterable[Path], fq_schema: str) -> int:
    """Run every statement from ``sql_files`` in order and return how many ran."""
    statements: list[Statement] = []
    for path in sql_files:
        rendered = render_schema_statements(Path(path).read_text(encoding="utf-8"), fq_schema)
        statements.extend((statement, ()) for statement in rendered)
        LOGGER.info("Rendered schema file. file=%s statements=%s", Path(path).name, len(rendered))
    for statement in statements:
        client.execute_batch([statement])
    LOGGER.info("Schema applied. schema=%s statements=%s", fq_schema, len(statements))
    return len(statements)
