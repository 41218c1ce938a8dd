from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
import time
from typing import Any, Callable

from site_coverage_app.config import AppConfig
from site_coverage_app.constants import TABLE_IMPORT_RUN, ImportKind
from site_coverage_app.errors import PersistenceError
from site_coverage_app.imports.importer import BatchedUpsertImporter, ImportOutcome
from site_coverage_app.imports.parsing import parse_import_text
from site_coverage_app.imports.validation import NormalizationStats, normalize_cra_rows, normalize_site_rows
from site_coverage_app.store import RecordStore

LOGGER = logging.getLogger(__name__)

IMPORT_STATUS_COMPLETED = "completed"
IMPORT_STATUS_COMPLETED_WITH_ERRORS = "completed_with_errors"


@dataclass(frozen=True)
class ImportReport:
    kind: ImportKind
    project_id: str
    row_count: int
    success_count: int
    error_count: int
    coerced_count: int
    batch_count: int
    status: str
    stats: NormalizationStats = field(default_factory=NormalizationStats)
    import_run_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "import_run_id": self.import_run_id,
            "kind": self.kind.value,
            "project_id": self.project_id,
            "row_count": self.row_count,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "coerced_count": self.coerced_count,
            "batch_count": self.batch_count,
            "status": self.status,
            "stats": self.stats.as_dict(),
        }


def _record_import_run(store: RecordStore, report: ImportReport, actor_id: str) -> str | None:
    try:
        rows = store.insert(
            TABLE_IMPORT_RUN,
            {
                "project_id": report.project_id,
                "import_kind": report.kind.value,
                "actor_id": actor_id,
                "row_count": report.row_count,
                "success_count": report.success_count,
                "error_count": report.error_count,
                "coerced_count": report.coerced_count,
                "batch_count": report.batch_count,
                "status": report.status,
            },
        )
    except PersistenceError:
        LOGGER.warning(
            "Import run ledger write failed. project_id=%s kind=%s",
            report.project_id,
            report.kind.value,
            exc_info=True,
        )
        return None
    return str(rows[0]["id"]) if rows else None


def run_import(
    kind: ImportKind | str,
    text: str,
    project_id: str,
    actor_id: str,
    *,
    store: RecordStore,
    config: AppConfig | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ImportReport:
    """Parse, normalize and import one CSV upload, then record the run.

    Parse and validation failures raise before anything is written.
    """
    import_kind = ImportKind.parse(kind)
    project = str(project_id or "").strip()
    actor = str(actor_id or "").strip()
    if not project:
        raise ValueError("project_id is required for import.")
    if not actor:
        raise ValueError("actor_id is required for import.")

    settings = config or AppConfig()
    parsed = parse_import_text(text, import_kind, max_rows=settings.import_max_rows)
    if import_kind == ImportKind.SITE_DATA:
        normalized = normalize_site_rows(parsed)
    else:
        normalized = normalize_cra_rows(parsed)

    importer = BatchedUpsertImporter(
        store,
        batch_size=settings.import_batch_size,
        batch_delay_seconds=settings.import_batch_delay_seconds,
        sleep=sleep,
    )
    outcome: ImportOutcome
    if import_kind == ImportKind.SITE_DATA:
        outcome = importer.import_site_records(normalized.records, project, actor)
    else:
        outcome = importer.import_cra_records(normalized.records, project, actor)

    report = ImportReport(
        kind=import_kind,
        project_id=project,
        row_count=len(normalized.records),
        success_count=outcome.success_count,
        error_count=outcome.error_count,
        coerced_count=normalized.coerced_count,
        batch_count=outcome.batches,
        status=IMPORT_STATUS_COMPLETED_WITH_ERRORS if outcome.error_count else IMPORT_STATUS_COMPLETED,
        stats=normalized.stats,
    )
    import_run_id = _record_import_run(store, report, actor)
    LOGGER.info(
        "CSV import completed. project_id=%s kind=%s rows=%s success=%s error=%s coerced=%s",
        project,
        import_kind.value,
        report.row_count,
        report.success_count,
        report.error_count,
        report.coerced_count,
    )
    return replace(report, import_run_id=import_run_id)
