from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Any, Callable, Mapping, Sequence

from site_coverage_app.constants import (
    CRA_UPSERT_KEY,
    FIELD_REGISTERED_IN_SRP,
    FIELD_STARTER_PACK,
    FIELD_SUPPLIES_APPLIED,
    SITE_UPSERT_KEY,
    TABLE_CRA_MEMBER,
    TABLE_SITE_PERSONNEL,
)
from site_coverage_app.core.defaults import DEFAULT_IMPORT_BATCH_DELAY_MS, DEFAULT_IMPORT_BATCH_SIZE
from site_coverage_app.errors import PersistenceError
from site_coverage_app.store import RecordStore

LOGGER = logging.getLogger(__name__)

SITE_PRESERVE_DEFAULTS: dict[str, Any] = {
    FIELD_STARTER_PACK: False,
    FIELD_REGISTERED_IN_SRP: False,
    FIELD_SUPPLIES_APPLIED: False,
}


def _normalize_email(value: Any) -> str:
    return str(value or "").strip().lower()


def cra_natural_key(record: Mapping[str, Any]) -> str:
    email = _normalize_email(record.get("email"))
    if email:
        return f"email:{email}"
    return f"name:{str(record.get('full_name') or '').strip().lower()}"


@dataclass(frozen=True)
class ImportOutcome:
    success_count: int = 0
    error_count: int = 0
    batches: int = 0
    failed_batches: tuple[int, ...] = ()

    @property
    def record_count(self) -> int:
        return self.success_count + self.error_count


class BatchedUpsertImporter:
    """Writes normalized records to the record store in sequential, paced batches.

    A failed batch counts every one of its records as an error and the next batch still runs.
    """

    def __init__(
        self,
        store: RecordStore,
        batch_size: int = DEFAULT_IMPORT_BATCH_SIZE,
        batch_delay_seconds: float = DEFAULT_IMPORT_BATCH_DELAY_MS / 1000.0,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if int(batch_size) < 1:
            raise ValueError("batch_size must be at least 1.")
        self.store = store
        self.batch_size = int(batch_size)
        self.batch_delay_seconds = max(0.0, float(batch_delay_seconds))
        self._sleep = sleep

    @staticmethod
    def _require(project_id: str, actor_id: str) -> tuple[str, str]:
        project = str(project_id or "").strip()
        actor = str(actor_id or "").strip()
        if not project:
            raise ValueError("project_id is required for import.")
        if not actor:
            raise ValueError("actor_id is required for import.")
        return project, actor

    def _run(
        self,
        *,
        table: str,
        records: Sequence[dict[str, Any]],
        key_fields: Sequence[str],
        preserve_defaults: Mapping[str, Any] | None,
    ) -> ImportOutcome:
        success = 0
        errors = 0
        failed: list[int] = []
        batch_total = (len(records) + self.batch_size - 1) // self.batch_size
        for batch_index in range(batch_total):
            if batch_index > 0 and self.batch_delay_seconds > 0:
                self._sleep(self.batch_delay_seconds)
            start = batch_index * self.batch_size
            batch = list(records[start : start + self.batch_size])
            try:
                self.store.upsert(table, batch, key_fields, preserve_defaults)
            except PersistenceError:
                LOGGER.warning(
                    "Import batch failed. table=%s batch=%s/%s size=%s",
                    table,
                    batch_index + 1,
                    batch_total,
                    len(batch),
                    exc_info=True,
                )
                errors += len(batch)
                failed.append(batch_index)
                continue
            success += len(batch)
        LOGGER.info(
            "Import finished. table=%s records=%s success=%s error=%s batches=%s",
            table,
            len(records),
            success,
            errors,
            batch_total,
        )
        return ImportOutcome(success_count=success, error_count=errors, batches=batch_total, failed_batches=tuple(failed))

    def import_site_records(
        self,
        records: Sequence[Mapping[str, Any]],
        project_id: str,
        actor_id: str,
    ) -> ImportOutcome:
        project, actor = self._require(project_id, actor_id)
        prepared = [
            {**record, "project_id": project, "created_by": actor, "updated_by": actor}
            for record in records
        ]
        return self._run(
            table=TABLE_SITE_PERSONNEL,
            records=prepared,
            key_fields=SITE_UPSERT_KEY,
            preserve_defaults=SITE_PRESERVE_DEFAULTS,
        )

    def import_cra_records(
        self,
        records: Sequence[Mapping[str, Any]],
        project_id: str,
        actor_id: str,
    ) -> ImportOutcome:
        project, actor = self._require(project_id, actor_id)
        prepared = [
            {
                **record,
                "project_id": project,
                "natural_key": cra_natural_key(record),
                "created_by": actor,
                "updated_by": actor,
            }
            for record in records
        ]
        return self._run(table=TABLE_CRA_MEMBER, records=prepared, key_fields=CRA_UPSERT_KEY, preserve_defaults=None)
