from __future__ import annotations

from datetime import datetime, timedelta, timezone
import threading
from typing import Callable

from site_coverage_app.constants import STATUS_FLAG_FIELDS, TABLE_SITE_STATUS_HISTORY
from site_coverage_app.sites.models import StatusHistoryRecord
from site_coverage_app.store import RecordStore

_TICK = timedelta(microseconds=1)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StatusHistoryRecorder:
    """Append-only audit log of status flag changes.

    Timestamps handed out by one recorder are strictly increasing, so history ordered by
    ``created_at`` is total even when the clock does not advance between two toggles.
    """

    def __init__(self, store: RecordStore, *, clock: Callable[[], datetime] | None = None) -> None:
        self.store = store
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._last_timestamp: datetime | None = None

    def _next_timestamp(self, requested: datetime | None) -> datetime:
        with self._lock:
            candidate = requested or self._clock()
            if self._last_timestamp is not None and candidate <= self._last_timestamp:
                candidate = self._last_timestamp + _TICK
            self._last_timestamp = candidate
            return candidate

    def record(
        self,
        project_id: str,
        site_id: str,
        reference_number: str | None,
        field: str,
        old_value: bool | None,
        new_value: bool | None,
        actor_id: str | None,
        timestamp: datetime | None = None,
    ) -> StatusHistoryRecord:
        if field not in STATUS_FLAG_FIELDS:
            raise ValueError(f"field must be one of: {', '.join(STATUS_FLAG_FIELDS)}.")
        row = {
            "project_id": project_id,
            "site_id": site_id,
            "reference_number": reference_number,
            "field_changed": field,
            "old_value": old_value,
            "new_value": new_value,
            "actor_id": actor_id,
            "created_at": self._next_timestamp(timestamp),
        }
        written = self.store.insert(TABLE_SITE_STATUS_HISTORY, row)
        return StatusHistoryRecord.from_row(written[0])

    def query(
        self,
        project_id: str,
        site_id: str | None = None,
        reference_number: str | None = None,
        limit: int | None = None,
    ) -> list[StatusHistoryRecord]:
        """Most recent first. ``limit=None`` returns the full history."""
        if limit is not None and int(limit) < 1:
            raise ValueError("limit must be a positive integer.")
        filters: dict[str, str] = {"project_id": project_id}
        if site_id:
            filters["site_id"] = site_id
        if reference_number:
            filters["reference_number"] = reference_number
        rows = self.store.select(
            TABLE_SITE_STATUS_HISTORY,
            filters,
            order_by=["created_at DESC", "id DESC"],
            limit=limit,
        )
        return [StatusHistoryRecord.from_row(row) for row in rows]
