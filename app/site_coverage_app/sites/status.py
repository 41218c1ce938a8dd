from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Callable, Sequence

from site_coverage_app.constants import STATUS_FLAG_FIELDS, TABLE_SITE_PERSONNEL
from site_coverage_app.core.defaults import DEFAULT_REQUIRED_ROLES
from site_coverage_app.errors import (
    EligibilityError,
    PersistenceError,
    SiteReferenceNotFoundError,
    SiteTrackingError,
)
from site_coverage_app.sites.aggregation import aggregate_site_references
from site_coverage_app.sites.history import StatusHistoryRecorder
from site_coverage_app.sites.models import (
    SitePersonnelRecord,
    SiteReference,
    SiteTrackingSession,
    StatusHistoryRecord,
    as_flag,
)
from site_coverage_app.store import ChangeCallback, ChangeEvent, RecordStore, Subscription

LOGGER = logging.getLogger(__name__)

RefreshCallback = Callable[[list[SiteReference]], None]


class ToggleStatus(str, Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class PendingToggle:
    project_id: str
    reference_number: str
    record_id: str
    field: str
    new_value: bool
    staged_at: datetime


@dataclass(frozen=True)
class ToggleResult:
    status: ToggleStatus
    reference_number: str
    field: str
    new_value: bool
    old_value: bool | None = None
    error: SiteTrackingError | None = None
    history_warning: str | None = None
    history_record: StatusHistoryRecord | None = None

    @property
    def confirmed(self) -> bool:
        return self.status == ToggleStatus.CONFIRMED

    @property
    def retryable(self) -> bool:
        return bool(self.error is not None and self.error.retryable)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _check_field(field_name: str) -> str:
    if field_name not in STATUS_FLAG_FIELDS:
        raise ValueError(f"field must be one of: {', '.join(STATUS_FLAG_FIELDS)}.")
    return field_name


class SiteStatusEngine:
    """Reads project site data, stages optimistic flag toggles and confirms them against the store.

    Staged values live in the caller's ``SiteTrackingSession`` overlay. A full ``refresh``
    replaces the fetched rows and drops every staged value.
    """

    def __init__(
        self,
        store: RecordStore,
        recorder: StatusHistoryRecorder,
        required_roles: Sequence[str] = DEFAULT_REQUIRED_ROLES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.recorder = recorder
        self.required_roles = tuple(required_roles)
        self._clock = clock or _utc_now

    def open_session(self, project_id: str) -> SiteTrackingSession:
        project = str(project_id or "").strip()
        if not project:
            raise ValueError("project_id is required.")
        session = SiteTrackingSession(project_id=project)
        self.refresh(session)
        return session

    def refresh(self, session: SiteTrackingSession) -> list[SiteReference]:
        rows = self.store.select(
            TABLE_SITE_PERSONNEL,
            {"project_id": session.project_id},
            order_by=["reference_number ASC", "created_at ASC", "id ASC"],
        )
        records = [SitePersonnelRecord.from_row(row) for row in rows]
        with session.lock:
            session.records = records
            session.overlay.clear()
            session.refreshed_at = self._clock()
            session.refresh_count += 1
        return self.site_references(session)

    def site_references(self, session: SiteTrackingSession) -> list[SiteReference]:
        with session.lock:
            records = list(session.records)
            overlay = {record_id: dict(values) for record_id, values in session.overlay.items()}
        return aggregate_site_references(records, self.required_roles, overlay)

    def site_reference(self, session: SiteTrackingSession, reference_number: str) -> SiteReference:
        wanted = str(reference_number or "").strip()
        for reference in self.site_references(session):
            if reference.reference_number == wanted:
                return reference
        raise SiteReferenceNotFoundError(wanted)

    def stage_toggle(
        self,
        session: SiteTrackingSession,
        reference_number: str,
        field: str,
        new_value: bool,
    ) -> PendingToggle:
        field_name = _check_field(field)
        reference = self.site_reference(session, reference_number)
        if reference.missing_labp or reference.labp_record is None:
            raise EligibilityError(reference.reference_number, missing_roles=reference.missing_roles)
        record_id = reference.labp_record.id
        with session.lock:
            session.overlay.setdefault(record_id, {})[field_name] = bool(new_value)
        return PendingToggle(
            project_id=session.project_id,
            reference_number=reference.reference_number,
            record_id=record_id,
            field=field_name,
            new_value=bool(new_value),
            staged_at=self._clock(),
        )

    def abandon_toggle(self, session: SiteTrackingSession, pending: PendingToggle) -> None:
        with session.lock:
            session.clear_overlay(pending.record_id, pending.field)

    def _apply_confirmed(self, session: SiteTrackingSession, pending: PendingToggle, updated_at: datetime, actor_id: str) -> None:
        with session.lock:
            session.records = [
                replace(record, **{pending.field: pending.new_value, "updated_at": updated_at, "updated_by": actor_id})
                if record.id == pending.record_id
                else record
                for record in session.records
            ]
            session.clear_overlay(pending.record_id, pending.field)

    def commit_toggle(self, session: SiteTrackingSession, pending: PendingToggle, actor_id: str) -> ToggleResult:
        try:
            current = self.store.get(TABLE_SITE_PERSONNEL, pending.record_id)
            if current is None:
                raise SiteReferenceNotFoundError(pending.reference_number)
            old_value = as_flag(current.get(pending.field))
            updated_at = self._clock()
            self.store.update(
                TABLE_SITE_PERSONNEL,
                pending.record_id,
                {pending.field: pending.new_value, "updated_at": updated_at, "updated_by": actor_id},
            )
        except (PersistenceError, SiteReferenceNotFoundError) as exc:
            self.abandon_toggle(session, pending)
            LOGGER.warning(
                "Status toggle failed. project_id=%s reference=%s field=%s",
                pending.project_id,
                pending.reference_number,
                pending.field,
                exc_info=True,
            )
            return ToggleResult(
                status=ToggleStatus.FAILED,
                reference_number=pending.reference_number,
                field=pending.field,
                new_value=pending.new_value,
                error=exc,
            )

        self._apply_confirmed(session, pending, updated_at, actor_id)
        history_record = None
        history_warning = None
        try:
            history_record = self.recorder.record(
                pending.project_id,
                pending.record_id,
                pending.reference_number,
                pending.field,
                old_value,
                pending.new_value,
                actor_id,
            )
        except PersistenceError as exc:
            history_warning = f"Status changed but the history entry was not saved: {exc}"
            LOGGER.warning(
                "Status history write failed after a confirmed toggle. project_id=%s site_id=%s field=%s",
                pending.project_id,
                pending.record_id,
                pending.field,
                exc_info=True,
            )
        LOGGER.info(
            "Status toggle confirmed. project_id=%s reference=%s field=%s old=%s new=%s actor=%s",
            pending.project_id,
            pending.reference_number,
            pending.field,
            old_value,
            pending.new_value,
            actor_id,
        )
        return ToggleResult(
            status=ToggleStatus.CONFIRMED,
            reference_number=pending.reference_number,
            field=pending.field,
            new_value=pending.new_value,
            old_value=old_value,
            history_warning=history_warning,
            history_record=history_record,
        )

    def toggle(
        self,
        session: SiteTrackingSession,
        reference_number: str,
        field: str,
        new_value: bool,
        actor_id: str,
    ) -> ToggleResult:
        try:
            pending = self.stage_toggle(session, reference_number, field, new_value)
        except EligibilityError as exc:
            LOGGER.info(
                "Status toggle rejected. project_id=%s reference=%s field=%s",
                session.project_id,
                reference_number,
                field,
            )
            return ToggleResult(
                status=ToggleStatus.REJECTED,
                reference_number=str(reference_number or "").strip(),
                field=field,
                new_value=bool(new_value),
                error=exc,
            )
        return self.commit_toggle(session, pending, actor_id)

    def subscribe(self, project_id: str, on_change: ChangeCallback) -> Subscription:
        return self.store.subscribe(TABLE_SITE_PERSONNEL, {"project_id": project_id}, on_change)

    def watch(self, session: SiteTrackingSession, on_refresh: RefreshCallback | None = None) -> Subscription:
        """Refetch the session on every change notification for its project."""

        def _on_change(event: ChangeEvent) -> None:
            references = self.refresh(session)
            LOGGER.debug(
                "Session refreshed on change. project_id=%s action=%s records=%s",
                session.project_id,
                event.action,
                len(event.record_ids),
            )
            if on_refresh is not None:
                on_refresh(references)

        return self.subscribe(session.project_id, _on_change)
