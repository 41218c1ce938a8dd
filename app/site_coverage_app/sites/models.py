from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
import threading
from typing import Any, Mapping

from site_coverage_app.constants import LABP_ROLE

# record id -> field -> staged value
Overlay = dict[str, dict[str, bool]]


def as_flag(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().lower() in {"1", "true", "yes"}


def _optional_flag(value: Any) -> bool | None:
    if value is None:
        return None
    return as_flag(value)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class SitePersonnelRecord:
    id: str
    project_id: str
    reference_number: str
    role: str
    personnel_name: str
    pi_name: str = ""
    institution: str = ""
    address: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""
    country: str = ""
    email: str = ""
    phone: str = ""
    fax: str = ""
    starter_pack: bool = False
    registered_in_srp: bool = False
    supplies_applied: bool = False
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_labp(self) -> bool:
        return self.role == LABP_ROLE

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SitePersonnelRecord":
        return cls(
            id=_text(row.get("id")),
            project_id=_text(row.get("project_id")),
            reference_number=_text(row.get("reference_number")),
            role=_text(row.get("role")),
            personnel_name=_text(row.get("personnel_name")),
            pi_name=_text(row.get("pi_name")),
            institution=_text(row.get("institution")),
            address=_text(row.get("address")),
            city=_text(row.get("city")),
            province=_text(row.get("province")),
            postal_code=_text(row.get("postal_code")),
            country=_text(row.get("country")),
            email=_text(row.get("email")),
            phone=_text(row.get("phone")),
            fax=_text(row.get("fax")),
            starter_pack=as_flag(row.get("starter_pack")),
            registered_in_srp=as_flag(row.get("registered_in_srp")),
            supplies_applied=as_flag(row.get("supplies_applied")),
            created_by=row.get("created_by"),
            updated_by=row.get("updated_by"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SiteReference:
    """Per-reference view over the personnel rows sharing one reference number. Never persisted."""

    project_id: str
    reference_number: str
    records: tuple[SitePersonnelRecord, ...]
    observed_roles: tuple[str, ...]
    present_roles: tuple[str, ...]
    missing_roles: tuple[str, ...]
    missing_labp: bool
    labp_record: SitePersonnelRecord | None
    representative_record: SitePersonnelRecord
    starter_pack: bool = False
    registered_in_srp: bool = False
    supplies_applied: bool = False

    @property
    def site_id(self) -> str | None:
        return self.labp_record.id if self.labp_record is not None else None

    @property
    def country(self) -> str:
        return self.representative_record.country

    @property
    def institution(self) -> str:
        return self.representative_record.institution

    @property
    def personnel_name(self) -> str:
        return self.representative_record.personnel_name

    @property
    def starter_pack_updated_at(self) -> datetime | None:
        return self.labp_record.updated_at if self.labp_record is not None else None

    @property
    def fully_staffed(self) -> bool:
        return not self.missing_roles

    def as_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "reference_number": self.reference_number,
            "site_id": self.site_id,
            "country": self.country,
            "institution": self.institution,
            "personnel_name": self.personnel_name,
            "observed_roles": list(self.observed_roles),
            "present_roles": list(self.present_roles),
            "missing_roles": list(self.missing_roles),
            "missing_labp": self.missing_labp,
            "starter_pack": self.starter_pack,
            "registered_in_srp": self.registered_in_srp,
            "supplies_applied": self.supplies_applied,
            "starter_pack_updated_at": self.starter_pack_updated_at,
            "records": [record.as_dict() for record in self.records],
        }


@dataclass(frozen=True)
class StatusHistoryRecord:
    id: str
    project_id: str
    site_id: str
    reference_number: str | None
    field_changed: str
    old_value: bool | None
    new_value: bool | None
    created_at: datetime
    actor_id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "StatusHistoryRecord":
        return cls(
            id=_text(row.get("id")),
            project_id=_text(row.get("project_id")),
            site_id=_text(row.get("site_id")),
            reference_number=row.get("reference_number"),
            field_changed=_text(row.get("field_changed")),
            old_value=_optional_flag(row.get("old_value")),
            new_value=_optional_flag(row.get("new_value")),
            created_at=row.get("created_at"),
            actor_id=row.get("actor_id"),
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SiteTrackingSession:
    """Caller-owned state for one project view: last fetched rows plus staged toggles."""

    project_id: str
    records: list[SitePersonnelRecord] = field(default_factory=list)
    overlay: Overlay = field(default_factory=dict)
    refreshed_at: datetime | None = None
    refresh_count: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def staged_value(self, record_id: str, field_name: str) -> bool | None:
        return self.overlay.get(record_id, {}).get(field_name)

    def clear_overlay(self, record_id: str, field_name: str) -> None:
        staged = self.overlay.get(record_id)
        if not staged:
            return
        staged.pop(field_name, None)
        if not staged:
            self.overlay.pop(record_id, None)
