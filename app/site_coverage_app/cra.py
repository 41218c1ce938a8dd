from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from site_coverage_app.constants import CRA_STATUS_ACTIVE, TABLE_CRA_MEMBER
from site_coverage_app.store import RecordStore


@dataclass(frozen=True)
class CraSummary:
    total: int = 0
    active: int = 0
    inactive: int = 0
    by_country: dict[str, int] = field(default_factory=dict)
    by_role: dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "active": self.active,
            "inactive": self.inactive,
            "by_country": dict(self.by_country),
            "by_role": dict(self.by_role),
        }


def summarize_cra_members(records: Iterable[Mapping[str, Any]]) -> CraSummary:
    """Counts CRA rows by status, study country and study team role. Blank country or role is not bucketed."""
    rows = list(records)
    active = sum(1 for row in rows if str(row.get("status") or "").strip().lower() == CRA_STATUS_ACTIVE)
    by_country: dict[str, int] = {}
    by_role: dict[str, int] = {}
    for row in rows:
        country = str(row.get("study_country") or "").strip()
        if country:
            by_country[country] = by_country.get(country, 0) + 1
        role = str(row.get("study_team_role") or "").strip()
        if role:
            by_role[role] = by_role.get(role, 0) + 1
    return CraSummary(total=len(rows), active=active, inactive=len(rows) - active, by_country=by_country, by_role=by_role)


def list_cra_members(store: RecordStore, project_id: str) -> list[dict[str, Any]]:
    return store.select(TABLE_CRA_MEMBER, {"project_id": project_id}, order_by=["full_name ASC", "id ASC"])
