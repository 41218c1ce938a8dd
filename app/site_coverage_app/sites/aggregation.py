from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterable, Mapping, Sequence

from site_coverage_app.constants import STATUS_FLAG_FIELDS
from site_coverage_app.sites.coverage import analyze_roles
from site_coverage_app.sites.models import Overlay, SitePersonnelRecord, SiteReference


def _as_record(item: SitePersonnelRecord | Mapping[str, Any]) -> SitePersonnelRecord:
    if isinstance(item, SitePersonnelRecord):
        return item
    return SitePersonnelRecord.from_row(item)


def _with_overlay(record: SitePersonnelRecord, overlay: Overlay | None) -> SitePersonnelRecord:
    staged = (overlay or {}).get(record.id)
    if not staged:
        return record
    changes = {name: bool(value) for name, value in staged.items() if name in STATUS_FLAG_FIELDS}
    return replace(record, **changes) if changes else record


def aggregate_site_references(
    records: Iterable[SitePersonnelRecord | Mapping[str, Any]],
    required_roles: Sequence[str],
    overlay: Overlay | None = None,
) -> list[SiteReference]:
    """Group personnel rows by reference number, ordered by reference.

    Status flags come from the LABP row with staged overlay values applied. When a group holds
    more than one LABP row the last one wins.
    """
    groups: dict[str, list[SitePersonnelRecord]] = {}
    for item in records:
        record = _with_overlay(_as_record(item), overlay)
        groups.setdefault(record.reference_number, []).append(record)

    references: list[SiteReference] = []
    for reference_number in sorted(groups):
        group = groups[reference_number]
        observed = tuple(dict.fromkeys(record.role for record in group))
        coverage = analyze_roles(observed, required_roles)
        labp_record = None
        for record in group:
            if record.is_labp:
                labp_record = record
        representative = labp_record or group[0]
        references.append(
            SiteReference(
                project_id=representative.project_id,
                reference_number=reference_number,
                records=tuple(group),
                observed_roles=observed,
                present_roles=coverage.present_roles,
                missing_roles=coverage.missing_roles,
                missing_labp=coverage.missing_labp,
                labp_record=labp_record,
                representative_record=representative,
                starter_pack=bool(labp_record.starter_pack) if labp_record else False,
                registered_in_srp=bool(labp_record.registered_in_srp) if labp_record else False,
                supplies_applied=bool(labp_record.supplies_applied) if labp_record else False,
            )
        )
    return references
