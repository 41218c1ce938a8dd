from __future__ import annotations

import csv
from datetime import date
import io
from typing import Any, Iterable, Mapping, Sequence

from site_coverage_app.sites.models import SiteReference

LABP_EXPORT_HEADERS = (
    "Sponsor",
    "project_id",
    "Protocol number",
    "country",
    "province_state",
    "city_town",
    "zip_code",
    "pxl_site_reference_number",
    "institution",
    "address",
    "site_personnel_name",
    "site_personnel_email_address",
    "site_personnel_telephone",
    "site_personnel_fax",
)


def _project_value(project: Mapping[str, Any] | None, *keys: str) -> str:
    if not project:
        return ""
    for key in keys:
        value = str(project.get(key) or "").strip()
        if value:
            return value
    return ""


def export_labp_csv(
    references: Sequence[SiteReference],
    selected_references: Iterable[str],
    project: Mapping[str, Any] | None = None,
) -> str:
    """CSV of the LABP personnel rows for the selected references, in selection order."""
    selected = [str(item or "").strip() for item in selected_references if str(item or "").strip()]
    if not selected:
        raise ValueError("Select at least one site reference to export.")
    by_reference = {reference.reference_number: reference for reference in references}

    sponsor = _project_value(project, "sponsor", "Sponsor")
    project_number = _project_value(project, "project_number")
    protocol_number = _project_value(project, "protocol_number")

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(LABP_EXPORT_HEADERS)
    exported = 0
    for reference_number in dict.fromkeys(selected):
        reference = by_reference.get(reference_number)
        if reference is None:
            continue
        for record in reference.records:
            if not record.is_labp:
                continue
            writer.writerow(
                (
                    sponsor,
                    project_number,
                    protocol_number,
                    record.country,
                    record.province,
                    record.city,
                    record.postal_code,
                    record.reference_number,
                    record.institution,
                    record.address,
                    record.personnel_name,
                    record.email,
                    record.phone,
                    record.fax,
                )
            )
            exported += 1
    if not exported:
        raise ValueError("The selected sites don't have any LABP data to export.")
    return buffer.getvalue()


def labp_export_filename(project: Mapping[str, Any] | None, project_id: str | None, today: date) -> str:
    identifier = _project_value(project, "project_number") or str(project_id or "")[:8] or "all"
    return f"labp-site-data-{identifier}-{today.isoformat()}.csv"
