from __future__ import annotations

import csv
from datetime import date
import io

import pytest
import sys
from pathlib import Path

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from site_coverage_app.core.defaults import DEFAULT_REQUIRED_ROLES
from site_coverage_app.sites.aggregation import aggregate_site_references
from site_coverage_app.sites.export import LABP_EXPORT_HEADERS, export_labp_csv, labp_export_filename

PROJECT = {"sponsor": "Acme Bio", "project_number": "PRJ-42", "protocol_number": "PROT-7"}


def _references():
    rows = [
        {
            "id": "r1",
            "project_id": "proj-1",
            "reference_number": "PXL-1",
            "role": "LABP",
            "personnel_name": "Ann Lee",
            "email": "ann@example.com",
            "country": "Canada",
            "province": "ON",
            "city": "Toronto",
            "postal_code": "M5V",
            "institution": "General, East Wing",
        },
        {"id": "r2", "project_id": "proj-1", "reference_number": "PXL-1", "role": "PI", "personnel_name": "Bob Kay"},
        {"id": "r3", "project_id": "proj-1", "reference_number": "PXL-2", "role": "PI", "personnel_name": "Cy Dunn"},
        {"id": "r4", "project_id": "proj-1", "reference_number": "PXL-3", "role": "LABP", "personnel_name": "Di Moe"},
    ]
    return aggregate_site_references(rows, DEFAULT_REQUIRED_ROLES)


def _parse(content: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(content)))


def test_export_writes_labp_rows_in_selection_order() -> None:
    content = export_labp_csv(_references(), ["PXL-3", "PXL-2", "PXL-1"], project=PROJECT)
    rows = _parse(content)

    assert tuple(rows[0]) == LABP_EXPORT_HEADERS
    assert [row[7] for row in rows[1:]] == ["PXL-3", "PXL-1"]
    ann = rows[2]
    assert ann[:3] == ["Acme Bio", "PRJ-42", "PROT-7"]
    assert ann[3:7] == ["Canada", "ON", "Toronto", "M5V"]
    assert ann[8] == "General, East Wing"
    assert ann[10] == "Ann Lee"
    assert ann[11] == "ann@example.com"


def test_export_without_project_leaves_project_columns_blank() -> None:
    rows = _parse(export_labp_csv(_references(), ["PXL-1"]))

    assert rows[1][:3] == ["", "", ""]
    assert len(rows) == 2


def test_export_requires_a_selection() -> None:
    with pytest.raises(ValueError):
        export_labp_csv(_references(), [])


def test_export_without_labp_data_fails() -> None:
    with pytest.raises(ValueError) as excinfo:
        export_labp_csv(_references(), ["PXL-2", "PXL-404"])
    assert "LABP" in str(excinfo.value)


def test_export_filename() -> None:
    assert labp_export_filename(PROJECT, "proj-1", date(2026, 3, 2)) == "labp-site-data-PRJ-42-2026-03-02.csv"
    assert labp_export_filename(None, "0123456789abcdef", date(2026, 3, 2)) == "labp-site-data-01234567-2026-03-02.csv"
