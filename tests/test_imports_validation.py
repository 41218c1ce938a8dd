from __future__ import annotations

import pytest
import sys
from pathlib import Path

APP_ROOT = Path(__file__).resolve().parents[1] / "app"
if str(APP_ROOT) not in sys.path:
    sys.path.insert(0, str(APP_ROOT))

from site_coverage_app.constants import ImportKind
from site_coverage_app.errors import ValidationError
from site_coverage_app.imports.parsing import parse_import_text
from site_coverage_app.imports.validation import normalize_cra_rows, normalize_site_rows


def _site(text: str):
    return normalize_site_rows(parse_import_text(text, ImportKind.SITE_DATA))


def test_starter_pack_is_only_kept_for_labp_rows() -> None:
    normalized = _site(
        "PXL Site Reference Number,Site Personnel Name,Role,Starter Pack\n"
        "PXL-1,Ann Lee,LABP,Yes\n"
        "PXL-1,Bob Kay,PI,TRUE\n"
        "PXL-1,Cy Dunn,SC,no\n"
        "PXL-2,Di Moe,LABP,\n"
    )

    flags = [(record["role"], record["starter_pack"]) for record in normalized.records]
    assert flags == [("LABP", True), ("PI", False), ("SC", False), ("LABP", False)]
    assert normalized.coerced_count == 1
    assert normalized.stats.total_rows == 4
    assert normalized.stats.labp_rows == 2
    assert normalized.stats.eligible_with_starter_pack == 1
    assert normalized.stats.ineligible_with_starter_pack == 1


def test_non_labp_rows_never_carry_a_starter_pack() -> None:
    normalized = _site(
        "PXL Site Reference Number,Site Personnel Name,Role,Starter Pack\n"
        "PXL-1,Ann Lee,PI,yes\n"
        "PXL-1,Bob Kay,CRC,true\n"
        "PXL-1,Cy Dunn,labp,yes\n"
    )

    assert all(record["starter_pack"] is False for record in normalized.records)
    assert normalized.coerced_count == 3


def test_missing_starter_pack_column_preserves_labp_value() -> None:
    normalized = _site(
        "PXL Site Reference Number,Site Personnel Name,Role\n"
        "PXL-1,Ann Lee,LABP\n"
        "PXL-1,Bob Kay,PI\n"
    )

    assert normalized.records[0]["starter_pack"] is None
    assert normalized.records[1]["starter_pack"] is False
    assert "registered_in_srp" not in normalized.records[0]
    assert "supplies_applied" not in normalized.records[0]


def test_missing_required_fields_reject_the_whole_file() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _site(
            "PXL Site Reference Number,Site Personnel Name,Role\n"
            "PXL-1,Ann Lee,LABP\n"
            ",Bob Kay,PI\n"
            "PXL-2,,\n"
        )

    error = excinfo.value
    assert error.invalid_count == 2
    assert error.line_numbers == [3, 4]
    assert error.missing_fields[4] == ["personnel_name", "role"]
    assert "Found 2 records with missing required fields" in str(error)


def test_cra_full_name_is_derived_and_status_defaults_to_active() -> None:
    normalized = normalize_cra_rows(
        parse_import_text(
            "Full Name,First Name,Last Name,Status,Email,Study Country\n"
            ",Ada,Stone,,ada@example.com,Canada\n"
            "Ben Hart,Ben,Hart,inactive,,\n",
            ImportKind.CRA_LIST,
        )
    )

    first, second = normalized.records
    assert first["full_name"] == "Ada Stone"
    assert first["status"] == "active"
    assert first["email"] == "ada@example.com"
    assert first["study_site"] is None
    assert second["status"] == "inactive"
    assert second["email"] is None
    assert second["study_country"] is None
    assert normalized.stats.total_rows == 2


def test_cra_rows_without_names_fail_validation() -> None:
    with pytest.raises(ValidationError) as excinfo:
        normalize_cra_rows(
            parse_import_text(
                "Full Name,First Name,Last Name\nAda Stone,,Stone\n,,\n",
                ImportKind.CRA_LIST,
            )
        )
    assert excinfo.value.invalid_count == 2
    assert excinfo.value.line_numbers == [2, 3]
