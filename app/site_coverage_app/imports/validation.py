from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from site_coverage_app.constants import CRA_STATUS_ACTIVE, FIELD_STARTER_PACK, LABP_ROLE, ImportKind
from site_coverage_app.errors import ValidationError
from site_coverage_app.imports.config import (
    CRA_OPTIONAL_FIELDS,
    CRA_REQUIRED_FIELDS,
    SITE_DATA_ALIASES,
    SITE_REQUIRED_FIELDS,
    STARTER_PACK_TRUE_VALUES,
)
from site_coverage_app.imports.parsing import LINE_KEY, ParsedImport

SITE_TEXT_FIELDS = tuple(name for name in SITE_DATA_ALIASES if name != FIELD_STARTER_PACK)


@dataclass(frozen=True)
class NormalizationStats:
    total_rows: int = 0
    labp_rows: int = 0
    eligible_with_starter_pack: int = 0
    ineligible_with_starter_pack: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total_rows": self.total_rows,
            "labp_rows": self.labp_rows,
            "eligible_with_starter_pack": self.eligible_with_starter_pack,
            "ineligible_with_starter_pack": self.ineligible_with_starter_pack,
        }


@dataclass(frozen=True)
class NormalizedImport:
    kind: ImportKind
    records: list[dict[str, Any]] = field(default_factory=list)
    line_numbers: list[int] = field(default_factory=list)
    coerced_count: int = 0
    stats: NormalizationStats = field(default_factory=NormalizationStats)


def _missing_fields(row: dict[str, Any], required: Sequence[str]) -> list[str]:
    return [name for name in required if not str(row.get(name) or "").strip()]


def _raise_if_invalid(rows: Iterable[dict[str, Any]], required: Sequence[str]) -> None:
    missing_by_line: dict[int, list[str]] = {}
    for row in rows:
        missing = _missing_fields(row, required)
        if missing:
            missing_by_line[int(row.get(LINE_KEY) or 0)] = missing
    if missing_by_line:
        raise ValidationError(
            invalid_count=len(missing_by_line),
            line_numbers=sorted(missing_by_line),
            missing_fields=missing_by_line,
        )


def starter_pack_requested(raw_value: Any) -> bool:
    return str(raw_value or "").strip().lower() in STARTER_PACK_TRUE_VALUES


def normalize_site_rows(parsed: ParsedImport) -> NormalizedImport:
    """Validate site-data rows and apply the LABP-only starter-pack rule.

    Without a starter-pack column, LABP rows carry ``None`` so the stored value is kept.
    """
    _raise_if_invalid(parsed.rows, SITE_REQUIRED_FIELDS)
    has_starter_pack_column = FIELD_STARTER_PACK in parsed.present_fields

    records: list[dict[str, Any]] = []
    line_numbers: list[int] = []
    coerced = 0
    labp_rows = 0
    eligible = 0
    for row in parsed.rows:
        record = {name: str(row.get(name) or "").strip() for name in SITE_TEXT_FIELDS}
        is_labp = record["role"] == LABP_ROLE
        requested = starter_pack_requested(row.get(FIELD_STARTER_PACK))
        if is_labp:
            labp_rows += 1
            record[FIELD_STARTER_PACK] = requested if has_starter_pack_column else None
            if requested:
                eligible += 1
        else:
            record[FIELD_STARTER_PACK] = False
            if requested:
                coerced += 1
        records.append(record)
        line_numbers.append(int(row.get(LINE_KEY) or 0))

    stats = NormalizationStats(
        total_rows=len(records),
        labp_rows=labp_rows,
        eligible_with_starter_pack=eligible,
        ineligible_with_starter_pack=coerced,
    )
    return NormalizedImport(
        kind=ImportKind.SITE_DATA,
        records=records,
        line_numbers=line_numbers,
        coerced_count=coerced,
        stats=stats,
    )


def normalize_cra_rows(parsed: ParsedImport) -> NormalizedImport:
    prepared: list[dict[str, Any]] = []
    for row in parsed.rows:
        first_name = str(row.get("first_name") or "").strip()
        last_name = str(row.get("last_name") or "").strip()
        full_name = str(row.get("full_name") or "").strip() or f"{first_name} {last_name}".strip()
        prepared.append({**row, "full_name": full_name, "first_name": first_name, "last_name": last_name})
    _raise_if_invalid(prepared, CRA_REQUIRED_FIELDS)

    records: list[dict[str, Any]] = []
    line_numbers: list[int] = []
    for row in prepared:
        record: dict[str, Any] = {
            "full_name": row["full_name"],
            "first_name": row["first_name"],
            "last_name": row["last_name"],
            "status": str(row.get("status") or "").strip() or CRA_STATUS_ACTIVE,
        }
        for name in CRA_OPTIONAL_FIELDS:
            record[name] = str(row.get(name) or "").strip() or None
        records.append(record)
        line_numbers.append(int(row.get(LINE_KEY) or 0))
    return NormalizedImport(
        kind=ImportKind.CRA_LIST,
        records=records,
        line_numbers=line_numbers,
        stats=NormalizationStats(total_rows=len(records)),
    )
