from __future__ import annotations

import csv
from dataclasses import dataclass, field
import io
from typing import Any, Mapping, Sequence

from site_coverage_app.constants import ImportKind
from site_coverage_app.errors import ParseError
from site_coverage_app.imports.config import aliases_for

LINE_KEY = "_line"


@dataclass(frozen=True)
class ParsedImport:
    kind: ImportKind
    rows: list[dict[str, Any]] = field(default_factory=list)
    header_names: list[str] = field(default_factory=list)
    present_fields: tuple[str, ...] = ()

    @property
    def row_count(self) -> int:
        return len(self.rows)


def normalize_header(raw_name: str) -> str:
    return str(raw_name or "").lstrip("\ufeff").strip().lower()


def _is_blank_line(cells: Sequence[str]) -> bool:
    return not cells or (len(cells) == 1 and not str(cells[0]).strip())


def _field_columns(
    header_keys: Sequence[str],
    aliases: Mapping[str, Sequence[str]],
) -> dict[str, list[int]]:
    out: dict[str, list[int]] = {}
    for canonical, names in aliases.items():
        indexes: list[int] = []
        for name in names:
            wanted = normalize_header(name)
            for index, key in enumerate(header_keys):
                if key == wanted and index not in indexes:
                    indexes.append(index)
        out[canonical] = indexes
    return out


def parse_import_text(
    text: str,
    kind: ImportKind | str,
    aliases: Mapping[str, Sequence[str]] | None = None,
    *,
    max_rows: int | None = None,
) -> ParsedImport:
    """Parse CSV text into canonical-field rows.

    Header cells are compared case-insensitively after trimming. Each canonical field takes the
    first non-empty value among its matching columns, in alias order. Any structural problem
    raises ``ParseError`` and nothing is returned.
    """
    import_kind = ImportKind.parse(kind)
    alias_map = dict(aliases or aliases_for(import_kind))
    source = str(text or "").lstrip("\ufeff")
    if not source.strip():
        raise ParseError("CSV input is empty. A header row is required.", line_number=1)

    reader = csv.reader(io.StringIO(source, newline=""), strict=True)
    header: list[str] | None = None
    header_keys: list[str] = []
    columns: dict[str, list[int]] = {}
    rows: list[dict[str, Any]] = []
    previous_line = 0
    try:
        for cells in reader:
            line_number = previous_line + 1
            previous_line = reader.line_num
            if _is_blank_line(cells):
                continue
            if header is None:
                header = [str(cell).lstrip("\ufeff").strip() for cell in cells]
                header_keys = [normalize_header(cell) for cell in header]
                columns = _field_columns(header_keys, alias_map)
                continue
            if len(cells) != len(header):
                raise ParseError(
                    f"Line {line_number}: expected {len(header)} fields but found {len(cells)}.",
                    line_number=line_number,
                )
            row: dict[str, Any] = {}
            for canonical, indexes in columns.items():
                value = ""
                for index in indexes:
                    candidate = str(cells[index] or "").strip()
                    if candidate:
                        value = candidate
                        break
                row[canonical] = value
            row[LINE_KEY] = line_number
            rows.append(row)
            if max_rows is not None and len(rows) > int(max_rows):
                raise ParseError(
                    f"CSV has more than {int(max_rows)} data rows. Split the file and import it in parts.",
                    line_number=line_number,
                )
    except csv.Error as exc:
        failed_line = reader.line_num or previous_line or 1
        raise ParseError(f"Line {failed_line}: malformed CSV ({exc}).", line_number=failed_line) from exc

    if header is None:
        raise ParseError("CSV input has no header row.", line_number=1)
    present = tuple(canonical for canonical, indexes in columns.items() if indexes)
    return ParsedImport(kind=import_kind, rows=rows, header_names=header, present_fields=present)
