from site_coverage_app.imports.importer import BatchedUpsertImporter, ImportOutcome
from site_coverage_app.imports.parsing import ParsedImport, parse_import_text
from site_coverage_app.imports.service import ImportReport, run_import
from site_coverage_app.imports.validation import NormalizedImport, normalize_cra_rows, normalize_site_rows

__all__ = [
    "BatchedUpsertImporter",
    "ImportOutcome",
    "ImportReport",
    "NormalizedImport",
    "ParsedImport",
    "normalize_cra_rows",
    "normalize_site_rows",
    "parse_import_text",
    "run_import",
]
