from __future__ import annotations

from typing import Any, Sequence


class SiteTrackingError(RuntimeError):
    """Base class for site tracking failures surfaced to callers."""

    code = "SITE_TRACKING_ERROR"
    retryable = False

    def details(self) -> dict[str, Any]:
        return {}


class ParseError(SiteTrackingError):
    """Raised when CSV text is structurally malformed. Nothing is imported."""

    code = "PARSE_ERROR"

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        super().__init__(message)
        self.line_number = line_number

    def details(self) -> dict[str, Any]:
        return {"line_number": self.line_number}


class ValidationError(SiteTrackingError):
    """Raised when one or more rows miss required fields. Blocks the whole import."""

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        *,
        invalid_count: int,
        line_numbers: Sequence[int] = (),
        missing_fields: dict[int, list[str]] | None = None,
    ) -> None:
        super().__init__(
            f"Found {int(invalid_count)} records with missing required fields. Please check your CSV file."
        )
        self.invalid_count = int(invalid_count)
        self.line_numbers = list(line_numbers)
        self.missing_fields = dict(missing_fields or {})

    def details(self) -> dict[str, Any]:
        return {
            "invalid_count": self.invalid_count,
            "line_numbers": self.line_numbers,
            "missing_fields": {str(line): fields for line, fields in self.missing_fields.items()},
        }


class PersistenceError(SiteTrackingError):
    """Raised when a record store write or read fails."""

    code = "PERSISTENCE_ERROR"
    retryable = True


class EligibilityError(SiteTrackingError):
    """Raised when a status flag is toggled on a reference without a LABP record."""

    code = "ELIGIBILITY_ERROR"

    def __init__(self, reference_number: str, *, missing_roles: Sequence[str] = ()) -> None:
        super().__init__(
            f"Site reference {reference_number} has no LABP record; status flags cannot be changed."
        )
        self.reference_number = reference_number
        self.missing_roles = list(missing_roles)

    def details(self) -> dict[str, Any]:
        return {"reference_number": self.reference_number, "missing_roles": self.missing_roles}


class SiteReferenceNotFoundError(SiteTrackingError, LookupError):
    code = "NOT_FOUND"

    def __init__(self, reference_number: str) -> None:
        super().__init__(f"Site reference {reference_number} was not found.")
        self.reference_number = reference_number

    def details(self) -> dict[str, Any]:
        return {"reference_number": self.reference_number}


class SchemaBootstrapRequiredError(RuntimeError):
    """Raised when required runtime schema objects are missing or inaccessible."""
