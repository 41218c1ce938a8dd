"""Shared constants for site tracking."""

from __future__ import annotations

from enum import Enum

LABP_ROLE = "LABP"

FIELD_STARTER_PACK = "starter_pack"
FIELD_REGISTERED_IN_SRP = "registered_in_srp"
FIELD_SUPPLIES_APPLIED = "supplies_applied"
STATUS_FLAG_FIELDS = (
    FIELD_STARTER_PACK,
    FIELD_REGISTERED_IN_SRP,
    FIELD_SUPPLIES_APPLIED,
)

TABLE_SITE_PERSONNEL = "app_site_personnel"
TABLE_SITE_STATUS_HISTORY = "app_site_status_history"
TABLE_CRA_MEMBER = "app_cra_member"
TABLE_IMPORT_RUN = "app_import_run"

SITE_UPSERT_KEY = ("project_id", "reference_number", "role")
CRA_UPSERT_KEY = ("project_id", "natural_key")

CRA_STATUS_ACTIVE = "active"


class ImportKind(str, Enum):
    SITE_DATA = "site-data"
    CRA_LIST = "cra-list"

    @classmethod
    def parse(cls, value: "str | ImportKind") -> "ImportKind":
        if isinstance(value, ImportKind):
            return value
        cleaned = str(value or "").strip().lower().replace("_", "-")
        for kind in cls:
            if kind.value == cleaned:
                return kind
        allowed = ", ".join(kind.value for kind in cls)
        raise ValueError(f"import kind must be one of: {allowed}.")
