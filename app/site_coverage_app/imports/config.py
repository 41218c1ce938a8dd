from __future__ import annotations

from site_coverage_app.constants import ImportKind

# Canonical field -> accepted header names, in lookup order.
SITE_DATA_ALIASES: dict[str, tuple[str, ...]] = {
    "country": ("Country", "country"),
    "reference_number": ("PXL Site Reference Number", "pxl_site_reference_number", "reference_number"),
    "pi_name": ("PI Name", "pi_name"),
    "personnel_name": ("Site Personnel Name", "site_personnel_name", "personnel_name"),
    "role": ("Role", "role"),
    "email": ("Site Personnel Email Address", "site_personnel_email_address", "email"),
    "phone": ("Site Personnel Telephone", "site_personnel_telephone", "phone"),
    "fax": ("Site Personnel Fax", "site_personnel_fax", "fax"),
    "institution": ("Institution", "institution"),
    "address": ("Address", "address"),
    "city": ("City/Town", "city_town", "city"),
    "province": ("Province/State", "province_state", "province"),
    "postal_code": ("Zip Code", "zip_code", "postal_code"),
    "starter_pack": ("Starter Pack", "starter_pack"),
}

CRA_LIST_ALIASES: dict[str, tuple[str, ...]] = {
    "full_name": ("Full Name", "full_name"),
    "first_name": ("First Name", "first_name"),
    "last_name": ("Last Name", "last_name"),
    "study_site": ("Study Site", "study_site"),
    "status": ("Status", "status"),
    "email": ("Email", "email"),
    "study_country": ("Study Country", "study_country"),
    "study_team_role": ("Study Team Role", "study_team_role"),
    "user_type": ("User Type", "user_type"),
    "user_reference": ("User Reference", "user_reference"),
}

SITE_REQUIRED_FIELDS = ("reference_number", "personnel_name", "role")
CRA_REQUIRED_FIELDS = ("full_name", "first_name", "last_name")
CRA_OPTIONAL_FIELDS = ("study_site", "email", "study_country", "study_team_role", "user_type", "user_reference")

STARTER_PACK_TRUE_VALUES = {"yes", "true"}

IMPORT_ALIASES: dict[ImportKind, dict[str, tuple[str, ...]]] = {
    ImportKind.SITE_DATA: SITE_DATA_ALIASES,
    ImportKind.CRA_LIST: CRA_LIST_ALIASES,
}


def aliases_for(kind: ImportKind | str) -> dict[str, tuple[str, ...]]:
    return IMPORT_ALIASES[ImportKind.parse(kind)]


def template_csv(kind: ImportKind | str) -> str:
    """Header-only CSV using the display name of every field."""
    headers = [names[0] for names in aliases_for(kind).values()]
    return ",".join(headers) + "\n"
