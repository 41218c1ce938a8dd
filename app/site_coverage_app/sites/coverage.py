from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any, Iterable, Sequence, TYPE_CHECKING

from site_coverage_app.constants import LABP_ROLE

if TYPE_CHECKING:
    from site_coverage_app.sites.models import SiteReference

STARTER_PACK_FILTERS = ("all", "sent", "not-sent", "no-labp")
YES_NO_FILTERS = ("all", "yes", "no")


@dataclass(frozen=True)
class RoleCoverage:
    present_roles: tuple[str, ...]
    missing_roles: tuple[str, ...]
    missing_labp: bool


def analyze_roles(observed_roles: Iterable[str], required_roles: Sequence[str]) -> RoleCoverage:
    """Split ``required_roles`` into present and missing, both in required order."""
    observed = set(observed_roles)
    required = tuple(dict.fromkeys(required_roles))
    present = tuple(role for role in required if role in observed)
    missing = tuple(role for role in required if role not in observed)
    return RoleCoverage(present_roles=present, missing_roles=missing, missing_labp=LABP_ROLE not in present)


@dataclass(frozen=True)
class CoverageSummary:
    total_references: int = 0
    labp_present_count: int = 0
    starter_pack_sent_count: int = 0
    starter_pack_percentage: int = 0
    registered_in_srp_count: int = 0
    supplies_applied_count: int = 0
    fully_staffed_count: int = 0
    missing_roles_by_reference: dict[str, list[str]] = field(default_factory=dict)
    role_gap_counts: dict[str, int] = field(default_factory=dict)
    countries: list[str] = field(default_factory=list)
    institutions: list[str] = field(default_factory=list)
    personnel_count: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_references": self.total_references,
            "labp_present_count": self.labp_present_count,
            "starter_pack_sent_count": self.starter_pack_sent_count,
            "starter_pack_percentage": self.starter_pack_percentage,
            "registered_in_srp_count": self.registered_in_srp_count,
            "supplies_applied_count": self.supplies_applied_count,
            "fully_staffed_count": self.fully_staffed_count,
            "missing_roles_by_reference": {key: list(value) for key, value in self.missing_roles_by_reference.items()},
            "role_gap_counts": dict(self.role_gap_counts),
            "countries": list(self.countries),
            "institutions": list(self.institutions),
            "personnel_count": self.personnel_count,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def summarize_coverage(references: Sequence["SiteReference"]) -> CoverageSummary:
    total = len(references)
    eligible = [reference for reference in references if not reference.missing_labp]
    sent = sum(1 for reference in eligible if reference.starter_pack)
    role_gaps: dict[str, int] = {}
    missing_by_reference: dict[str, list[str]] = {}
    for reference in references:
        missing_by_reference[reference.reference_number] = list(reference.missing_roles)
        for role in reference.missing_roles:
            role_gaps[role] = role_gaps.get(role, 0) + 1
    return CoverageSummary(
        total_references=total,
        labp_present_count=len(eligible),
        starter_pack_sent_count=sent,
        starter_pack_percentage=_round_half_up(sent * 100.0 / total) if total else 0,
        registered_in_srp_count=sum(1 for reference in eligible if reference.registered_in_srp),
        supplies_applied_count=sum(1 for reference in eligible if reference.supplies_applied),
        fully_staffed_count=sum(1 for reference in references if not reference.missing_roles),
        missing_roles_by_reference=missing_by_reference,
        role_gap_counts=role_gaps,
        countries=sorted({reference.country for reference in references if reference.country}),
        institutions=sorted({reference.institution for reference in references if reference.institution}),
        personnel_count=sum(len(reference.records) for reference in references),
    )


def _check_choice(value: str, *, field_name: str, allowed: Sequence[str]) -> str:
    normalized = str(value or "").strip().lower() or "all"
    if normalized not in allowed:
        raise ValueError(f"{field_name} must be one of: {', '.join(allowed)}.")
    return normalized


def _yes_no_match(flag: bool, choice: str) -> bool:
    if choice == "all":
        return True
    return flag if choice == "yes" else not flag


def filter_site_references(
    references: Sequence["SiteReference"],
    starter_pack: str = "all",
    registered_in_srp: str = "all",
    supplies_applied: str = "all",
    country: str = "",
) -> list["SiteReference"]:
    starter_choice = _check_choice(starter_pack, field_name="starter_pack", allowed=STARTER_PACK_FILTERS)
    srp_choice = _check_choice(registered_in_srp, field_name="registered_in_srp", allowed=YES_NO_FILTERS)
    supplies_choice = _check_choice(supplies_applied, field_name="supplies_applied", allowed=YES_NO_FILTERS)
    country_needle = str(country or "").strip().lower()

    out: list["SiteReference"] = []
    for reference in references:
        if starter_choice == "sent" and not reference.starter_pack:
            continue
        if starter_choice == "not-sent" and reference.starter_pack:
            continue
        if starter_choice == "no-labp" and not reference.missing_labp:
            continue
        if not _yes_no_match(reference.registered_in_srp, srp_choice):
            continue
        if not _yes_no_match(reference.supplies_applied, supplies_choice):
            continue
        if country_needle and reference.country.strip().lower() != country_needle:
            continue
        out.append(reference)
    return out
