from site_coverage_app.sites.aggregation import aggregate_site_references
from site_coverage_app.sites.coverage import (
    CoverageSummary,
    RoleCoverage,
    analyze_roles,
    filter_site_references,
    summarize_coverage,
)
from site_coverage_app.sites.export import export_labp_csv, labp_export_filename
from site_coverage_app.sites.history import StatusHistoryRecorder
from site_coverage_app.sites.models import (
    SitePersonnelRecord,
    SiteReference,
    SiteTrackingSession,
    StatusHistoryRecord,
)
from site_coverage_app.sites.status import PendingToggle, SiteStatusEngine, ToggleResult, ToggleStatus

__all__ = [
    "CoverageSummary",
    "PendingToggle",
    "RoleCoverage",
    "SitePersonnelRecord",
    "SiteReference",
    "SiteStatusEngine",
    "SiteTrackingSession",
    "StatusHistoryRecord",
    "StatusHistoryRecorder",
    "ToggleResult",
    "ToggleStatus",
    "aggregate_site_references",
    "analyze_roles",
    "export_labp_csv",
    "filter_site_references",
    "labp_export_filename",
    "summarize_coverage",
]
