from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from site_coverage_app.cra import list_cra_members, summarize_cra_members
from site_coverage_app.sites.coverage import filter_site_references, summarize_coverage
from site_coverage_app.sites.export import export_labp_csv, labp_export_filename
from site_coverage_app.sites.models import as_flag
from site_coverage_app.sites.status import ToggleStatus
from site_coverage_app.web.identity import require_actor
from site_coverage_app.web.routers.imports import ensure_writable
from site_coverage_app.web.runtime import get_config, get_engine, get_store


router = APIRouter(prefix="/api/projects/{project_id}")


def _parse_flag_value(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.strip().lower() in {"true", "false", "yes", "no", "1", "0"}:
        return as_flag(raw)
    raise ValueError("value must be a boolean.")


@router.get("/site-references")
def site_references(
    project_id: str,
    starter_pack: str = "all",
    registered_in_srp: str = "all",
    supplies_applied: str = "all",
    country: str = "",
):
    engine = get_engine()
    references = engine.site_references(engine.open_session(project_id))
    filtered = filter_site_references(
        references,
        starter_pack=starter_pack,
        registered_in_srp=registered_in_srp,
        supplies_applied=supplies_applied,
        country=country,
    )
    return {
        "ok": True,
        "project_id": project_id,
        "total": len(references),
        "count": len(filtered),
        "site_references": [reference.as_dict() for reference in filtered],
    }


@router.get("/coverage")
def coverage(project_id: str):
    engine = get_engine()
    references = engine.site_references(engine.open_session(project_id))
    return {"ok": True, "project_id": project_id, "coverage": summarize_coverage(references).as_dict()}


@router.post("/site-references/{reference_number}/status")
async def toggle_status(project_id: str, reference_number: str, request: Request):
    config = get_config()
    ensure_writable(config)
    actor = require_actor(request, config)
    payload = await request.json()
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object with 'field' and 'value'.")
    field_name = str(payload.get("field") or "").strip()
    new_value = _parse_flag_value(payload.get("value"))

    engine = get_engine()
    session = await run_in_threadpool(engine.open_session, project_id)
    result = await run_in_threadpool(engine.toggle, session, reference_number, field_name, new_value, actor)
    if result.status != ToggleStatus.CONFIRMED and result.error is not None:
        raise result.error
    return {
        "ok": True,
        "status": result.status.value,
        "reference_number": result.reference_number,
        "field": result.field,
        "old_value": result.old_value,
        "new_value": result.new_value,
        "history_warning": result.history_warning,
        "history": result.history_record.as_dict() if result.history_record else None,
    }


@router.get("/status-history")
def status_history(
    project_id: str,
    site_id: str | None = None,
    reference_number: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    recent: bool = False,
):
    engine = get_engine()
    effective_limit = limit if limit is not None else (get_config().history_recent_limit if recent else None)
    entries = engine.recorder.query(
        project_id,
        site_id=site_id,
        reference_number=reference_number,
        limit=effective_limit,
    )
    return {"ok": True, "project_id": project_id, "history": [entry.as_dict() for entry in entries]}


@router.get("/labp-export")
def labp_export(
    project_id: str,
    refs: list[str] | None = Query(default=None),
    sponsor: str = "",
    project_number: str = "",
    protocol_number: str = "",
):
    engine = get_engine()
    references = engine.site_references(engine.open_session(project_id))
    project = {"sponsor": sponsor, "project_number": project_number, "protocol_number": protocol_number}
    content = export_labp_csv(references, refs or [], project=project)
    filename = labp_export_filename(project, project_id, datetime.now(timezone.utc).date())
    return PlainTextResponse(
        content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/cra-summary")
def cra_summary(project_id: str):
    members = list_cra_members(get_store(), project_id)
    return {"ok": True, "project_id": project_id, "summary": summarize_cra_members(members).as_dict()}
