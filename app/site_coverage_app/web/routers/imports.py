from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from site_coverage_app.constants import ImportKind
from site_coverage_app.imports.config import template_csv
from site_coverage_app.imports.service import run_import
from site_coverage_app.web.errors import ApiError, ERROR_CODE_LOCKED
from site_coverage_app.web.identity import require_actor
from site_coverage_app.web.runtime import get_config, get_store


router = APIRouter(prefix="/api")


def decode_upload_bytes(raw_bytes: bytes) -> str:
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            return raw_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise ValueError("Could not decode upload content.")


def ensure_writable(config) -> None:
    if config.locked_mode:
        raise ApiError(status_code=403, code=ERROR_CODE_LOCKED, message="Application is in locked mode. Writes are disabled.")


@router.get("/imports/{kind}/template")
def import_template(kind: str):
    import_kind = ImportKind.parse(kind)
    return PlainTextResponse(
        template_csv(import_kind),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{import_kind.value}-template.csv"'},
    )


@router.post("/projects/{project_id}/imports/{kind}")
async def import_csv(project_id: str, kind: str, request: Request):
    config = get_config()
    ensure_writable(config)
    actor = require_actor(request, config)
    import_kind = ImportKind.parse(kind)
    text = decode_upload_bytes(await request.body())
    report = await run_in_threadpool(
        run_import,
        import_kind,
        text,
        project_id,
        actor,
        store=get_store(),
        config=config,
    )
    return {"ok": True, "report": report.as_dict()}
