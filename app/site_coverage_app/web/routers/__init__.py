from fastapi import APIRouter

from site_coverage_app.web.routers.api import router as api_router
from site_coverage_app.web.routers.imports import router as imports_router
from site_coverage_app.web.routers.sites import router as sites_router


router = APIRouter()
router.include_router(api_router)
router.include_router(imports_router)
router.include_router(sites_router)
