# Monitoring API routers, mounted by the app under /api/admin/monitoring

from fastapi import APIRouter

from .dashboard import router as dashboard_router
from .monitoring import router as monitoring_router

router = APIRouter()
router.include_router(monitoring_router, tags=['monitoring'])
router.include_router(dashboard_router, tags=['monitoring-dashboard'])
