from fastapi import APIRouter

from app.features.projects.routes.dashboard import router as dashboard_router
from app.features.projects.routes.export import router as export_router
from app.features.projects.routes.projects import router as projects_router
from app.features.scan.routes.scans import router as scans_router

api_router = APIRouter()

# Register all feature routes
api_router.include_router(projects_router)
api_router.include_router(scans_router)
api_router.include_router(dashboard_router)
api_router.include_router(export_router)
