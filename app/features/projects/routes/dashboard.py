from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.projects.services.dashboard import DashboardService
from app.platform.db.session import get_db
from app.platform.response import api_response

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get(
    "/stats",
    summary="Get dashboard statistics",
)
async def get_dashboard_stats(db: AsyncSession = Depends(get_db)):
    """
    Issue totals per project from each project's latest completed scan,
    with estimated fix times, plus an overview across all projects.
    """
    stats = await DashboardService(db).get_stats()
    return api_response(
        data=stats,
        message="Dashboard statistics retrieved successfully",
    )
