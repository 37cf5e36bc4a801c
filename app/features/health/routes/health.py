from fastapi import APIRouter, Depends, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.scan.dependencies.scan import get_scan_dispatcher
from app.features.scan.workers.dispatcher import ScanDispatcher
from app.platform.config import settings
from app.platform.db.session import get_db
from app.platform.logger import get_logger
from app.platform.response import api_response

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health", tags=["health"])
async def health_check(
    db: AsyncSession = Depends(get_db),
    dispatcher: ScanDispatcher = Depends(get_scan_dispatcher),
):
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check could not reach the database: {e}")
        return api_response(
            data={"status": "degraded", "service": settings.APP_NAME, "database": "unreachable"},
            message="Database unreachable",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return api_response(
        data={
            "status": "ok",
            "service": settings.APP_NAME,
            "database": "ok",
            "dispatcher": dispatcher.backend,
        },
        message="Service is healthy",
        status_code=status.HTTP_200_OK,
    )
