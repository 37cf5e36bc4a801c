from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.scan.services.orchestrator import ScanOrchestrator, execute_scan_job
from app.features.scan.services.repository import ScanRepository
from app.features.scan.workers.dispatcher import CeleryScanDispatcher, LocalScanDispatcher, ScanDispatcher
from app.platform.config import settings
from app.platform.db.session import get_db


@lru_cache
def get_scan_dispatcher() -> ScanDispatcher:
    """
    Process-wide dispatcher picked by SCAN_DISPATCHER.

    Cached so the local backend keeps a single task registry.
    """
    if settings.SCAN_DISPATCHER == "local":
        return LocalScanDispatcher(runner=execute_scan_job)
    return CeleryScanDispatcher()


async def get_scan_orchestrator(
    db: AsyncSession = Depends(get_db),
    dispatcher: ScanDispatcher = Depends(get_scan_dispatcher),
) -> ScanOrchestrator:
    return ScanOrchestrator(ScanRepository(db), dispatcher=dispatcher)
