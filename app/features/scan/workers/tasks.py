"""
Celery tasks for accessibility scans.

The orchestrator is async; each task drives it with asyncio.run() on a
NullPool session so no connection outlives the task's event loop.
"""
import asyncio
from typing import Any, Dict, Optional

from app.features.scan.schemas.scan import ComplianceOptions
from app.features.scan.services.orchestrator import ScanOrchestrator
from app.features.scan.services.repository import ScanRepository
from app.platform.async_db_helper import AsyncSessionLocal, get_async_db
from app.platform.celery_app import celery_app
from app.platform.logger import get_logger

logger = get_logger(__name__)


async def _run_scan(
    scan_id: str,
    url: str,
    options: ComplianceOptions,
    is_rescan: bool,
    attempt_id: Optional[str] = None,
):
    async with get_async_db() as db:
        orchestrator = ScanOrchestrator(ScanRepository(db), session_factory=AsyncSessionLocal)
        return await orchestrator.run_scan(scan_id, url, options, is_rescan, attempt_id=attempt_id)


@celery_app.task(
    bind=True,
    name="app.features.scan.workers.tasks.run_accessibility_scan",
)
def run_accessibility_scan(
    self,
    scan_id: str,
    url: str,
    options: Optional[Dict[str, Any]] = None,
    is_rescan: bool = False,
    attempt_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Analyze one URL and record the outcome on its Scan.

    Not retried: run_scan() already writes a terminal status, and a retry
    would need to re-claim the scan first. A redelivered message whose
    attempt no longer owns the Scan writes nothing and reports "discarded".

    Returns:
        Dict with the scan id and its terminal status
    """
    logger.info(f"[{scan_id}] Task {self.request.id} starting {'rescan' if is_rescan else 'scan'} of {url}")
    status = asyncio.run(
        _run_scan(scan_id, url, ComplianceOptions.from_payload(options), is_rescan, attempt_id)
    )
    outcome = status.value if status is not None else "discarded"
    logger.info(f"[{scan_id}] Task {self.request.id} finished with status {outcome}")
    return {"scan_id": scan_id, "status": outcome}
