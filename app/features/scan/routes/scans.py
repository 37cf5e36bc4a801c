from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.scan.dependencies.results import get_result_query
from app.features.scan.dependencies.scan import get_scan_orchestrator
from app.features.scan.schemas.scan import ScanCreateRequest, ScanResponse
from app.features.scan.services.orchestrator import ScanOrchestrator
from app.features.scan.services.repository import ScanRepository
from app.features.scan.services.results import ResultQuery, apply_query, to_paginated
from app.platform.db.session import get_db
from app.platform.exceptions import NotFoundError, ValidationError
from app.platform.logger import get_logger
from app.platform.response import api_response
from app.platform.utils.url_validator import validate_url

logger = get_logger(__name__)

router = APIRouter(prefix="/scans", tags=["Scans"])


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Start a scan or rescan",
)
async def start_scan(
    payload: ScanCreateRequest,
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator),
):
    """
    Start analyzing a URL in the background.

    - Without scanId a new scan is created under projectId.
    - With scanId the existing scan of projectId is re-run in place and its results are
      reconciled with the new findings.

    Returns immediately with the scan in_progress; poll GET /scans/{id}.
    """
    is_valid, url, error_message = validate_url(payload.url)
    if not is_valid:
        raise ValidationError(f"Invalid URL: {error_message}")

    scan = await orchestrator.start_scan(payload.to_scan_request(url))
    logger.info(f"Scan {scan.id} started for {url} (task {scan.task_id})")

    return api_response(
        data=ScanResponse.model_validate(scan),
        message="Rescan started" if payload.scan_id else "Scan started",
        status_code=status.HTTP_201_CREATED,
    )


@router.get(
    "/{scan_id}",
    summary="Get scan status and issue counts",
)
async def get_scan(scan_id: str, db: AsyncSession = Depends(get_db)):
    scan = await ScanRepository(db).get_scan(scan_id)
    if scan is None:
        raise NotFoundError("Scan not found")

    return api_response(
        data=ScanResponse.model_validate(scan),
        message="Scan retrieved successfully",
    )


@router.get(
    "/{scan_id}/results",
    summary="Get paginated results of a scan",
)
async def get_scan_results(
    scan_id: str,
    query: ResultQuery = Depends(get_result_query),
    db: AsyncSession = Depends(get_db),
):
    repo = ScanRepository(db)
    if await repo.get_scan(scan_id) is None:
        raise NotFoundError("Scan not found")

    results = await repo.list_results(scan_id=scan_id)
    page = apply_query(results, query)

    return api_response(
        data=to_paginated(page),
        message="Scan results retrieved successfully",
    )
