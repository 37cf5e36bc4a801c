from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.projects.schemas.export import ExportFormat, ExportRequest
from app.features.projects.services.export import XLSX_MEDIA_TYPE, ExportService, build_workbook, export_filename
from app.features.scan.dependencies.results import get_result_query
from app.features.scan.services.results import ResultQuery
from app.platform.db.session import get_db
from app.platform.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/export", tags=["Export"])


def _reject_pdf(export_format: ExportFormat) -> None:
    if export_format == ExportFormat.pdf:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail="PDF export is not available, use format=excel",
        )


def _xlsx_response(content: bytes) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.get(
    "",
    summary="Download stored results as a spreadsheet",
)
async def export_results(
    export_format: ExportFormat = Query(ExportFormat.excel, alias="format"),
    project_id: Optional[str] = Query(None, alias="projectId"),
    scan_id: Optional[str] = Query(None, alias="scanId"),
    query: ResultQuery = Depends(get_result_query),
    db: AsyncSession = Depends(get_db),
):
    """
    scanId exports one scan; projectId exports a project with duplicates
    across its scans collapsed; neither exports everything.
    """
    _reject_pdf(export_format)

    rows = await ExportService(db).collect_rows(query, project_id=project_id, scan_id=scan_id)
    logger.info(f"Exporting {len(rows)} results (project={project_id}, scan={scan_id})")
    return _xlsx_response(build_workbook(rows))


@router.post(
    "",
    summary="Render results supplied by the client as a spreadsheet",
)
async def export_supplied_results(payload: ExportRequest):
    """
    Exports exactly the rows the dashboard is showing. organizeBySeverity
    puts the most severe findings first; screenshots are not embedded.
    """
    _reject_pdf(payload.format)

    rows = ExportService.rows_from_payload(payload.data, payload.organize_by_severity)
    logger.info(f"Exporting {len(rows)} supplied results")
    return _xlsx_response(build_workbook(rows))
