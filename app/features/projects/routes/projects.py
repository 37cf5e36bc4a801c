from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.projects.schemas.project import ProjectCreate, ProjectResponse, ProjectUpdate
from app.features.projects.services.project import ProjectService
from app.features.scan.dependencies.results import get_result_query
from app.features.scan.dependencies.scan import get_scan_orchestrator
from app.features.scan.services.orchestrator import ScanOrchestrator
from app.features.scan.services.repository import ScanRepository
from app.features.scan.services.results import ResultQuery, apply_query, dedupe_latest, to_paginated
from app.platform.db.session import get_db
from app.platform.response import api_response

router = APIRouter(prefix="/projects", tags=["Projects"])


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a project",
)
async def create_project(payload: ProjectCreate, db: AsyncSession = Depends(get_db)):
    """
    Create a project with up to 10 URLs.

    URLs are normalized; a URL already registered by another project is
    rejected with 409.
    """
    project = await ProjectService(db).create_project(payload)
    return api_response(
        data=ProjectResponse.model_validate(project),
        message="Project created successfully",
        status_code=status.HTTP_201_CREATED,
    )


@router.get(
    "",
    summary="List projects with their latest scan",
)
async def list_projects(db: AsyncSession = Depends(get_db)):
    projects = await ProjectService(db).list_projects()

    data = []
    for project in projects:
        item = ProjectResponse.model_validate(project)
        item.scans = item.scans[:1]
        data.append(item)

    return api_response(data=data, message="Projects retrieved successfully")


@router.get(
    "/{project_id}",
    summary="Get a project with its URLs and scans",
)
async def get_project(project_id: str, db: AsyncSession = Depends(get_db)):
    project = await ProjectService(db).get_project(project_id)
    return api_response(
        data=ProjectResponse.model_validate(project),
        message="Project retrieved successfully",
    )


@router.patch(
    "/{project_id}",
    summary="Update a project",
)
async def update_project(project_id: str, payload: ProjectUpdate, db: AsyncSession = Depends(get_db)):
    """Rename the project; when urls is sent it replaces the whole URL list."""
    project = await ProjectService(db).update_project(project_id, payload)
    return api_response(
        data=ProjectResponse.model_validate(project),
        message="Project updated successfully",
    )


@router.delete(
    "/{project_id}",
    summary="Delete a project and everything under it",
)
async def delete_project(project_id: str, db: AsyncSession = Depends(get_db)):
    await ProjectService(db).delete_project(project_id)
    return api_response(message="Project deleted successfully")


@router.post(
    "/{project_id}/rescan",
    summary="Rescan every URL of a project",
)
async def rescan_project(
    project_id: str,
    db: AsyncSession = Depends(get_db),
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator),
):
    """
    Refused with 409 while any scan of the project is pending or in progress.
    """
    response = await ProjectService(db).rescan_project(project_id, orchestrator)
    return api_response(
        data=response,
        message=f"Started rescanning {len(response.scans)} URLs",
    )


@router.get(
    "/{project_id}/results",
    summary="Get deduplicated results across a project's completed scans",
)
async def get_project_results(
    project_id: str,
    query: ResultQuery = Depends(get_result_query),
    db: AsyncSession = Depends(get_db),
):
    """
    Results of every completed scan, one row per identity key (newest wins),
    then filtered, sorted and paginated. The summary covers all matching rows.
    """
    await ProjectService(db).get_project(project_id)

    results = await ScanRepository(db).list_results(project_id=project_id, completed_only=True)
    page = apply_query(dedupe_latest(results), query)

    return api_response(
        data=to_paginated(page),
        message="Project results retrieved successfully",
    )
