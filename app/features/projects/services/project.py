from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.features.projects.models.project import Project, Url
from app.features.projects.schemas.project import ProjectCreate, ProjectUpdate, RescanItem, RescanResponse
from app.features.scan.models.scan import ACTIVE_STATUSES
from app.features.scan.schemas.scan import ComplianceOptions, NewScanRequest, RescanRequest
from app.features.scan.services.orchestrator import ScanOrchestrator
from app.platform.config import settings
from app.platform.exceptions import ConflictError, NotFoundError, ValidationError
from app.platform.logger import get_logger
from app.platform.utils.url_validator import validate_url

logger = get_logger(__name__)


class ProjectService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _query(self):
        return (
            select(Project)
            .options(selectinload(Project.urls), selectinload(Project.scans))
            .execution_options(populate_existing=True)
        )

    async def list_projects(self) -> List[Project]:
        result = await self.db.execute(self._query().order_by(Project.created_at.desc()))
        return list(result.scalars().all())

    async def get_project(self, project_id: str) -> Project:
        result = await self.db.execute(self._query().where(Project.id == project_id))
        project = result.scalar_one_or_none()
        if project is None:
            raise NotFoundError("Project not found")
        return project

    def _validate(self, payload: ProjectCreate) -> Tuple[str, Optional[List[str]]]:
        name = (payload.name or "").strip()
        if not name:
            raise ValidationError("Project name is required")

        if payload.urls is None:
            return name, None

        if len(payload.urls) > settings.MAX_URLS_PER_PROJECT:
            raise ValidationError(
                f"Maximum {settings.MAX_URLS_PER_PROJECT} URLs allowed per project for performance reasons"
            )

        urls: List[str] = []
        for raw in payload.urls:
            is_valid, normalized, error = validate_url(raw)
            if not is_valid:
                raise ValidationError(f"Invalid URL: {error}", data={"url": raw})
            if normalized not in urls:
                urls.append(normalized)
        return name, urls

    async def _ensure_urls_available(self, urls: List[str], project_id: Optional[str] = None) -> None:
        if not urls:
            return
        result = await self.db.execute(select(Url).where(Url.url.in_(urls)))
        taken = [row.url for row in result.scalars().all() if row.project_id != project_id]
        if taken:
            raise ConflictError(
                f"URL already belongs to another project: {', '.join(taken)}",
                data={"urls": taken},
            )

    async def create_project(self, payload: ProjectCreate) -> Project:
        name, urls = self._validate(payload)
        await self._ensure_urls_available(urls or [])

        project = Project(
            name=name,
            compliance_options=payload.compliance_options.to_payload() if payload.compliance_options else None,
            urls=[Url(url=url) for url in urls or []],
        )
        self.db.add(project)
        await self.db.commit()

        logger.info(f"Created project {project.id} ({name}) with {len(urls or [])} URLs")
        return await self.get_project(project.id)

    async def update_project(self, project_id: str, payload: ProjectUpdate) -> Project:
        project = await self.get_project(project_id)
        name, urls = self._validate(payload)

        project.name = name
        if payload.compliance_options is not None:
            project.compliance_options = payload.compliance_options.to_payload()

        if urls is not None:
            await self._ensure_urls_available(urls, project_id=project.id)
            # Reuse rows for URLs that stay so the unique index never sees a duplicate
            current = {row.url: row for row in project.urls}
            project.urls = [current.get(url) or Url(url=url) for url in urls]

        await self.db.commit()
        logger.info(f"Updated project {project_id}")
        return await self.get_project(project_id)

    async def delete_project(self, project_id: str) -> None:
        project = await self.get_project(project_id)
        await self.db.delete(project)
        await self.db.commit()
        logger.info(f"Deleted project {project_id}")

    async def rescan_project(self, project_id: str, orchestrator: ScanOrchestrator) -> RescanResponse:
        """
        Start a scan for every URL of the project.

        A URL that was scanned before reuses its latest Scan (rescan); a URL
        without history gets a new one. Refused while any scan of the project
        is still pending or in progress.
        """
        project = await self.get_project(project_id)

        if not project.urls:
            raise ValidationError("Project has no URLs to scan")

        active = [scan for scan in project.scans if scan.status in ACTIVE_STATUSES]
        if active:
            logger.warning(f"Rescan of project {project_id} refused, {len(active)} scans still active")
            raise ConflictError(
                "Cannot rescan while there are pending or in-progress scans. Please wait for them to complete.",
                data={"activeScans": [scan.id for scan in active]},
            )

        options = ComplianceOptions.from_payload(project.compliance_options)

        # project.scans is newest first, so the first hit per url is the latest
        latest_by_url = {}
        for scan in project.scans:
            latest_by_url.setdefault(scan.url, scan)

        url_values = [row.url for row in project.urls]
        items = []
        for url in url_values:
            previous = latest_by_url.get(url)
            if previous is not None:
                scan = await orchestrator.start_scan(RescanRequest(scan_id=previous.id, project_id=project_id, url=url, options=options))
                items.append(RescanItem(id=scan.id, url=url, status="rescanning"))
            else:
                scan = await orchestrator.start_scan(NewScanRequest(project_id=project_id, url=url, options=options))
                items.append(RescanItem(id=scan.id, url=url, status="pending"))

        logger.info(f"Started rescanning {len(items)} URLs for project {project_id}")
        return RescanResponse(scans=items)
