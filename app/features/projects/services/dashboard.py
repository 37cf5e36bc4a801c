import math
from typing import Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.projects.models.project import Project
from app.features.projects.schemas.dashboard import DashboardOverview, DashboardStats, ProjectStats
from app.features.projects.services.fix_time import estimate_project_time
from app.features.scan.models.scan import Scan, ScanStatus


class DashboardService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _latest_completed_scans(self) -> Dict[str, Scan]:
        result = await self.db.execute(
            select(Scan)
            .where(Scan.status == ScanStatus.completed)
            .order_by(Scan.created_at.desc())
        )
        latest: Dict[str, Scan] = {}
        for scan in result.scalars().all():
            latest.setdefault(scan.project_id, scan)
        return latest

    async def get_stats(self) -> DashboardStats:
        """
        Per project, counts come from its most recent completed scan only;
        projects without one report zeros.
        """
        projects = (await self.db.execute(select(Project).order_by(Project.created_at))).scalars().all()
        latest = await self._latest_completed_scans()

        totals = {"critical": 0, "serious": 0, "moderate": 0, "minor": 0, "total": 0}
        total_scans = 0
        last_scan_date = None
        project_stats = []

        for project in projects:
            scan = latest.get(project.id)
            counts = {
                "critical": (scan.critical_issues or 0) if scan else 0,
                "serious": (scan.serious_issues or 0) if scan else 0,
                "moderate": (scan.moderate_issues or 0) if scan else 0,
                "minor": (scan.minor_issues or 0) if scan else 0,
                "total": (scan.total_issues or 0) if scan else 0,
            }

            if scan:
                total_scans += 1
                for key, value in counts.items():
                    totals[key] += value
                if last_scan_date is None or scan.created_at > last_scan_date:
                    last_scan_date = scan.created_at

            project_stats.append(
                ProjectStats(
                    id=project.id,
                    name=project.name,
                    total_issues=counts["total"],
                    critical_issues=counts["critical"],
                    serious_issues=counts["serious"],
                    moderate_issues=counts["moderate"],
                    minor_issues=counts["minor"],
                    estimated_time=estimate_project_time(
                        counts["critical"], counts["serious"], counts["moderate"], counts["minor"]
                    ),
                    last_scan=scan.created_at if scan else None,
                    scan_status=scan.status.value if scan else "no_scans",
                )
            )

        average = math.floor(totals["total"] / len(projects) + 0.5) if projects else 0
        overview = DashboardOverview(
            total_projects=len(projects),
            total_scans=total_scans,
            total_issues=totals["total"],
            critical_issues=totals["critical"],
            serious_issues=totals["serious"],
            moderate_issues=totals["moderate"],
            minor_issues=totals["minor"],
            total_estimated_time=estimate_project_time(
                totals["critical"], totals["serious"], totals["moderate"], totals["minor"]
            ),
            average_issues_per_project=average,
            last_scan_date=last_scan_date,
        )

        project_stats.sort(key=lambda stats: stats.total_issues, reverse=True)
        return DashboardStats(overview=overview, projects=project_stats)
