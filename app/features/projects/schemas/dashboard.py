from datetime import datetime
from typing import List, Optional

from app.platform.schemas import CamelModel


class ProjectStats(CamelModel):
    id: str
    name: str
    total_issues: int = 0
    critical_issues: int = 0
    serious_issues: int = 0
    moderate_issues: int = 0
    minor_issues: int = 0
    estimated_time: str
    last_scan: Optional[datetime] = None
    scan_status: str = "no_scans"


class DashboardOverview(CamelModel):
    total_projects: int
    total_scans: int
    total_issues: int
    critical_issues: int
    serious_issues: int
    moderate_issues: int
    minor_issues: int
    total_estimated_time: str
    average_issues_per_project: int
    last_scan_date: Optional[datetime] = None


class DashboardStats(CamelModel):
    overview: DashboardOverview
    projects: List[ProjectStats]
