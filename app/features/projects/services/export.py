"""
Spreadsheet export of accessibility results.

Two sheets: "Summary" (one row per URL with issue counts and an estimated
fix time) and "Detailed Results" (one row per finding).
"""
import io
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.projects.models.project import Project
from app.features.projects.schemas.export import ExportData
from app.features.projects.services.fix_time import finding_fix_minutes, format_duration
from app.features.scan.models.result import SEVERITY_RANK, Result, Severity
from app.features.scan.services.repository import ScanRepository
from app.features.scan.services.results import ResultQuery, dedupe_latest, filter_results, sort_results
from app.platform.db.base import utcnow
from app.platform.exceptions import ValidationError
from app.platform.logger import get_logger

logger = get_logger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
ELEMENT_MAX_LENGTH = 500
HEADER_FONT = Font(bold=True)
HEADER_FILL = PatternFill(fill_type="solid", fgColor="FFE0E0E0")

SUMMARY_COLUMNS = (
    ("URL", 50),
    ("Critical Issues", 15),
    ("Serious Issues", 15),
    ("Moderate Issues", 15),
    ("Minor Issues", 15),
    ("Total Issues", 15),
    ("Est. Fix Time", 15),
)
DETAIL_COLUMNS = (
    ("Project", 20),
    ("URL", 40),
    ("Issue ID", 20),
    ("Message", 40),
    ("Help Text", 40),
    ("Element", 50),
    ("Element Path", 50),
    ("Severity", 15),
    ("Est. Fix Time", 15),
    ("Tags", 30),
    ("Created At", 20),
)

_RANK_BY_VALUE = {severity.value: rank for severity, rank in SEVERITY_RANK.items()}


@dataclass
class ExportRow:
    url: str
    message: str
    severity: str
    id: Optional[str] = None
    project: Optional[str] = None
    help: Optional[str] = None
    element: Optional[str] = None
    element_path: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: Union[datetime, str, None] = None

    @property
    def fix_minutes(self) -> float:
        return finding_fix_minutes(self.severity, self.message, self.tags)

    @classmethod
    def from_result(cls, result: Result, project_name: Optional[str] = None) -> "ExportRow":
        return cls(
            url=result.url,
            message=result.message,
            severity=result.severity.value if isinstance(result.severity, Severity) else str(result.severity),
            id=result.id,
            project=project_name,
            help=result.help,
            element=result.element,
            element_path=result.element_path,
            tags=list(result.tags or []),
            created_at=result.created_at,
        )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ExportRow":
        scan = payload.get("scan") or {}
        project = scan.get("project") or {}
        return cls(
            url=str(payload.get("url", "")),
            message=str(payload.get("message", "")),
            severity=str(payload.get("severity", "")).lower(),
            id=payload.get("id"),
            project=project.get("name"),
            help=payload.get("help"),
            element=payload.get("element"),
            element_path=payload.get("elementPath") or payload.get("element_path"),
            tags=list(payload.get("tags") or []),
            created_at=payload.get("createdAt") or payload.get("created_at"),
        )


def _clean(value: Any) -> Any:
    # openpyxl refuses control characters that show up in scraped markup
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _add_sheet(workbook: Workbook, title: str, columns, rows: Iterable[List[Any]], first: bool = False):
    sheet = workbook.active if first else workbook.create_sheet()
    sheet.title = title
    sheet.append([header for header, _ in columns])
    for index, (_, width) in enumerate(columns, start=1):
        sheet.column_dimensions[get_column_letter(index)].width = width
    for cell in sheet[1]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
    for row in rows:
        sheet.append([_clean(value) for value in row])
    return sheet


def _summary_rows(rows: List[ExportRow]) -> List[List[Any]]:
    per_url: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        entry = per_url.setdefault(
            row.url,
            {"critical": 0, "serious": 0, "moderate": 0, "minor": 0, "total": 0, "minutes": 0.0},
        )
        if row.severity in entry:
            entry[row.severity] += 1
        entry["total"] += 1
        entry["minutes"] += row.fix_minutes

    return [
        [url, e["critical"], e["serious"], e["moderate"], e["minor"], e["total"], format_duration(e["minutes"])]
        for url, e in per_url.items()
    ]


def _detail_row(row: ExportRow) -> List[Any]:
    element = row.element
    if element and len(element) > ELEMENT_MAX_LENGTH:
        element = element[:ELEMENT_MAX_LENGTH] + "..."
    created_at = row.created_at or utcnow()
    return [
        row.project or "Unknown Project",
        row.url,
        row.id,
        row.message,
        row.help or "N/A",
        element or "N/A",
        row.element_path or "N/A",
        row.severity,
        format_duration(row.fix_minutes),
        ", ".join(row.tags) if row.tags else "N/A",
        created_at.isoformat() if isinstance(created_at, datetime) else str(created_at),
    ]


def build_workbook(rows: List[ExportRow]) -> bytes:
    workbook = Workbook()
    _add_sheet(workbook, "Summary", SUMMARY_COLUMNS, _summary_rows(rows), first=True)
    _add_sheet(workbook, "Detailed Results", DETAIL_COLUMNS, (_detail_row(row) for row in rows))

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def export_filename() -> str:
    return f"accessibility-report-{int(time.time() * 1000)}.xlsx"


def order_by_severity(rows: List[ExportRow]) -> List[ExportRow]:
    return sorted(rows, key=lambda row: _RANK_BY_VALUE.get(row.severity, 0), reverse=True)


class ExportService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = ScanRepository(db)

    async def _project_names(self) -> Dict[str, str]:
        result = await self.db.execute(select(Project.id, Project.name))
        return {project_id: name for project_id, name in result.all()}

    async def collect_rows(
        self,
        query: ResultQuery,
        project_id: Optional[str] = None,
        scan_id: Optional[str] = None,
    ) -> List[ExportRow]:
        """
        Results to export: one scan, one project (deduplicated across its
        scans) or everything, filtered and sorted like the results views.

        Raises:
            ValidationError: nothing matched
        """
        results = await self.repo.list_results(
            scan_id=scan_id,
            project_id=None if scan_id else project_id,
        )
        if project_id and not scan_id:
            before = len(results)
            results = dedupe_latest(results)
            logger.info(f"Export: deduplicated {before} results to {len(results)} unique results")

        results = filter_results(
            results,
            search=query.search,
            severity_filters=query.severity_filters,
            compliance_filters=query.compliance_filters,
        )
        if not results:
            raise ValidationError("No accessibility results found. Please run some scans first.")

        names = await self._project_names()
        return [
            ExportRow.from_result(result, names.get(result.scan.project_id))
            for result in sort_results(results, query.sort_by)
        ]

    @staticmethod
    def rows_from_payload(data: Optional[ExportData], organize_by_severity: bool = False) -> List[ExportRow]:
        if data is None or not data.results or data.summary is None:
            raise ValidationError("No data provided for export")
        rows = [ExportRow.from_payload(item) for item in data.results]
        return order_by_severity(rows) if organize_by_severity else rows
