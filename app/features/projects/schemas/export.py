from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.platform.schemas import CamelModel


class ExportFormat(str, Enum):
    excel = "excel"
    pdf = "pdf"


class ExportData(CamelModel):
    """Rows as the dashboard already holds them (camelCase result objects)."""
    results: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Optional[Dict[str, Any]] = None


class ExportRequest(CamelModel):
    format: ExportFormat = ExportFormat.excel
    data: Optional[ExportData] = None
    include_screenshots: bool = False
    organize_by_severity: bool = False
