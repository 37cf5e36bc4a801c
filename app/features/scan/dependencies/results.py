from typing import List, Optional

from fastapi import Query

from app.features.scan.services.results import ResultQuery, SortBy, split_filters
from app.platform.config import settings


def get_result_query(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(
        settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, alias="pageSize", description="Items per page"
    ),
    sort_by: str = Query(SortBy.severity.value, alias="sortBy", description="severity, url or date"),
    search: str = Query("", description="Case-insensitive match on message, url, element and help"),
    severity_filters: Optional[List[str]] = Query(None, alias="severityFilters"),
    compliance_filters: Optional[List[str]] = Query(None, alias="complianceFilters"),
) -> ResultQuery:
    """Filters may be repeated or comma-separated."""
    return ResultQuery(
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        search=search.strip(),
        severity_filters=split_filters(severity_filters),
        compliance_filters=split_filters(compliance_filters),
    )
