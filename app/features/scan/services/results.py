"""
Filtering, ordering and paging of stored results.

Shared by the scan results endpoint, the project results aggregation and the
export; everything here works on in-memory rows after they are loaded.
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from app.features.scan.models.result import SEVERITY_RANK, Result, Severity
from app.features.scan.schemas.scan import (
    AnalysisSummary,
    IdentityKey,
    PaginatedResults,
    ResultWithScan,
    identity_key,
    summarize,
)


class SortBy(str, Enum):
    severity = "severity"
    url = "url"
    date = "date"


def split_filters(values: Optional[Iterable[str]]) -> List[str]:
    """Accepts repeated query params, comma-separated ones, or both."""
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    items = []
    for value in values:
        items.extend(part.strip() for part in value.split(",") if part.strip())
    return items


@dataclass
class ResultQuery:
    page: int = 1
    page_size: int = 10
    sort_by: str = SortBy.severity
    search: str = ""
    severity_filters: List[str] = field(default_factory=list)
    compliance_filters: List[str] = field(default_factory=list)


@dataclass
class ResultPage:
    results: List[Result]
    summary: AnalysisSummary
    total: int
    page: int
    page_size: int
    total_pages: int


_RANK_BY_VALUE = {severity.value: rank for severity, rank in SEVERITY_RANK.items()}


def _severity_value(result: Result) -> str:
    return result.severity.value if isinstance(result.severity, Severity) else str(result.severity)


def dedupe_latest(results: Iterable[Result]) -> List[Result]:
    """One row per identity key, keeping the most recently created one."""
    latest: Dict[IdentityKey, Result] = {}
    for result in results:
        key = identity_key(result.url, result.message, result.element, result.severity)
        current = latest.get(key)
        if current is None or result.created_at > current.created_at:
            latest[key] = result
    return list(latest.values())


def _matches_search(result: Result, needle: str) -> bool:
    haystacks = (result.message, result.url, result.element, result.help)
    return any(needle in value.lower() for value in haystacks if value)


def filter_results(
    results: Iterable[Result],
    search: str = "",
    severity_filters: Sequence[str] = (),
    compliance_filters: Sequence[str] = (),
) -> List[Result]:
    filtered = list(results)

    if search:
        needle = search.lower()
        filtered = [r for r in filtered if _matches_search(r, needle)]

    if severity_filters:
        wanted = {s.lower() for s in severity_filters}
        filtered = [r for r in filtered if _severity_value(r) in wanted]

    if compliance_filters:
        wanted_tags = set(compliance_filters)
        filtered = [r for r in filtered if any(tag in wanted_tags for tag in (r.tags or []))]

    return filtered


def sort_results(results: Iterable[Result], sort_by: str = SortBy.severity) -> List[Result]:
    """
    severity: most severe first, newest first within a level
    url:      alphabetical
    date (and anything unknown): newest first
    """
    if sort_by == SortBy.severity:
        return sorted(
            results,
            key=lambda r: (_RANK_BY_VALUE.get(_severity_value(r), 0), r.created_at),
            reverse=True,
        )
    if sort_by == SortBy.url:
        return sorted(results, key=lambda r: r.url)
    return sorted(results, key=lambda r: r.created_at, reverse=True)


def paginate(results: Sequence[Result], query: ResultQuery) -> ResultPage:
    """Summary covers every filtered row, not just the returned page."""
    total = len(results)
    start = (query.page - 1) * query.page_size
    return ResultPage(
        results=list(results[start:start + query.page_size]),
        summary=summarize(results),
        total=total,
        page=query.page,
        page_size=query.page_size,
        total_pages=math.ceil(total / query.page_size) if query.page_size else 0,
    )


def apply_query(results: Iterable[Result], query: ResultQuery) -> ResultPage:
    filtered = filter_results(
        results,
        search=query.search,
        severity_filters=query.severity_filters,
        compliance_filters=query.compliance_filters,
    )
    return paginate(sort_results(filtered, query.sort_by), query)


def to_paginated(page: ResultPage) -> PaginatedResults:
    """Rows must have their scan relationship loaded."""
    return PaginatedResults(
        results=[ResultWithScan.model_validate(result) for result in page.results],
        summary=page.summary,
        total=page.total,
        page=page.page,
        page_size=page.page_size,
        total_pages=page.total_pages,
    )
