"""
Scan Schemas

Request/response models for the scan endpoints and the normalized shapes
exchanged between analysis strategies, the orchestrator and reconciliation.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import Field, field_validator

from app.features.scan.models.result import Severity
from app.features.scan.models.scan import ScanStatus
from app.platform.schemas import CamelModel


# ============================================================================
# Compliance options
# ============================================================================

class WcagLevel(str, Enum):
    a = "a"
    aa = "aa"
    aaa = "aaa"


_WCAG_LEVEL_TAGS = {
    WcagLevel.a: ["wcag2a", "wcag21a"],
    WcagLevel.aa: ["wcag2a", "wcag21a", "wcag2aa", "wcag21aa", "wcag22aa"],
    WcagLevel.aaa: ["wcag2a", "wcag21a", "wcag2aa", "wcag21aa", "wcag22aa", "wcag2aaa"],
}


class ComplianceOptions(CamelModel):
    """Which rule sets apply to a scan."""
    wcag_level: WcagLevel = WcagLevel.aa
    section508: bool = False
    best_practices: bool = True
    experimental: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "wcagLevel": "aa",
                "section508": False,
                "bestPractices": True,
                "experimental": False
            }
        }

    @field_validator("wcag_level", mode="before")
    @classmethod
    def _lowercase_level(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def rule_tags(self) -> List[str]:
        """axe-style tags a finding must carry (any of) to be reported."""
        tags = list(_WCAG_LEVEL_TAGS[self.wcag_level])
        if self.section508:
            tags.append("section508")
        if self.best_practices:
            tags.append("best-practice")
        if self.experimental:
            tags.append("experimental")
        return tags

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "ComplianceOptions":
        if not payload:
            return cls()
        return cls.model_validate(payload)


# ============================================================================
# Normalized analysis output
# ============================================================================

IdentityKey = Tuple[str, str, str, str]


def identity_key(url: str, message: str, element: Optional[str], severity) -> IdentityKey:
    """(url, message, element or "", severity): the same finding across scan runs."""
    severity_value = severity.value if isinstance(severity, Severity) else str(severity)
    return (url, message, element or "", severity_value)


class FindingData(CamelModel):
    """One finding as produced by an analysis strategy, before persistence."""
    url: str
    message: str
    element: Optional[str] = None
    severity: Severity
    impact: Optional[str] = None
    help: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    element_path: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    def identity_key(self) -> IdentityKey:
        return identity_key(self.url, self.message, self.element, self.severity)


class AnalysisSummary(CamelModel):
    critical: int = 0
    serious: int = 0
    moderate: int = 0
    minor: int = 0
    total: int = 0


class AnalysisResult(CamelModel):
    results: List[FindingData] = Field(default_factory=list)
    summary: AnalysisSummary = Field(default_factory=AnalysisSummary)


def summarize(findings) -> AnalysisSummary:
    """Count findings per severity; works on FindingData and Result rows alike."""
    counts = {severity.value: 0 for severity in Severity}
    total = 0
    for finding in findings:
        severity = finding.severity.value if isinstance(finding.severity, Severity) else str(finding.severity)
        if severity in counts:
            counts[severity] += 1
        total += 1
    return AnalysisSummary(total=total, **counts)


# ============================================================================
# Scan requests
# ============================================================================

class NewScanRequest(CamelModel):
    """First scan of a URL: a new Scan record is created."""
    kind: Literal["new"] = "new"
    project_id: str
    url: str
    options: ComplianceOptions = Field(default_factory=ComplianceOptions)


class RescanRequest(CamelModel):
    """Re-run analysis on an existing Scan record in place."""
    kind: Literal["rescan"] = "rescan"
    scan_id: str
    url: str
    options: ComplianceOptions = Field(default_factory=ComplianceOptions)
    # When given, the scan must belong to this project
    project_id: Optional[str] = None


ScanRequest = Union[NewScanRequest, RescanRequest]


class ScanCreateRequest(CamelModel):
    """Body of POST /scans. scanId turns the call into a rescan."""
    project_id: str
    url: str
    compliance_options: Optional[ComplianceOptions] = None
    scan_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "projectId": "0192f0a4-6d1e-7c3a-9b1e-2f4d5a6b7c8d",
                "url": "https://example.com",
                "complianceOptions": {"wcagLevel": "aa", "bestPractices": True}
            }
        }

    def to_scan_request(self, url: str) -> ScanRequest:
        options = self.compliance_options or ComplianceOptions()
        if self.scan_id:
            return RescanRequest(scan_id=self.scan_id, project_id=self.project_id, url=url, options=options)
        return NewScanRequest(project_id=self.project_id, url=url, options=options)


# ============================================================================
# Responses
# ============================================================================

class ScanResponse(CamelModel):
    id: str
    project_id: str
    url: str
    status: ScanStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_issues: Optional[int] = None
    critical_issues: Optional[int] = None
    serious_issues: Optional[int] = None
    moderate_issues: Optional[int] = None
    minor_issues: Optional[int] = None
    analysis_method: Optional[str] = None
    error_message: Optional[str] = None
    task_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ResultResponse(CamelModel):
    id: str
    scan_id: str
    url: str
    message: str
    element: Optional[str] = None
    severity: Severity
    impact: Optional[str] = None
    help: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    element_path: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class ResultScanInfo(CamelModel):
    id: str
    created_at: datetime
    project_id: str


class ResultWithScan(ResultResponse):
    scan: Optional[ResultScanInfo] = None


class PaginatedResults(CamelModel):
    """One page of results plus the severity summary of every matching row."""
    results: List[ResultWithScan]
    summary: AnalysisSummary
    total: int
    page: int
    page_size: int
    total_pages: int


# ============================================================================
# Reconciliation
# ============================================================================

class ResultPatch(CamelModel):
    """Column changes for one persisted result, keyed by its id."""
    id: str
    changes: Dict[str, Any]


class ResultDiff(CamelModel):
    to_add: List[FindingData] = Field(default_factory=list)
    to_remove: List[str] = Field(default_factory=list)
    to_update: List[ResultPatch] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_add or self.to_remove or self.to_update)
