"""
Project Schemas

Request/response models for projects and their rescans.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from app.features.scan.schemas.scan import ComplianceOptions, ScanResponse
from app.platform.schemas import CamelModel


# ============================================================================
# Requests
# ============================================================================

class ProjectCreate(CamelModel):
    # name is checked by the service so a missing one answers 400, not 422
    name: Optional[str] = None
    urls: Optional[List[str]] = None
    compliance_options: Optional[ComplianceOptions] = None

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Marketing site",
                "urls": ["https://example.com", "https://example.com/pricing"],
                "complianceOptions": {"wcagLevel": "aa", "section508": False, "bestPractices": True}
            }
        }


class ProjectUpdate(ProjectCreate):
    """urls, when given, replace the project's whole URL set."""


# ============================================================================
# Responses
# ============================================================================

class UrlResponse(CamelModel):
    id: str
    url: str
    project_id: str
    created_at: datetime


class ProjectResponse(CamelModel):
    id: str
    name: str
    compliance_options: Optional[ComplianceOptions] = None
    urls: List[UrlResponse] = Field(default_factory=list)
    scans: List[ScanResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class RescanItem(CamelModel):
    id: str
    url: str
    status: Literal["rescanning", "pending"]


class RescanResponse(CamelModel):
    scans: List[RescanItem]

