"""
Imports every model so ``Base.metadata`` is complete.

Alembic and the test suite import this module instead of individual features.
"""
from app.platform.db.base import Base
from app.features.projects.models.project import Project, Url
from app.features.scan.models.scan import Scan, ScanStatus
from app.features.scan.models.result import Result, Severity

__all__ = ["Base", "Project", "Url", "Scan", "ScanStatus", "Result", "Severity"]
