from sqlalchemy import Column, String, Text, ForeignKey, Index, Enum, JSON
from sqlalchemy.orm import relationship
import enum

from app.platform.db.base import BaseModel


class Severity(enum.Enum):
    """axe-core impact levels"""
    critical = "critical"
    serious = "serious"
    moderate = "moderate"
    minor = "minor"


SEVERITY_RANK = {
    Severity.critical: 4,
    Severity.serious: 3,
    Severity.moderate: 2,
    Severity.minor: 1,
}


class Result(BaseModel):
    """
    A single accessibility finding of a scan.

    (url, message, element, severity) identifies the finding across rescans;
    the remaining columns may change in place.
    """
    __tablename__ = "results"

    scan_id = Column(String, ForeignKey("scans.id", ondelete="CASCADE"), nullable=False, index=True)

    url = Column(String(2048), nullable=False)
    message = Column(Text, nullable=False)
    element = Column(Text, nullable=True)  # Snippet of offending HTML
    severity = Column(Enum(Severity), nullable=False, index=True)

    impact = Column(String(32), nullable=True)
    help = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    element_path = Column(Text, nullable=True)  # CSS selector / target path
    details = Column(JSON, nullable=True)

    scan = relationship("Scan", back_populates="results")

    __table_args__ = (
        Index('idx_results_scan_severity', 'scan_id', 'severity'),
    )
