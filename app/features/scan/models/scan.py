from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey, Index, Enum
from sqlalchemy.orm import relationship
import enum

from app.platform.db.base import BaseModel


class ScanStatus(enum.Enum):
    """Scan status state machine"""
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


# A scan in one of these states may be (re)claimed for a new analysis attempt
CLAIMABLE_STATUSES = (ScanStatus.pending, ScanStatus.completed, ScanStatus.failed)
ACTIVE_STATUSES = (ScanStatus.pending, ScanStatus.in_progress)


class Scan(BaseModel):
    """
    One scan record per project URL.

    A rescan reuses the record: status goes back to in_progress and the
    summary columns are cleared until the new attempt finishes.
    """
    __tablename__ = "scans"

    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String(2048), nullable=False)

    status = Column(Enum(ScanStatus), default=ScanStatus.pending, nullable=False, index=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    # Issue counts (denormalized from the winning analysis summary)
    total_issues = Column(Integer, nullable=True)
    critical_issues = Column(Integer, nullable=True)
    serious_issues = Column(Integer, nullable=True)
    moderate_issues = Column(Integer, nullable=True)
    minor_issues = Column(Integer, nullable=True)

    analysis_method = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)

    # Celery task id or local task name owning the current attempt
    task_id = Column(String(128), nullable=True, index=True)
    # Token written by each claim; background writes only land while it still matches
    attempt_id = Column(String(64), nullable=True)

    project = relationship("Project", back_populates="scans")
    results = relationship(
        "Result",
        back_populates="scan",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="select",
    )

    __table_args__ = (
        Index('idx_scans_project_status', 'project_id', 'status'),
    )
