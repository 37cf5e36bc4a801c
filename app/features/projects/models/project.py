from sqlalchemy import JSON, Column, ForeignKey, String
from sqlalchemy.orm import relationship

from app.platform.db.base import BaseModel


class Project(BaseModel):
    """
    A named set of URLs scanned under one compliance configuration.

    compliance_options holds the camelCase payload sent by the dashboard
    ({wcagLevel, section508, bestPractices, experimental}) or NULL for defaults.
    """
    __tablename__ = "projects"

    name = Column(String(255), nullable=False)
    compliance_options = Column(JSON, nullable=True)

    urls = relationship(
        "Url",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Url.created_at",
    )
    scans = relationship(
        "Scan",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Scan.created_at.desc()",
    )


class Url(BaseModel):
    __tablename__ = "urls"

    url = Column(String(2048), nullable=False, unique=True, index=True)  # globally unique, one owning project
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)

    project = relationship("Project", back_populates="urls")
