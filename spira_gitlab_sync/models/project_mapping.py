"""Project mapping model"""
from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from spira_gitlab_sync.models.base import Base


class ProjectMapping(Base):
    """Spira project id <-> GitLab project key (relative to the data-sync namespace)"""

    __tablename__ = "project_mappings"
    __table_args__ = (
        UniqueConstraint("data_sync_id", "project_id", name="uq_project_mappings_project"),
    )

    id = Column(Integer, primary_key=True, index=True)
    data_sync_id = Column(Integer, ForeignKey("data_sync_systems.id"), nullable=False, index=True)
    project_id = Column(Integer, nullable=False)
    external_key = Column(String, nullable=False)

    data_sync = relationship("DataSyncSystem")

    def __repr__(self):
        return f"<ProjectMapping(PR{self.project_id} -> '{self.external_key}')>"
