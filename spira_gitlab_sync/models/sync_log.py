"""Sync log model"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, Enum
from sqlalchemy.orm import relationship
import enum
from spira_gitlab_sync.models.base import Base
from spira_gitlab_sync.domain import utcnow


class SyncStatus(str, enum.Enum):
    """Sync status enumeration"""
    SUCCESS = "success"
    WARNING = "warning"
    FAILED = "failed"
    SKIPPED = "skipped"


class SyncDirection(str, enum.Enum):
    """Sync direction enumeration"""
    SPIRA_TO_GITLAB = "spira_to_gitlab"
    GITLAB_TO_SPIRA = "gitlab_to_spira"


class SyncLog(Base):
    """Log of sync operations"""

    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)

    data_sync_id = Column(Integer, ForeignKey("data_sync_systems.id"), nullable=False)
    project_id = Column(Integer, nullable=True)

    # Artifact information
    internal_id = Column(Integer, nullable=True)  # Spira incident id
    external_key = Column(String, nullable=True)  # GitLab issue iid

    # Sync details
    status = Column(Enum(SyncStatus), nullable=False)
    direction = Column(Enum(SyncDirection), nullable=True)
    message = Column(Text, nullable=True)

    # Timestamp
    created_at = Column(DateTime, default=utcnow, index=True)

    # Relationships
    data_sync = relationship("DataSyncSystem")

    def __repr__(self):
        return f"<SyncLog(status={self.status}, direction={self.direction})>"
