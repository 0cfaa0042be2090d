"""Data-sync system model"""

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from spira_gitlab_sync.domain import utcnow
from spira_gitlab_sync.models.base import Base


class DataSyncSystem(Base):
    """Connection settings for one Spira <-> GitLab data-sync"""

    __tablename__ = "data_sync_systems"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False, index=True)

    # Spira (internal system)
    spira_url = Column(String, nullable=False)
    spira_login = Column(String, nullable=False)
    spira_api_key = Column(String, nullable=False)

    # GitLab (external system)
    # On-premise GitLab base URL; when empty the public cloud endpoint is used.
    gitlab_url = Column(String, nullable=True)
    gitlab_token = Column(String, nullable=False)
    # Group or user path that prefixes each mapped project key, e.g. "inflectra".
    gitlab_namespace = Column(String, nullable=True)

    # Sync behaviour
    time_offset_hours = Column(Integer, default=0)
    auto_map_users = Column(Boolean, default=False)
    sync_enabled = Column(Boolean, default=True)
    sync_interval_minutes = Column(Integer, default=10)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    last_sync_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<DataSyncSystem(name='{self.name}', gitlab_url='{self.gitlab_url}')>"
