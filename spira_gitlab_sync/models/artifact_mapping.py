"""Artifact mapping model (the identity mapping store)"""
import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.orm import relationship

from spira_gitlab_sync.models.base import Base
from spira_gitlab_sync.domain import utcnow


class ArtifactType(str, enum.Enum):
    """Artifact types that carry identity mappings"""
    INCIDENT = "incident"
    RELEASE = "release"


class ArtifactMapping(Base):
    """Correspondence between a Spira artifact id and a GitLab key (issue or milestone iid)"""

    __tablename__ = "artifact_mappings"
    __table_args__ = (
        UniqueConstraint(
            "data_sync_id",
            "artifact_type",
            "project_id",
            "internal_id",
            name="uq_artifact_mappings_internal",
        ),
        # At most one primary mapping per GitLab key.
        Index(
            "uq_artifact_mappings_primary_external",
            "data_sync_id",
            "artifact_type",
            "project_id",
            "external_key",
            unique=True,
            sqlite_where=text("is_primary"),
            postgresql_where=text("is_primary"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    data_sync_id = Column(Integer, ForeignKey("data_sync_systems.id"), nullable=False, index=True)
    artifact_type = Column(Enum(ArtifactType), nullable=False)

    # Spira side
    project_id = Column(Integer, nullable=False)
    internal_id = Column(Integer, nullable=False)

    # GitLab side
    external_key = Column(String, nullable=False, index=True)
    is_primary = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)

    data_sync = relationship("DataSyncSystem")

    def __repr__(self):
        return (
            f"<ArtifactMapping({self.artifact_type} PR{self.project_id}:{self.internal_id} "
            f"-> {self.external_key})>"
        )
