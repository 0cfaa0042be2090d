"""Database models"""

from spira_gitlab_sync.models.base import Base
from spira_gitlab_sync.models.artifact_mapping import ArtifactMapping, ArtifactType
from spira_gitlab_sync.models.data_sync import DataSyncSystem
from spira_gitlab_sync.models.project_mapping import ProjectMapping
from spira_gitlab_sync.models.sync_log import SyncDirection, SyncLog, SyncStatus
from spira_gitlab_sync.models.value_mapping import CustomPropertyMapping, MappedField, ValueMapping

__all__ = [
    "Base",
    "DataSyncSystem",
    "ProjectMapping",
    "ValueMapping",
    "MappedField",
    "CustomPropertyMapping",
    "ArtifactMapping",
    "ArtifactType",
    "SyncLog",
    "SyncStatus",
    "SyncDirection",
]
