"""Identity mapping store backed by the database"""

import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from spira_gitlab_sync.domain import DataMapping
from spira_gitlab_sync.models import (
    ArtifactMapping,
    ArtifactType,
    CustomPropertyMapping,
    MappedField,
    ProjectMapping,
    ValueMapping,
)

logger = logging.getLogger(__name__)


class MappingStore:
    """Reads mapping tables for one data-sync and writes artifact mapping changes back.

    Tables are handed out as lists of immutable DataMapping values; the engine
    never touches ORM rows directly.
    """

    def __init__(self, db: Session, data_sync_id: int):
        self.db = db
        self.data_sync_id = data_sync_id

    @staticmethod
    def _to_mapping(row) -> DataMapping:
        return DataMapping(
            project_id=row.project_id,
            internal_id=row.internal_id,
            external_key=row.external_key,
            is_primary=bool(row.is_primary),
        )

    def get_project_mappings(self) -> List[DataMapping]:
        """Spira project id (internal_id) -> GitLab project key"""
        rows = (
            self.db.query(ProjectMapping)
            .filter(ProjectMapping.data_sync_id == self.data_sync_id)
            .order_by(ProjectMapping.project_id)
            .all()
        )
        return [DataMapping(None, r.project_id, r.external_key) for r in rows]

    def get_value_mappings(
        self,
        field: MappedField,
        project_id: Optional[int] = None,
        custom_property_id: Optional[int] = None,
    ) -> List[DataMapping]:
        query = self.db.query(ValueMapping).filter(
            ValueMapping.data_sync_id == self.data_sync_id,
            ValueMapping.field == field,
        )
        if project_id is not None:
            query = query.filter(ValueMapping.project_id == project_id)
        if custom_property_id is not None:
            query = query.filter(ValueMapping.custom_property_id == custom_property_id)
        return [self._to_mapping(r) for r in query.order_by(ValueMapping.id).all()]

    def get_user_mappings(self) -> List[DataMapping]:
        """User mappings are shared by every project of the data-sync"""
        return self.get_value_mappings(MappedField.USER)

    def get_custom_property_mappings(self, project_id: int) -> Dict[int, CustomPropertyMapping]:
        rows = (
            self.db.query(CustomPropertyMapping)
            .filter(
                CustomPropertyMapping.data_sync_id == self.data_sync_id,
                CustomPropertyMapping.project_id == project_id,
            )
            .all()
        )
        return {r.custom_property_id: r for r in rows}

    def get_artifact_mappings(self, artifact_type: ArtifactType, project_id: int) -> List[DataMapping]:
        rows = (
            self.db.query(ArtifactMapping)
            .filter(
                ArtifactMapping.data_sync_id == self.data_sync_id,
                ArtifactMapping.artifact_type == artifact_type,
                ArtifactMapping.project_id == project_id,
            )
            .order_by(ArtifactMapping.id)
            .all()
        )
        return [self._to_mapping(r) for r in rows]

    def _find_row(self, artifact_type: ArtifactType, mapping: DataMapping) -> Optional[ArtifactMapping]:
        return (
            self.db.query(ArtifactMapping)
            .filter(
                ArtifactMapping.data_sync_id == self.data_sync_id,
                ArtifactMapping.artifact_type == artifact_type,
                ArtifactMapping.project_id == mapping.project_id,
                ArtifactMapping.internal_id == mapping.internal_id,
            )
            .first()
        )

    def _find_primary_for_key(self, artifact_type: ArtifactType, mapping: DataMapping) -> Optional[ArtifactMapping]:
        return (
            self.db.query(ArtifactMapping)
            .filter(
                ArtifactMapping.data_sync_id == self.data_sync_id,
                ArtifactMapping.artifact_type == artifact_type,
                ArtifactMapping.project_id == mapping.project_id,
                ArtifactMapping.external_key == mapping.external_key,
                ArtifactMapping.is_primary.is_(True),
            )
            .first()
        )

    def _safe_commit(self, row: ArtifactMapping) -> bool:
        """Commit a mapping row, swallowing duplicate-mapping races."""
        try:
            self.db.add(row)
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            return False

    def add_artifact_mappings(self, artifact_type: ArtifactType, mappings: Iterable[DataMapping]) -> int:
        """Add mappings; ones already stored for the same internal id are left alone.

        A key that already has a primary mapping gets the new one as secondary.
        """
        added = 0
        for mapping in mappings:
            if self._find_row(artifact_type, mapping) is not None:
                logger.debug(f"{artifact_type.value} mapping {mapping.internal_id} already stored")
                continue
            is_primary = mapping.is_primary
            if is_primary and self._find_primary_for_key(artifact_type, mapping) is not None:
                logger.warning(
                    f"GitLab key {mapping.external_key} in PR{mapping.project_id} already has a primary "
                    f"{artifact_type.value} mapping; storing {mapping.internal_id} as secondary"
                )
                is_primary = False
            row = ArtifactMapping(
                data_sync_id=self.data_sync_id,
                artifact_type=artifact_type,
                project_id=mapping.project_id,
                internal_id=mapping.internal_id,
                external_key=mapping.external_key,
                is_primary=is_primary,
            )
            if self._safe_commit(row):
                added += 1
        return added

    def remove_artifact_mappings(self, artifact_type: ArtifactType, mappings: Iterable[DataMapping]) -> int:
        removed = 0
        for mapping in mappings:
            row = self._find_row(artifact_type, mapping)
            if row is None or row.external_key != mapping.external_key:
                continue
            self.db.delete(row)
            removed += 1
        self.db.commit()
        return removed

    @staticmethod
    def _same_project(mapping: DataMapping, project_id: Optional[int]) -> bool:
        return project_id is None or mapping.project_id is None or mapping.project_id == project_id

    @classmethod
    def find_by_internal_id(
        cls, mappings: Iterable[DataMapping], project_id: Optional[int], internal_id: Optional[int]
    ) -> Optional[DataMapping]:
        if internal_id is None:
            return None
        for mapping in mappings:
            if mapping.internal_id == internal_id and cls._same_project(mapping, project_id):
                return mapping
        return None

    @classmethod
    def find_by_external_key(
        cls,
        mappings: Iterable[DataMapping],
        project_id: Optional[int],
        external_key: Optional[str],
        primary_only: bool = False,
    ) -> Optional[DataMapping]:
        """Primary mapping for the key, else (unless primary_only) the first secondary one."""
        if external_key is None:
            return None
        fallback = None
        for mapping in mappings:
            if mapping.external_key != external_key or not cls._same_project(mapping, project_id):
                continue
            if mapping.is_primary:
                return mapping
            if fallback is None and not primary_only:
                fallback = mapping
        return fallback
