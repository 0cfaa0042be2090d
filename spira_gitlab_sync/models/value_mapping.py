"""Value mapping models (field values, users, custom properties)"""
import enum

from sqlalchemy import Boolean, Column, Enum, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from spira_gitlab_sync.domain import CustomPropertyType
from spira_gitlab_sync.models.base import Base


class MappedField(str, enum.Enum):
    """Enumerated fields whose values are translated between the two systems"""
    SEVERITY = "severity"
    PRIORITY = "priority"
    STATUS = "status"
    TYPE = "type"
    USER = "user"
    CUSTOM_PROPERTY_VALUE = "custom_property_value"


class ValueMapping(Base):
    """Spira value id <-> GitLab value string, configured per data-sync.

    User mappings are global to the data-sync (project_id is NULL).
    Custom property list values carry the owning custom_property_id.
    """

    __tablename__ = "value_mappings"

    id = Column(Integer, primary_key=True, index=True)

    data_sync_id = Column(Integer, ForeignKey("data_sync_systems.id"), nullable=False, index=True)
    project_id = Column(Integer, nullable=True)
    field = Column(Enum(MappedField), nullable=False, index=True)
    custom_property_id = Column(Integer, nullable=True)

    internal_id = Column(Integer, nullable=False)
    external_key = Column(String, nullable=False)
    # Several Spira values may map to one GitLab value; only the primary one is
    # used when translating GitLab -> Spira.
    is_primary = Column(Boolean, default=True, nullable=False)

    data_sync = relationship("DataSyncSystem")

    def __repr__(self):
        return f"<ValueMapping({self.field} {self.internal_id} -> {self.external_key})>"


class CustomPropertyMapping(Base):
    """Spira incident custom property -> GitLab field name"""

    __tablename__ = "custom_property_mappings"
    __table_args__ = (
        UniqueConstraint(
            "data_sync_id",
            "project_id",
            "custom_property_id",
            name="uq_custom_property_mappings_property",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    data_sync_id = Column(Integer, ForeignKey("data_sync_systems.id"), nullable=False, index=True)
    project_id = Column(Integer, nullable=False)
    custom_property_id = Column(Integer, nullable=False)
    property_type = Column(Enum(CustomPropertyType), nullable=False)
    external_key = Column(String, nullable=False)

    data_sync = relationship("DataSyncSystem")

    def __repr__(self):
        return f"<CustomPropertyMapping({self.custom_property_id} -> {self.external_key})>"
