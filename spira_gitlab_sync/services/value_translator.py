"""Value translation between Spira ids and GitLab values"""

import logging
from typing import Any, Dict, List, Optional

from spira_gitlab_sync.domain import CustomPropertyType, DataMapping, Incident
from spira_gitlab_sync.models import MappedField
from spira_gitlab_sync.services.mapping_store import MappingStore

logger = logging.getLogger(__name__)


class ValueTranslator:
    """Translates enumerated field values and users for one project.

    Mapping tables are loaded once per project pass. User lookups that go to
    either server (auto-map, GitLab user ids) are cached for the same span.
    """

    def __init__(
        self,
        project_id: int,
        value_mappings: Dict[MappedField, List[DataMapping]],
        user_mappings: List[DataMapping],
        spira=None,
        gitlab=None,
        auto_map_users: bool = False,
        custom_property_fields: Optional[Dict[int, str]] = None,
        custom_value_mappings: Optional[Dict[int, List[DataMapping]]] = None,
    ):
        self.project_id = project_id
        self.value_mappings = value_mappings
        self.user_mappings = user_mappings
        self.spira = spira
        self.gitlab = gitlab
        self.auto_map_users = auto_map_users
        self.custom_property_fields = custom_property_fields or {}
        self.custom_value_mappings = custom_value_mappings or {}
        self._spira_usernames: Dict[int, Optional[str]] = {}
        self._spira_user_ids: Dict[str, Optional[int]] = {}
        self._gitlab_user_ids: Dict[str, Optional[int]] = {}

    def to_external(self, field: MappedField, internal_id: Optional[int]) -> Optional[str]:
        mapping = MappingStore.find_by_internal_id(
            self.value_mappings.get(field, []), self.project_id, internal_id
        )
        return mapping.external_key if mapping else None

    def to_internal(
        self, field: MappedField, external_key: Optional[str], primary_only: bool = True
    ) -> Optional[int]:
        """Several Spira values may share one GitLab value; only the primary one is used by default."""
        mapping = MappingStore.find_by_external_key(
            self.value_mappings.get(field, []), self.project_id, external_key, primary_only=primary_only
        )
        return mapping.internal_id if mapping else None

    def user_to_external(self, user_id: Optional[int]) -> Optional[str]:
        """Spira user id -> GitLab username"""
        if user_id is None:
            return None
        mapping = MappingStore.find_by_internal_id(self.user_mappings, None, user_id)
        if mapping:
            return mapping.external_key
        if not self.auto_map_users or self.spira is None:
            return None
        if user_id not in self._spira_usernames:
            user = self.spira.get_user_by_id(user_id)
            self._spira_usernames[user_id] = (user or {}).get("UserName")
        return self._spira_usernames[user_id]

    def user_to_internal(self, username: Optional[str]) -> Optional[int]:
        """GitLab username -> Spira user id"""
        if not username:
            return None
        mapping = MappingStore.find_by_external_key(self.user_mappings, None, username)
        if mapping:
            return mapping.internal_id
        if not self.auto_map_users or self.spira is None:
            return None
        if username not in self._spira_user_ids:
            user = self.spira.get_user_by_username(username)
            self._spira_user_ids[username] = (user or {}).get("UserId")
        return self._spira_user_ids[username]

    def gitlab_user_id(self, username: Optional[str]) -> Optional[int]:
        if not username or self.gitlab is None:
            return None
        if username not in self._gitlab_user_ids:
            user = self.gitlab.get_user_by_username(username)
            self._gitlab_user_ids[username] = getattr(user, "id", None) if user is not None else None
        return self._gitlab_user_ids[username]

    def _custom_option(self, custom_property_id: int, option_id: Any) -> Optional[str]:
        mapping = MappingStore.find_by_internal_id(
            self.custom_value_mappings.get(custom_property_id, []), self.project_id, option_id
        )
        return mapping.external_key if mapping else None

    def custom_properties_to_external(self, incident: Incident) -> Dict[str, Any]:
        """Mapped custom property values keyed by GitLab field name.

        Values whose option or user has no mapping are left out.
        """
        result: Dict[str, Any] = {}
        for property_id, prop in sorted(incident.custom_properties.items()):
            field_name = self.custom_property_fields.get(property_id)
            if not field_name or prop.value is None:
                continue

            if prop.property_type == CustomPropertyType.LIST:
                value = self._custom_option(property_id, prop.value)
            elif prop.property_type == CustomPropertyType.MULTI_LIST:
                options = [self._custom_option(property_id, option) for option in prop.value]
                value = [o for o in options if o is not None] or None
            elif prop.property_type == CustomPropertyType.USER:
                value = self.user_to_external(prop.value)
            elif prop.property_type == CustomPropertyType.DATE:
                value = prop.value.isoformat()
            else:
                value = prop.value

            if value is None:
                logger.warning(
                    f"No GitLab value mapped for custom property {property_id} value {prop.value!r} "
                    f"on incident IN{incident.incident_id}"
                )
                continue
            result[field_name] = value
        return result
