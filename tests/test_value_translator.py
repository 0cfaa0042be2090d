import logging
import unittest
from datetime import datetime
from unittest.mock import Mock

from spira_gitlab_sync.domain import CustomPropertyType, CustomPropertyValue, DataMapping, Incident
from spira_gitlab_sync.models import MappedField
from spira_gitlab_sync.services.value_translator import ValueTranslator

logging.disable(logging.CRITICAL)


def _translator(**kwargs):
    value_mappings = {
        MappedField.STATUS: [
            DataMapping(1, 1, "opened"),
            DataMapping(1, 4, "closed", is_primary=False),
            DataMapping(1, 5, "closed"),
            DataMapping(2, 9, "opened"),
        ],
    }
    user_mappings = [DataMapping(None, 7, "dave")]
    return ValueTranslator(1, value_mappings, user_mappings, **kwargs)


class ValueTranslatorTests(unittest.TestCase):
    def test_to_external(self):
        translator = _translator()
        self.assertEqual(translator.to_external(MappedField.STATUS, 4), "closed")
        self.assertIsNone(translator.to_external(MappedField.STATUS, 9))
        self.assertIsNone(translator.to_external(MappedField.SEVERITY, 1))
        self.assertIsNone(translator.to_external(MappedField.STATUS, None))

    def test_to_internal_prefers_primary(self):
        translator = _translator()
        self.assertEqual(translator.to_internal(MappedField.STATUS, "closed"), 5)
        self.assertEqual(translator.to_internal(MappedField.STATUS, "opened"), 1)
        self.assertIsNone(translator.to_internal(MappedField.STATUS, "locked"))

    def test_to_internal_primary_only_ignores_secondary(self):
        translator = ValueTranslator(
            1, {MappedField.STATUS: [DataMapping(1, 4, "closed", is_primary=False)]}, []
        )
        self.assertIsNone(translator.to_internal(MappedField.STATUS, "closed"))
        self.assertEqual(translator.to_internal(MappedField.STATUS, "closed", primary_only=False), 4)

    def test_user_mapping_both_ways(self):
        translator = _translator()
        self.assertEqual(translator.user_to_external(7), "dave")
        self.assertEqual(translator.user_to_internal("dave"), 7)
        self.assertIsNone(translator.user_to_external(8))
        self.assertIsNone(translator.user_to_internal("erin"))

    def test_auto_map_users_by_name_is_cached(self):
        spira = Mock()
        spira.get_user_by_id.return_value = {"UserId": 8, "UserName": "erin"}
        spira.get_user_by_username.return_value = {"UserId": 8, "UserName": "erin"}
        translator = _translator(spira=spira, auto_map_users=True)

        self.assertEqual(translator.user_to_external(8), "erin")
        self.assertEqual(translator.user_to_external(8), "erin")
        self.assertEqual(translator.user_to_internal("erin"), 8)
        self.assertEqual(translator.user_to_internal("erin"), 8)

        spira.get_user_by_id.assert_called_once_with(8)
        spira.get_user_by_username.assert_called_once_with("erin")

    def test_auto_map_disabled_does_not_query_spira(self):
        spira = Mock()
        translator = _translator(spira=spira, auto_map_users=False)
        self.assertIsNone(translator.user_to_external(8))
        spira.get_user_by_id.assert_not_called()

    def test_gitlab_user_id(self):
        gitlab = Mock()
        gitlab.get_user_by_username.side_effect = lambda name: Mock(id=77) if name == "dave" else None
        translator = _translator(gitlab=gitlab)
        self.assertEqual(translator.gitlab_user_id("dave"), 77)
        self.assertIsNone(translator.gitlab_user_id("nobody"))
        self.assertIsNone(translator.gitlab_user_id(None))

    def test_custom_properties_to_external(self):
        translator = _translator(
            custom_property_fields={10: "component", 11: "tags", 12: "reviewer", 13: "found_on", 14: "notes", 15: "missing_option"},
            custom_value_mappings={
                10: [DataMapping(1, 100, "backend")],
                11: [DataMapping(1, 110, "ui"), DataMapping(1, 111, "api")],
                15: [],
            },
        )
        incident = Incident(
            incident_id=3,
            project_id=1,
            custom_properties={
                10: CustomPropertyValue(CustomPropertyType.LIST, 100),
                11: CustomPropertyValue(CustomPropertyType.MULTI_LIST, [110, 111, 112]),
                12: CustomPropertyValue(CustomPropertyType.USER, 7),
                13: CustomPropertyValue(CustomPropertyType.DATE, datetime(2025, 1, 2)),
                14: CustomPropertyValue(CustomPropertyType.TEXT, "free text"),
                15: CustomPropertyValue(CustomPropertyType.LIST, 999),
                16: CustomPropertyValue(CustomPropertyType.INTEGER, 5),
            },
        )

        self.assertEqual(
            translator.custom_properties_to_external(incident),
            {
                "component": "backend",
                "tags": ["ui", "api"],
                "reviewer": "dave",
                "found_on": "2025-01-02T00:00:00",
                "notes": "free text",
            },
        )


if __name__ == "__main__":
    unittest.main()
