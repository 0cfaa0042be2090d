import json
import logging
import unittest
from datetime import datetime
from unittest.mock import Mock

import requests

from spira_gitlab_sync.domain import Incident, Release
from spira_gitlab_sync.services.spira_client import SpiraApiError, SpiraClient, SpiraValidationError

logging.disable(logging.CRITICAL)

BASE = "https://spira.example/Services/v6_0/RestService.svc"


def _response(status_code=200, body=None):
    response = Mock()
    response.status_code = status_code
    response.content = json.dumps(body).encode() if body is not None else b""
    response.text = response.content.decode()
    response.json = Mock(return_value=body)
    return response


class SpiraClientTests(unittest.TestCase):
    def setUp(self):
        self.session = Mock()
        self.session.headers = {}
        self.client = SpiraClient("https://spira.example/", "sync", "{KEY}", session=self.session)

    def _call(self, index=-1):
        args, kwargs = self.session.request.call_args_list[index]
        return args[0], args[1], kwargs

    def test_requests_carry_credentials_and_json_headers(self):
        self.session.request.return_value = _response(body={"IncidentId": 5, "ProjectId": 1, "Name": "Crash"})

        incident = self.client.get_incident(1, 5)

        self.assertEqual(incident.name, "Crash")
        method, url, kwargs = self._call()
        self.assertEqual(method, "GET")
        self.assertEqual(url, f"{BASE}/projects/1/incidents/5")
        self.assertEqual(kwargs["params"], {"username": "sync", "api-key": "{KEY}"})
        self.assertEqual(self.session.headers["Accept"], "application/json")

    def test_authenticate(self):
        self.session.request.return_value = _response(body=[])
        self.assertTrue(self.client.authenticate())

        self.session.request.return_value = _response(401, body={"Message": "denied"})
        self.assertFalse(self.client.authenticate())

    def test_connect_to_project(self):
        self.session.request.return_value = _response(body={"ProjectId": 3})
        self.assertTrue(self.client.connect_to_project(3))
        self.assertEqual(self._call()[1], f"{BASE}/projects/3")

        self.session.request.return_value = _response(404)
        self.assertFalse(self.client.connect_to_project(4))

    def test_transport_error_becomes_api_error(self):
        self.session.request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(SpiraApiError):
            self.client.get_release(1, 2)
        self.assertFalse(self.client.authenticate())

    def test_list_incidents_changed_since(self):
        self.session.request.return_value = _response(
            body=[{"IncidentId": 1, "ProjectId": 1}, {"IncidentId": 2, "ProjectId": 1}]
        )

        incidents = self.client.list_incidents_changed_since(1, datetime(2025, 1, 2, 3, 4, 5), 101, 100)

        self.assertEqual([i.incident_id for i in incidents], [1, 2])
        method, url, kwargs = self._call()
        self.assertEqual((method, url), ("POST", f"{BASE}/projects/1/incidents/search"))
        self.assertEqual(kwargs["params"]["start_row"], 101)
        self.assertEqual(kwargs["params"]["number_rows"], 100)
        self.assertEqual(kwargs["params"]["sort_by"], "LastUpdateDate ASC")
        date_filter = kwargs["json"][0]
        self.assertEqual(date_filter["PropertyName"], "LastUpdateDate")
        self.assertEqual(date_filter["DateRangeValue"]["StartDate"], "2025-01-02T03:04:05.000")

    def test_validation_fault_is_decoded(self):
        self.session.request.return_value = _response(
            400,
            body={
                "Summary": "Incident is not valid",
                "Messages": [{"FieldName": "Name", "Message": "Required"}, {"FieldName": "OwnerId", "Message": "Unknown"}],
            },
        )

        with self.assertRaises(SpiraValidationError) as ctx:
            self.client.create_incident(1, Incident(incident_id=None, project_id=1))

        self.assertEqual(ctx.exception.messages, [("Name", "Required"), ("OwnerId", "Unknown")])
        self.assertEqual(ctx.exception.describe(), "Incident is not valid (Name=Required; OwnerId=Unknown)")

    def test_plain_400_is_an_api_error(self):
        self.session.request.return_value = _response(400, body=None)
        with self.assertRaises(SpiraApiError) as ctx:
            self.client.update_incident(1, Incident(incident_id=9, project_id=1))
        self.assertNotIsInstance(ctx.exception, SpiraValidationError)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_update_incident_puts_full_payload(self):
        self.session.request.return_value = _response(body=None)

        self.client.update_incident(1, Incident(incident_id=9, project_id=1, name="Crash", status_id=3))

        method, url, kwargs = self._call()
        self.assertEqual((method, url), ("PUT", f"{BASE}/projects/1/incidents/9"))
        self.assertEqual(kwargs["json"]["Name"], "Crash")
        self.assertEqual(kwargs["json"]["IncidentStatusId"], 3)

    def test_add_incident_comment(self):
        self.session.request.return_value = _response(
            body=[{"CommentId": 4, "ArtifactId": 9, "Text": "<b>Posted By: bob</b> <br/> hi", "UserId": 7}]
        )

        comment = self.client.add_incident_comment(1, 9, "<b>Posted By: bob</b> <br/> hi", user_id=7)

        self.assertEqual(comment.comment_id, 4)
        _, url, kwargs = self._call()
        self.assertEqual(url, f"{BASE}/projects/1/incidents/9/comments")
        self.assertEqual(kwargs["json"], [{"ArtifactId": 9, "UserId": 7, "Text": "<b>Posted By: bob</b> <br/> hi"}])

    def test_create_release(self):
        self.session.request.return_value = _response(body={"ReleaseId": 12, "Name": "v1.2", "VersionNumber": "v1.2"})

        release = self.client.create_release(1, Release(release_id=None, name="v1.2", version_number="v1.2"))

        self.assertEqual(release.release_id, 12)
        _, url, kwargs = self._call()
        self.assertEqual(url, f"{BASE}/projects/1/releases")
        self.assertEqual(kwargs["json"]["VersionNumber"], "v1.2")

    def test_add_url_document_attaches_to_incident(self):
        self.session.request.return_value = _response(body={"AttachmentId": 1})

        self.client.add_url_document(1, 9, "https://gitlab.com/g/p/-/issues/3")

        _, url, kwargs = self._call()
        self.assertEqual(url, f"{BASE}/projects/1/documents/url")
        self.assertEqual(kwargs["json"]["FilenameOrUrl"], "https://gitlab.com/g/p/-/issues/3")
        self.assertEqual(kwargs["json"]["AttachedArtifacts"], [{"ArtifactId": 9, "ArtifactTypeId": 3}])

    def test_user_lookups_return_none_when_missing(self):
        self.session.request.return_value = _response(body={"UserId": 7, "UserName": "dave"})
        self.assertEqual(self.client.get_user_by_username("dave")["UserId"], 7)
        self.assertEqual(self._call()[1], f"{BASE}/users/usernames/dave")

        self.session.request.return_value = _response(404)
        self.assertIsNone(self.client.get_user_by_username("nobody"))
        self.assertIsNone(self.client.get_user_by_id(99))

    def test_get_incident_custom_properties(self):
        self.session.request.return_value = _response(body=[{"CustomPropertyId": 10}])

        self.assertEqual(self.client.get_incident_custom_properties(1), [{"CustomPropertyId": 10}])
        self.assertEqual(self._call()[1], f"{BASE}/projects/1/custom-properties/Incident")


if __name__ == "__main__":
    unittest.main()
