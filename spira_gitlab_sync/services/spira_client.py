"""Spira REST API client wrapper"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests

from spira_gitlab_sync.config import settings
from spira_gitlab_sync.domain import Comment, Incident, Release, format_spira_datetime

logger = logging.getLogger(__name__)

ARTIFACT_TYPE_INCIDENT = 3


class SpiraApiError(Exception):
    """HTTP or transport failure talking to Spira"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SpiraValidationError(SpiraApiError):
    """Spira rejected the payload (HTTP 400 with a validation fault)"""

    def __init__(self, summary: str, messages: List[Tuple[str, str]]):
        super().__init__(summary, status_code=400)
        self.summary = summary
        self.messages = messages

    def describe(self) -> str:
        details = "; ".join(f"{name}={message}" for name, message in self.messages)
        return f"{self.summary} ({details})" if details else self.summary


class SpiraClient:
    """Wrapper for the Spira REST service"""

    def __init__(
        self,
        url: str,
        login: str,
        api_key: str,
        rest_path: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 60,
    ):
        self.url = url.rstrip("/")
        self.base_url = self.url + (rest_path or settings.spira_rest_path)
        self.login = login
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "Content-Type": "application/json"})

    @staticmethod
    def _validation_error(response: requests.Response) -> Optional[SpiraValidationError]:
        """Decode a Spira validation fault body, if that's what we got."""
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict) or not ("Summary" in body or "Messages" in body):
            return None
        messages = [
            (m.get("FieldName") or "", m.get("Message") or "")
            for m in (body.get("Messages") or [])
            if isinstance(m, dict)
        ]
        return SpiraValidationError(body.get("Summary") or "Validation failed", messages)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        query = {"username": self.login, "api-key": self.api_key}
        if params:
            query.update(params)
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, params=query, json=json, timeout=self.timeout)
        except requests.RequestException as e:
            raise SpiraApiError(f"{method} {path} failed: {e}") from e

        if response.status_code == 400:
            fault = self._validation_error(response)
            if fault is not None:
                raise fault
        if response.status_code >= 400:
            raise SpiraApiError(
                f"{method} {path} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        return response.json()

    def authenticate(self) -> bool:
        """Check the credentials are accepted"""
        try:
            self._request("GET", "projects")
            return True
        except SpiraApiError as e:
            logger.error(f"Unable to authenticate with Spira at {self.url} as '{self.login}': {e}")
            return False

    def connect_to_project(self, project_id: int) -> bool:
        """Check the project exists and is accessible to the sync user"""
        try:
            self._request("GET", f"projects/{project_id}")
            return True
        except SpiraApiError as e:
            logger.error(f"Unable to connect to Spira project PR{project_id}: {e}")
            return False

    def list_incidents_changed_since(
        self, project_id: int, since: datetime, start_row: int, number_rows: int
    ) -> List[Incident]:
        """One batch of incidents updated on/after `since`, oldest update first (start_row is 1-based)."""
        filters = [
            {
                "PropertyName": "LastUpdateDate",
                "DateRangeValue": {
                    "StartDate": format_spira_datetime(since),
                    "EndDate": None,
                    "ConsiderTimes": True,
                },
            }
        ]
        rows = self._request(
            "POST",
            f"projects/{project_id}/incidents/search",
            params={"start_row": start_row, "number_rows": number_rows, "sort_by": "LastUpdateDate ASC"},
            json=filters,
        )
        return [Incident.from_api(row) for row in rows or []]

    def get_incident(self, project_id: int, incident_id: int) -> Incident:
        return Incident.from_api(self._request("GET", f"projects/{project_id}/incidents/{incident_id}"))

    def create_incident(self, project_id: int, incident: Incident) -> Incident:
        data = self._request("POST", f"projects/{project_id}/incidents", json=incident.to_api())
        created = Incident.from_api(data)
        logger.info(f"Created incident IN{created.incident_id} in Spira project PR{project_id}")
        return created

    def update_incident(self, project_id: int, incident: Incident) -> None:
        self._request(
            "PUT", f"projects/{project_id}/incidents/{incident.incident_id}", json=incident.to_api()
        )
        logger.info(f"Updated incident IN{incident.incident_id} in Spira project PR{project_id}")

    def get_incident_comments(self, project_id: int, incident_id: int) -> List[Comment]:
        rows = self._request("GET", f"projects/{project_id}/incidents/{incident_id}/comments")
        return [Comment.from_api(row) for row in rows or []]

    def add_incident_comment(
        self, project_id: int, incident_id: int, text: str, user_id: Optional[int] = None
    ) -> Comment:
        payload = [{"ArtifactId": incident_id, "UserId": user_id, "Text": text}]
        data = self._request(
            "POST", f"projects/{project_id}/incidents/{incident_id}/comments", json=payload
        )
        # The service echoes back the list it was given.
        if isinstance(data, list):
            data = data[0] if data else {}
        logger.info(f"Added comment to incident IN{incident_id}")
        return Comment.from_api(data or payload[0])

    def get_release(self, project_id: int, release_id: int) -> Release:
        return Release.from_api(self._request("GET", f"projects/{project_id}/releases/{release_id}"))

    def create_release(self, project_id: int, release: Release) -> Release:
        data = self._request("POST", f"projects/{project_id}/releases", json=release.to_api())
        created = Release.from_api(data)
        logger.info(f"Created release RL{created.release_id} '{created.name}' in Spira project PR{project_id}")
        return created

    def add_url_document(
        self, project_id: int, incident_id: int, url: str, description: str = "Link to issue in GitLab"
    ) -> Dict[str, Any]:
        """Attach a URL to an incident"""
        payload = {
            "FilenameOrUrl": url,
            "Description": description,
            "AttachedArtifacts": [{"ArtifactId": incident_id, "ArtifactTypeId": ARTIFACT_TYPE_INCIDENT}],
        }
        return self._request("POST", f"projects/{project_id}/documents/url", json=payload)

    def get_user_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        try:
            return self._request("GET", f"users/{user_id}")
        except SpiraApiError as e:
            logger.warning(f"Failed to get Spira user {user_id}: {e}")
            return None

    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        try:
            return self._request("GET", f"users/usernames/{username}")
        except SpiraApiError as e:
            logger.warning(f"Failed to get Spira user '{username}': {e}")
            return None

    def get_incident_custom_properties(self, project_id: int) -> List[Dict[str, Any]]:
        """Custom property definitions for incidents in the project's template"""
        return self._request("GET", f"projects/{project_id}/custom-properties/Incident") or []
