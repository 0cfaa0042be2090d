"""GitLab API client wrapper"""
import gitlab
import logging
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import time

from spira_gitlab_sync.domain import Issue, Milestone, Note

logger = logging.getLogger(__name__)

# `state_event` values that move an issue into the given state.
_STATE_EVENTS = {"closed": "close", "opened": "reopen"}


def project_path(namespace: Optional[str], project_key: str) -> str:
    """Full project path ("group/project"); python-gitlab URL-escapes it on use."""
    key = project_key.strip("/")
    if namespace:
        return f"{namespace.strip('/')}/{key}"
    return key


class GitLabClient:
    """Wrapper for GitLab API operations"""

    def __init__(self, url: str, access_token: str):
        """Initialize GitLab client"""
        self.url = url
        self.gl = gitlab.Gitlab(url, private_token=access_token)
        self.gl.auth()

    @staticmethod
    def _should_retry(exc: Exception) -> bool:
        """Retry predicate for transient GitLab failures."""
        rc = getattr(exc, "response_code", None)
        return rc in (429, 500, 502, 503, 504)

    def _with_retries(self, fn, *, max_attempts: int = 3, base_delay_s: float = 0.5):
        """Run a read with small exponential backoff on transient errors.

        Writes are never wrapped: a retried POST could create the issue twice.
        """
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as e:
                if attempt >= max_attempts or not self._should_retry(e):
                    raise
                time.sleep(base_delay_s * (2 ** (attempt - 1)))
                attempt += 1

    def get_project(self, project_id: str):
        """Get project by ID or path"""
        try:
            return self._with_retries(lambda: self.gl.projects.get(project_id))
        except gitlab.exceptions.GitlabGetError as e:
            logger.error(f"Failed to get project {project_id}: {e}")
            raise

    def _get_issue_resource(self, project_id: str, issue_iid: int):
        project = self.get_project(project_id)
        return self._with_retries(lambda: project.issues.get(issue_iid))

    def get_project_milestones(self, project_id: str) -> List[Milestone]:
        """Get all milestones for a project (every state)"""
        try:
            project = self.get_project(project_id)
            milestones = self._with_retries(lambda: project.milestones.list(get_all=True, per_page=100))
            return [Milestone.from_gitlab(m) for m in milestones]
        except Exception as e:
            logger.error(f"Failed to get milestones for project {project_id}: {e}")
            raise

    def create_milestone(self, project_id: str, milestone_data: Dict[str, Any]) -> Optional[Milestone]:
        """Create a milestone in a project; None when GitLab refuses it"""
        try:
            project = self.get_project(project_id)
            milestone = project.milestones.create(milestone_data)
            logger.info(f"Created milestone '{milestone_data.get('title')}' in project {project_id}")
            return Milestone.from_gitlab(milestone)
        except Exception as e:
            logger.warning(f"Failed to create milestone '{milestone_data.get('title')}': {e}")
            return None

    def get_issues(self, project_id: str, updated_after: Optional[datetime] = None) -> List[Issue]:
        """Get all issues (open and closed) updated after the given time"""
        try:
            project = self.get_project(project_id)
            # GitLab defaults to state=opened and scope=created_by_me for some tokens.
            params = {
                "order_by": "updated_at",
                "sort": "asc",
                "state": "all",
                "scope": "all",
                "per_page": 100,
            }
            if updated_after:
                # Our datetimes are UTC tz-naive; assume UTC if tzinfo is missing.
                if updated_after.tzinfo is None:
                    updated_after = updated_after.replace(tzinfo=timezone.utc)
                params["updated_after"] = updated_after.isoformat()

            issues = self._with_retries(lambda: project.issues.list(get_all=True, **params))
            return [Issue.from_gitlab(i) for i in issues]
        except Exception as e:
            logger.error(f"Failed to get issues for project {project_id}: {e}")
            raise

    def get_issue(self, project_id: str, issue_iid: int) -> Issue:
        """Get a specific issue by IID"""
        try:
            return Issue.from_gitlab(self._get_issue_resource(project_id, issue_iid))
        except gitlab.exceptions.GitlabGetError as e:
            logger.error(f"Failed to get issue {issue_iid} from project {project_id}: {e}")
            raise

    def create_issue(self, project_id: str, issue_data: Dict[str, Any]) -> Issue:
        """Create a new issue"""
        try:
            project = self.get_project(project_id)
            issue = project.issues.create(issue_data)
            logger.info(f"Created issue #{issue.iid} in project {project_id}")
            return Issue.from_gitlab(issue)
        except Exception as e:
            logger.error(f"Failed to create issue in project {project_id}: {e}")
            raise

    def set_issue_state(self, project_id: str, issue_iid: int, state: str) -> Issue:
        """Open or close an issue ("opened" / "closed")"""
        if state not in _STATE_EVENTS:
            raise ValueError(f"Unknown GitLab issue state '{state}'")
        try:
            issue = self._get_issue_resource(project_id, issue_iid)
            issue.state_event = _STATE_EVENTS[state]
            issue.save()
            logger.info(f"Set issue #{issue_iid} in project {project_id} to {state}")
            return Issue.from_gitlab(issue)
        except Exception as e:
            logger.error(f"Failed to set state of issue {issue_iid} in project {project_id}: {e}")
            raise

    def set_issue_milestone(self, project_id: str, issue_iid: int, milestone_id: Optional[int]) -> Issue:
        """Set (or clear, with None) the milestone of an issue by global milestone id"""
        try:
            issue = self._get_issue_resource(project_id, issue_iid)
            issue.milestone_id = milestone_id if milestone_id is not None else 0
            issue.save()
            logger.info(f"Set milestone of issue #{issue_iid} in project {project_id} to {milestone_id}")
            return Issue.from_gitlab(issue)
        except Exception as e:
            logger.error(f"Failed to set milestone of issue {issue_iid} in project {project_id}: {e}")
            raise

    def get_issue_notes(self, project_id: str, issue_iid: int) -> List[Note]:
        """Get all notes (comments) for an issue"""
        try:
            issue = self._get_issue_resource(project_id, issue_iid)
            notes = self._with_retries(
                lambda: issue.notes.list(get_all=True, per_page=100, order_by="created_at", sort="asc")
            )
            return [Note.from_gitlab(n) for n in notes]
        except Exception as e:
            logger.error(f"Failed to get notes for issue {issue_iid}: {e}")
            raise

    def create_issue_note(self, project_id: str, issue_iid: int, note_body: str) -> Note:
        """Create a note (comment) on an issue"""
        try:
            issue = self._get_issue_resource(project_id, issue_iid)
            note = issue.notes.create({"body": note_body})
            logger.info(f"Created note on issue #{issue_iid}")
            return Note.from_gitlab(note)
        except Exception as e:
            logger.error(f"Failed to create note on issue {issue_iid}: {e}")
            raise

    def get_user_by_username(self, username: str) -> Optional[Any]:
        """Get user by username"""
        try:
            users = self._with_retries(lambda: self.gl.users.list(username=username))
            return users[0] if users else None
        except Exception as e:
            logger.warning(f"Failed to get user {username}: {e}")
            return None
