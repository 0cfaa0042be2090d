"""Direction adapters: one per sync direction.

The engine drives both directions the same way (list changed artifacts,
find the mapping, create or fetch-and-update); everything that differs
between Spira -> GitLab and GitLab -> Spira lives here.
"""

import abc
import logging
from typing import Any, Iterator, List, Optional, Tuple

from gitlab.exceptions import GitlabError

from spira_gitlab_sync.config import settings
from spira_gitlab_sync.domain import DataMapping, Incident, Issue
from spira_gitlab_sync.models import MappedField, SyncDirection
from spira_gitlab_sync.services.comment_dedup import CommentDeduplicator
from spira_gitlab_sync.services.context import Fatal, Ok, Outcome, Skip, SyncContext
from spira_gitlab_sync.services.formatting import html_to_markdown, markdown_to_html
from spira_gitlab_sync.services.mapping_store import MappingStore
from spira_gitlab_sync.services.release_reconciler import ReleaseReconciler
from spira_gitlab_sync.services.spira_client import SpiraApiError, SpiraValidationError

logger = logging.getLogger(__name__)

NAME_NOT_SPECIFIED = "Name Not Specified"
DESCRIPTION_NOT_SPECIFIED = "Description Not Specified"
LINK_DESCRIPTION = "Link to issue in GitLab"


class DirectionAdapter(abc.ABC):
    """What the engine needs to reconcile one artifact in one direction"""

    direction: SyncDirection

    def __init__(self, spira, gitlab, releases: ReleaseReconciler, dedup: Optional[CommentDeduplicator] = None):
        self.spira = spira
        self.gitlab = gitlab
        self.releases = releases
        self.dedup = dedup or CommentDeduplicator()

    @abc.abstractmethod
    def list_changed(self, ctx: SyncContext) -> Iterator[Any]:
        """Artifacts changed on the source side since ctx.filter_date"""

    @abc.abstractmethod
    def describe(self, item: Any) -> str:
        """Short name used in log messages"""

    @abc.abstractmethod
    def keys(self, item: Any, mapping: Optional[DataMapping] = None) -> Tuple[Optional[int], Optional[str]]:
        """(Spira incident id, GitLab issue iid) for sync log rows"""

    @abc.abstractmethod
    def find_mapping(self, ctx: SyncContext, item: Any) -> Optional[DataMapping]:
        pass

    @abc.abstractmethod
    def get_by_id(self, ctx: SyncContext, mapping: DataMapping) -> Any:
        """Fetch the counterpart artifact on the target side"""

    @abc.abstractmethod
    def create(self, ctx: SyncContext, item: Any) -> Outcome:
        pass

    @abc.abstractmethod
    def update(self, ctx: SyncContext, item: Any, counterpart: Any) -> Outcome:
        pass


class InternalToExternal(DirectionAdapter):
    """Spira incidents -> GitLab issues"""

    direction = SyncDirection.SPIRA_TO_GITLAB

    def __init__(self, spira, gitlab, releases, dedup=None, page_size: Optional[int] = None):
        super().__init__(spira, gitlab, releases, dedup)
        self.page_size = page_size or settings.incident_page_size

    def list_changed(self, ctx: SyncContext) -> Iterator[Incident]:
        start_row = 1
        while True:
            batch = self.spira.list_incidents_changed_since(
                ctx.project_id, ctx.filter_date, start_row, self.page_size
            )
            logger.debug(f"Fetched {len(batch)} incidents from PR{ctx.project_id} starting at row {start_row}")
            yield from batch
            if len(batch) < self.page_size:
                return
            start_row += self.page_size

    def describe(self, item: Incident) -> str:
        return f"incident IN{item.incident_id}"

    def keys(self, item: Incident, mapping=None):
        return item.incident_id, mapping.external_key if mapping else None

    def find_mapping(self, ctx, item: Incident):
        return MappingStore.find_by_internal_id(ctx.all_incident_mappings(), ctx.project_id, item.incident_id)

    def get_by_id(self, ctx, mapping) -> Issue:
        return self.gitlab.get_issue(ctx.gitlab_project, int(mapping.external_key))

    def _external_state(self, ctx: SyncContext, incident: Incident) -> Optional[str]:
        state = ctx.translator.to_external(MappedField.STATUS, incident.status_id)
        if state is None:
            logger.error(
                f"No GitLab state mapped for Spira incident status {incident.status_id} in project "
                f"PR{ctx.project_id}; skipping incident IN{incident.incident_id}"
            )
        return state

    def _unsupported_field(self, ctx: SyncContext, incident: Incident, field: MappedField, value_id):
        """Severity and priority have no GitLab issue field; a missing mapping is still reported."""
        if value_id is None:
            return
        value = ctx.translator.to_external(field, value_id)
        if value is None:
            logger.warning(
                f"No GitLab value mapped for {field.value} {value_id} of incident IN{incident.incident_id}"
            )
        else:
            logger.debug(f"Incident IN{incident.incident_id} {field.value} maps to '{value}' (not sent)")

    def _copy_comments(
        self, ctx: SyncContext, incident: Incident, issue: Issue, existing: List[str], only_new: bool
    ) -> int:
        posted = 0
        for comment in self.spira.get_incident_comments(ctx.project_id, incident.incident_id):
            if only_new and comment.creation_date is not None and comment.creation_date <= ctx.filter_date:
                continue
            if not self.dedup.should_sync(comment.text, existing):
                continue
            author = comment.user_name or f"user {comment.user_id}"
            body = self.dedup.attribute_markdown(comment.text, author)
            self.gitlab.create_issue_note(ctx.gitlab_project, issue.iid, body)
            existing.append(body)
            posted += 1
        ctx.stats["comments"] += posted
        return posted

    def create(self, ctx, incident: Incident) -> Outcome:
        state = self._external_state(ctx, incident)
        if state is None:
            return Skip(f"status {incident.status_id} has no GitLab state mapping")

        data = {
            "title": incident.name or NAME_NOT_SPECIFIED,
            "description": html_to_markdown(incident.description),
        }

        if incident.owner_id is not None:
            username = ctx.translator.user_to_external(incident.owner_id)
            user_id = ctx.translator.gitlab_user_id(username)
            if user_id is None:
                logger.warning(
                    f"No GitLab user for owner {incident.owner_id} of incident IN{incident.incident_id}; "
                    f"leaving it unassigned"
                )
            else:
                data["assignee_ids"] = [user_id]

        if incident.type_id is not None:
            issue_type = ctx.translator.to_external(MappedField.TYPE, incident.type_id)
            if issue_type is None:
                logger.warning(
                    f"No GitLab issue type mapped for incident type {incident.type_id} "
                    f"of incident IN{incident.incident_id}"
                )
            else:
                data["issue_type"] = issue_type

        self._unsupported_field(ctx, incident, MappedField.SEVERITY, incident.severity_id)
        self._unsupported_field(ctx, incident, MappedField.PRIORITY, incident.priority_id)
        custom = ctx.translator.custom_properties_to_external(incident)
        if custom:
            logger.debug(f"Incident IN{incident.incident_id} custom properties: {custom}")

        milestone = self.releases.milestone_for_release(ctx, incident.resolved_release_id)
        if milestone is not None:
            data["milestone_id"] = milestone.id

        issue = self.gitlab.create_issue(ctx.gitlab_project, data)
        ctx.new_incident_mappings.append(DataMapping(ctx.project_id, incident.incident_id, str(issue.iid)))

        if issue.web_url:
            try:
                self.spira.add_url_document(ctx.project_id, incident.incident_id, issue.web_url, LINK_DESCRIPTION)
            except SpiraApiError as e:
                logger.warning(f"Unable to link incident IN{incident.incident_id} to {issue.web_url}: {e}")

        self._copy_comments(ctx, incident, issue, existing=[], only_new=False)

        if state == "closed":
            try:
                issue = self.gitlab.set_issue_state(ctx.gitlab_project, issue.iid, "closed")
            except GitlabError as e:
                logger.warning(f"Unable to close issue #{issue.iid} for incident IN{incident.incident_id}: {e}")

        return Ok(issue, created=True)

    def update(self, ctx, incident: Incident, issue: Issue) -> Outcome:
        existing = [n.body for n in self.gitlab.get_issue_notes(ctx.gitlab_project, issue.iid)]
        self._copy_comments(ctx, incident, issue, existing=existing, only_new=True)

        if incident.last_update_date is None or issue.updated_at is None:
            return Ok(issue)
        if incident.last_update_date <= issue.updated_at:
            # GitLab side is newer; phase 2 carries its changes back.
            return Ok(issue)

        state = self._external_state(ctx, incident)
        if state is None:
            return Skip(f"status {incident.status_id} has no GitLab state mapping")

        if state != issue.state:
            try:
                issue = self.gitlab.set_issue_state(ctx.gitlab_project, issue.iid, state)
            except (GitlabError, ValueError) as e:
                logger.warning(f"Unable to set issue #{issue.iid} to '{state}': {e}")

        milestone = self.releases.milestone_for_release(ctx, incident.resolved_release_id)
        if milestone is not None and (issue.milestone is None or issue.milestone.id != milestone.id):
            issue = self.gitlab.set_issue_milestone(ctx.gitlab_project, issue.iid, milestone.id)

        return Ok(issue)


class ExternalToInternal(DirectionAdapter):
    """GitLab issues -> Spira incidents"""

    direction = SyncDirection.GITLAB_TO_SPIRA

    def list_changed(self, ctx: SyncContext) -> Iterator[Issue]:
        yield from self.gitlab.get_issues(ctx.gitlab_project, updated_after=ctx.filter_date)

    def describe(self, item: Issue) -> str:
        return f"issue #{item.iid}"

    def keys(self, item: Issue, mapping=None):
        return (mapping.internal_id if mapping else None), str(item.iid)

    def find_mapping(self, ctx, item: Issue):
        return MappingStore.find_by_external_key(ctx.all_incident_mappings(), ctx.project_id, str(item.iid))

    def get_by_id(self, ctx, mapping) -> Incident:
        return self.spira.get_incident(ctx.project_id, mapping.internal_id)

    def _apply_status(self, ctx: SyncContext, incident: Incident, issue: Issue, is_new: bool):
        status_id = ctx.translator.to_internal(MappedField.STATUS, issue.state, primary_only=True)
        if status_id is None:
            logger.warning(
                f"No Spira status mapped for GitLab state '{issue.state}' in project PR{ctx.project_id}; "
                f"status of {self.describe(issue)} left unchanged"
            )
            return
        if not is_new and ctx.translator.to_external(MappedField.STATUS, incident.status_id) == issue.state:
            # Several Spira statuses can share one GitLab state; keep the more specific one.
            return
        incident.status_id = status_id

    def _apply_common(self, ctx: SyncContext, incident: Incident, issue: Issue, is_new: bool):
        self._apply_status(ctx, incident, issue, is_new)
        if issue.closed_at is not None:
            incident.closed_date = issue.closed_at
        release_id = self.releases.release_for_milestone(ctx, issue.milestone)
        if release_id is not None:
            incident.resolved_release_id = release_id

    def _copy_notes(self, ctx: SyncContext, incident_id: int, issue: Issue) -> int:
        issue.notes = self.gitlab.get_issue_notes(ctx.gitlab_project, issue.iid)
        existing = [c.text for c in self.spira.get_incident_comments(ctx.project_id, incident_id)]
        posted = 0
        for note in issue.notes:
            if self.dedup.is_system(note):
                continue
            if not self.dedup.should_sync(note.body, existing):
                continue
            author = note.author or "unknown"
            text = self.dedup.attribute_html(markdown_to_html(note.body), author)
            self.spira.add_incident_comment(
                ctx.project_id, incident_id, text, ctx.translator.user_to_internal(note.author)
            )
            existing.append(text)
            posted += 1
        ctx.stats["comments"] += posted
        return posted

    def _rejected(self, issue: Issue, e: SpiraValidationError) -> Fatal:
        for field_name, message in e.messages:
            logger.error(f"Spira rejected {self.describe(issue)}: {field_name}={message}")
        logger.error(f"Spira rejected {self.describe(issue)}: {e.summary}")
        return Fatal(f"validation failed: {e.describe()}")

    def create(self, ctx, issue: Issue) -> Outcome:
        incident = Incident(
            incident_id=None,
            project_id=ctx.project_id,
            name=issue.title or NAME_NOT_SPECIFIED,
            description=markdown_to_html(issue.description) or DESCRIPTION_NOT_SPECIFIED,
            creation_date=issue.created_at,
        )

        opener_id = ctx.translator.user_to_internal(issue.author)
        if opener_id is None:
            logger.warning(
                f"No Spira user for GitLab author '{issue.author}' of {self.describe(issue)}; "
                f"the synchronizing account is used"
            )
        incident.opener_id = opener_id

        self._apply_common(ctx, incident, issue, is_new=True)

        try:
            created = self.spira.create_incident(ctx.project_id, incident)
        except SpiraValidationError as e:
            return self._rejected(issue, e)

        ctx.new_incident_mappings.append(DataMapping(ctx.project_id, created.incident_id, str(issue.iid)))

        if issue.web_url:
            try:
                self.spira.add_url_document(ctx.project_id, created.incident_id, issue.web_url, LINK_DESCRIPTION)
            except SpiraApiError as e:
                logger.warning(f"Unable to link incident IN{created.incident_id} to {issue.web_url}: {e}")

        created = self.spira.get_incident(ctx.project_id, created.incident_id)
        self._copy_notes(ctx, created.incident_id, issue)
        return Ok(created, created=True)

    def update(self, ctx, issue: Issue, incident: Incident) -> Outcome:
        if issue.title:
            incident.name = issue.title
        if issue.description:
            incident.description = markdown_to_html(issue.description)

        self._apply_common(ctx, incident, issue, is_new=False)

        try:
            self.spira.update_incident(ctx.project_id, incident)
        except SpiraValidationError as e:
            return self._rejected(issue, e)

        self._copy_notes(ctx, incident.incident_id, issue)
        return Ok(incident)
