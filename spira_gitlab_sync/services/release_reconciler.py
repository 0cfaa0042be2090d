"""Release <-> milestone reconciliation"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from spira_gitlab_sync.config import settings
from spira_gitlab_sync.domain import DataMapping, Milestone, Release, utcnow
from spira_gitlab_sync.services.context import SyncContext
from spira_gitlab_sync.services.mapping_store import MappingStore
from spira_gitlab_sync.services.spira_client import SpiraApiError, SpiraValidationError

logger = logging.getLogger(__name__)

RELEASE_STATUS_IN_PROGRESS = 2
RELEASE_STATUS_COMPLETED = 3
RELEASE_TYPE_ITERATION = 3

# GitLab hands back placeholder dates for unset fields; anything this old is unusable.
EARLIEST_USABLE_DATE = datetime(1776, 7, 4)


def _usable(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value <= EARLIEST_USABLE_DATE:
        return None
    return value


class ReleaseReconciler:
    """Makes sure a Spira release has a GitLab milestone and vice versa"""

    def __init__(self, spira, gitlab, version_max_length: Optional[int] = None):
        self.spira = spira
        self.gitlab = gitlab
        self.version_max_length = version_max_length or settings.release_version_max_length

    def milestone_for_release(self, ctx: SyncContext, release_id: Optional[int]) -> Optional[Milestone]:
        """Milestone for a Spira release, creating it on GitLab when needed."""
        if release_id is None:
            return None

        mapping = MappingStore.find_by_internal_id(ctx.live_release_mappings(), ctx.project_id, release_id)
        if mapping is not None:
            milestone = ctx.find_milestone(iid=int(mapping.external_key))
            if milestone is not None:
                return milestone
            # Deleted on GitLab since the mapping was recorded.
            logger.warning(
                f"Milestone {mapping.external_key} for release RL{release_id} no longer exists "
                f"in {ctx.gitlab_project}; recreating it"
            )
            ctx.removed_release_mappings.append(mapping)

        try:
            release = self.spira.get_release(ctx.project_id, release_id)
        except SpiraApiError as e:
            logger.warning(f"Unable to read release RL{release_id} in project PR{ctx.project_id}: {e}")
            return None

        milestone = ctx.find_milestone(title=release.name)
        if milestone is None or MappingStore.find_by_external_key(
            ctx.live_release_mappings(), ctx.project_id, str(milestone.iid)
        ):
            data = {"title": release.name, "description": release.description or ""}
            if release.start_date:
                data["start_date"] = release.start_date.date().isoformat()
            if release.end_date:
                data["due_date"] = release.end_date.date().isoformat()
            milestone = self.gitlab.create_milestone(ctx.gitlab_project, data)
            if milestone is None:
                return None
            ctx.milestones.append(milestone)
        else:
            logger.info(f"Linking release RL{release_id} to existing milestone '{milestone.title}'")

        ctx.new_release_mappings.append(DataMapping(ctx.project_id, release_id, str(milestone.iid)))
        return milestone

    def release_for_milestone(self, ctx: SyncContext, milestone: Optional[Milestone]) -> Optional[int]:
        """Spira release id for a GitLab milestone, creating the release when needed."""
        if milestone is None:
            return None

        mapping = MappingStore.find_by_external_key(
            ctx.live_release_mappings(), ctx.project_id, str(milestone.iid)
        )
        if mapping is not None:
            return mapping.internal_id

        now = utcnow()
        start = _usable(milestone.start_date) or _usable(milestone.created_at) or now
        end = _usable(milestone.due_date) or now + timedelta(days=30)
        release = Release(
            release_id=None,
            name=milestone.title,
            description=milestone.description,
            version_number=milestone.title[: self.version_max_length],
            start_date=start,
            end_date=end,
            status_id=RELEASE_STATUS_IN_PROGRESS if milestone.state == "active" else RELEASE_STATUS_COMPLETED,
            type_id=RELEASE_TYPE_ITERATION,
            active=True,
        )
        try:
            created = self.spira.create_release(ctx.project_id, release)
        except SpiraValidationError as e:
            logger.warning(f"Spira rejected release for milestone '{milestone.title}': {e.describe()}")
            return None
        except SpiraApiError as e:
            logger.warning(f"Unable to create release for milestone '{milestone.title}': {e}")
            return None

        ctx.new_release_mappings.append(DataMapping(ctx.project_id, created.release_id, str(milestone.iid)))
        return created.release_id
