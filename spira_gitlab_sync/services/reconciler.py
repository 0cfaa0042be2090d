"""Reconciliation engine: one run over every project pairing of a data-sync"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from spira_gitlab_sync.domain import normalize_utc_naive, utcnow
from spira_gitlab_sync.models import ArtifactType, MappedField, SyncDirection, SyncLog, SyncStatus
from spira_gitlab_sync.services.comment_dedup import CommentDeduplicator
from spira_gitlab_sync.services.context import (
    Fatal,
    Ok,
    Outcome,
    PreconditionError,
    Skip,
    SyncContext,
    new_stats,
)
from spira_gitlab_sync.services.directions import DirectionAdapter, ExternalToInternal, InternalToExternal
from spira_gitlab_sync.services.gitlab_client import project_path
from spira_gitlab_sync.services.mapping_store import MappingStore
from spira_gitlab_sync.services.release_reconciler import ReleaseReconciler
from spira_gitlab_sync.services.spira_client import SpiraApiError
from spira_gitlab_sync.services.value_translator import ValueTranslator

logger = logging.getLogger(__name__)

# Spira cannot filter on dates before this.
EARLIEST_FILTER_DATE = datetime(1990, 1, 1)

_TRANSLATED_FIELDS = (MappedField.STATUS, MappedField.SEVERITY, MappedField.PRIORITY, MappedField.TYPE)


class RunStatus(str, enum.Enum):
    """Overall result reported back to the scheduler"""
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class RunResult:
    status: RunStatus
    server_time: datetime
    projects: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)


def compute_filter_date(last_sync: Optional[datetime], time_offset_hours: int = 0) -> datetime:
    """Cutoff for "changed since" queries on both systems"""
    if last_sync is None:
        return EARLIEST_FILTER_DATE
    filter_date = normalize_utc_naive(last_sync) - timedelta(hours=time_offset_hours or 0)
    return max(filter_date, EARLIEST_FILTER_DATE)


class ReconciliationEngine:
    """Runs Spira -> GitLab then GitLab -> Spira for each mapped project"""

    def __init__(
        self,
        db: Session,
        data_sync,
        spira,
        gitlab,
        store: Optional[MappingStore] = None,
        dedup: Optional[CommentDeduplicator] = None,
        page_size: Optional[int] = None,
    ):
        self.db = db
        self.data_sync = data_sync
        self.spira = spira
        self.gitlab = gitlab
        self.store = store or MappingStore(db, data_sync.id)
        self.dedup = dedup or CommentDeduplicator()
        self.releases = ReleaseReconciler(spira, gitlab)
        self.internal_to_external = InternalToExternal(spira, gitlab, self.releases, self.dedup, page_size)
        self.external_to_internal = ExternalToInternal(spira, gitlab, self.releases, self.dedup)

    def run(self, last_sync: Optional[datetime] = None, server_time: Optional[datetime] = None) -> RunResult:
        """Sync every project pairing; `server_time` is what the caller stores as the next last_sync."""
        result = RunResult(status=RunStatus.SUCCESS, server_time=server_time or utcnow())
        name = getattr(self.data_sync, "name", self.data_sync.id)
        logger.info(f"Starting sync for data-sync {name}")

        if not self.spira.authenticate():
            result.status = RunStatus.ERROR
            result.errors.append("Spira authentication failed")
            self._log_sync(None, SyncStatus.FAILED, message="Spira authentication failed")
            return result

        filter_date = compute_filter_date(last_sync, getattr(self.data_sync, "time_offset_hours", 0))
        failed = False
        for project in self.store.get_project_mappings():
            project_id = project.internal_id
            try:
                stats = self._sync_project(project_id, project.external_key, filter_date)
            except PreconditionError as e:
                failed = True
                logger.error(f"Sync of project PR{project_id} <-> '{project.external_key}' skipped: {e}")
                result.errors.append(f"PR{project_id}: {e}")
                result.projects[project_id] = {"status": "failed", "error": str(e)}
                self._log_sync(project_id, SyncStatus.FAILED, message=f"Sync failed: {e}")
                continue
            result.projects[project_id] = stats

        if failed:
            result.status = RunStatus.ERROR
        elif any(p.get("status") == "warning" for p in result.projects.values()):
            result.status = RunStatus.WARNING

        logger.info(f"Sync completed for data-sync {name}: {result.status.value}")
        return result

    def _precondition(self, what: str, fn):
        try:
            return fn()
        except PreconditionError:
            raise
        except Exception as e:
            raise PreconditionError(f"{what} failed: {e}") from e

    def _connect(self, project_id: int):
        if not self.spira.connect_to_project(project_id):
            raise PreconditionError(f"unable to connect to Spira project PR{project_id}")

    def _warn_unknown_custom_properties(self, project_id: int, mapped_ids):
        try:
            definitions = self.spira.get_incident_custom_properties(project_id)
        except SpiraApiError as e:
            logger.warning(f"Unable to read incident custom properties of PR{project_id}: {e}")
            return
        defined = {d.get("CustomPropertyId") for d in definitions}
        for property_id in sorted(set(mapped_ids) - defined):
            logger.warning(f"Mapped custom property {property_id} is not defined for incidents in PR{project_id}")

    def _build_translator(self, project_id: int) -> ValueTranslator:
        value_mappings = {f: self.store.get_value_mappings(f, project_id) for f in _TRANSLATED_FIELDS}
        custom_properties = self.store.get_custom_property_mappings(project_id)
        if custom_properties:
            self._warn_unknown_custom_properties(project_id, custom_properties.keys())
        return ValueTranslator(
            project_id,
            value_mappings,
            self.store.get_user_mappings(),
            spira=self.spira,
            gitlab=self.gitlab,
            auto_map_users=bool(getattr(self.data_sync, "auto_map_users", False)),
            custom_property_fields={pid: row.external_key for pid, row in custom_properties.items()},
            custom_value_mappings={
                pid: self.store.get_value_mappings(
                    MappedField.CUSTOM_PROPERTY_VALUE, project_id, custom_property_id=pid
                )
                for pid in custom_properties
            },
        )

    def _prepare(self, project_id: int, gitlab_project: str, filter_date: datetime) -> SyncContext:
        milestones = self._precondition(
            f"fetching milestones of {gitlab_project}",
            lambda: self.gitlab.get_project_milestones(gitlab_project),
        )
        self._connect(project_id)
        translator = self._precondition(
            "reading value mappings", lambda: self._build_translator(project_id)
        )
        ctx = SyncContext(
            data_sync_id=self.data_sync.id,
            project_id=project_id,
            gitlab_project=gitlab_project,
            filter_date=filter_date,
            translator=translator,
            milestones=list(milestones),
        )
        self._precondition("reading artifact mappings", lambda: self._reload_mappings(ctx))
        return ctx

    def _reload_mappings(self, ctx: SyncContext):
        ctx.incident_mappings = self.store.get_artifact_mappings(ArtifactType.INCIDENT, ctx.project_id)
        ctx.release_mappings = self.store.get_artifact_mappings(ArtifactType.RELEASE, ctx.project_id)

    def _persist(self, ctx: SyncContext):
        """Write the phase's mapping changes, then re-read the tables."""
        try:
            # Stale release mappings go first: the replacement uses the same release id.
            self.store.remove_artifact_mappings(ArtifactType.RELEASE, ctx.removed_release_mappings)
            self.store.add_artifact_mappings(ArtifactType.RELEASE, ctx.new_release_mappings)
            self.store.add_artifact_mappings(ArtifactType.INCIDENT, ctx.new_incident_mappings)
            self._reload_mappings(ctx)
        except Exception as e:
            self.db.rollback()
            raise PreconditionError(f"saving mappings for PR{ctx.project_id} failed: {e}") from e
        ctx.reset_pending()

    def _reconnect(self, ctx: SyncContext):
        if not self.spira.authenticate():
            raise PreconditionError("Spira re-authentication failed")
        self._connect(ctx.project_id)
        ctx.milestones = list(
            self._precondition(
                f"fetching milestones of {ctx.gitlab_project}",
                lambda: self.gitlab.get_project_milestones(ctx.gitlab_project),
            )
        )

    def _sync_project(self, project_id: int, project_key: str, filter_date: datetime) -> Dict[str, Any]:
        gitlab_project = project_path(getattr(self.data_sync, "gitlab_namespace", None), project_key)
        logger.info(f"Syncing Spira project PR{project_id} with {gitlab_project} (changes since {filter_date})")

        ctx = self._prepare(project_id, gitlab_project, filter_date)

        to_gitlab = self._run_phase(self.internal_to_external, ctx)
        self._persist(ctx)

        self._reconnect(ctx)
        to_spira = self._run_phase(self.external_to_internal, ctx)
        self._persist(ctx)

        problems = sum(s["skipped"] + s["errors"] for s in (to_gitlab, to_spira))
        stats = {
            "status": "warning" if problems else "success",
            SyncDirection.SPIRA_TO_GITLAB.value: to_gitlab,
            SyncDirection.GITLAB_TO_SPIRA.value: to_spira,
        }
        logger.info(f"Sync completed for PR{project_id}: {stats}")
        self._log_sync(
            project_id,
            SyncStatus.WARNING if problems else SyncStatus.SUCCESS,
            message=f"Sync completed: {stats}",
        )
        return stats

    def _run_phase(self, adapter: DirectionAdapter, ctx: SyncContext) -> Dict[str, int]:
        """Reconcile every changed artifact; one artifact's failure never stops the loop.

        Every page of changes is read before the first artifact is written, so a
        listing failure leaves nothing created without its mapping.
        """
        ctx.stats = new_stats()
        items = self._precondition(
            f"listing changes ({adapter.direction.value})", lambda: list(adapter.list_changed(ctx))
        )
        for item in items:
            outcome = self._reconcile_one(adapter, ctx, item)
            self._record(adapter, ctx, item, outcome)
        return ctx.stats

    def _reconcile_one(self, adapter: DirectionAdapter, ctx: SyncContext, item: Any) -> Outcome:
        try:
            mapping = adapter.find_mapping(ctx, item)
            if mapping is None:
                return adapter.create(ctx, item)
            counterpart = adapter.get_by_id(ctx, mapping)
            return adapter.update(ctx, item, counterpart)
        except Exception as e:
            logger.debug(f"Error syncing {adapter.describe(item)} in PR{ctx.project_id}", exc_info=True)
            return Fatal(f"{type(e).__name__}: {e}")

    def _record(self, adapter: DirectionAdapter, ctx: SyncContext, item: Any, outcome: Outcome):
        internal_id, external_key = adapter.keys(item, adapter.find_mapping(ctx, item))
        if isinstance(outcome, Ok):
            ctx.stats["created" if outcome.created else "updated"] += 1
            logger.debug(f"Synced {adapter.describe(item)} ({'created' if outcome.created else 'updated'})")
            return

        if isinstance(outcome, Skip):
            ctx.stats["skipped"] += 1
            status = SyncStatus.SKIPPED
            logger.warning(f"Skipped {adapter.describe(item)}: {outcome.reason}")
        else:
            ctx.stats["errors"] += 1
            status = SyncStatus.FAILED
            logger.error(f"Failed to sync {adapter.describe(item)}: {outcome.reason}")
        self._log_sync(
            ctx.project_id,
            status,
            adapter.direction,
            f"{adapter.describe(item)}: {outcome.reason}",
            internal_id=internal_id,
            external_key=external_key,
        )

    def _log_sync(
        self,
        project_id: Optional[int],
        status: SyncStatus,
        direction: Optional[SyncDirection] = None,
        message: str = "",
        internal_id: Optional[int] = None,
        external_key: Optional[str] = None,
    ):
        """Log sync operation"""
        log = SyncLog(
            data_sync_id=self.data_sync.id,
            project_id=project_id,
            status=status,
            direction=direction,
            message=message,
            internal_id=internal_id,
            external_key=external_key,
        )
        self.db.add(log)
        self.db.commit()
