"""Per-project sync state and per-artifact outcomes"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from spira_gitlab_sync.domain import DataMapping, Milestone


class PreconditionError(Exception):
    """A project pairing cannot be synced (connect, milestone fetch, listing, persisting)."""


@dataclass
class Ok:
    artifact: Any = None
    created: bool = False


@dataclass
class Skip:
    reason: str


@dataclass
class Fatal:
    reason: str


Outcome = Union[Ok, Skip, Fatal]


def new_stats() -> Dict[str, int]:
    return {"created": 0, "updated": 0, "skipped": 0, "errors": 0, "comments": 0}


@dataclass
class SyncContext:
    """Everything one project pass needs; discarded once the pass is done.

    Mapping tables are read at phase start. Mappings discovered during a
    phase are only queued here and written out at the end of the phase.
    """

    data_sync_id: int
    project_id: int
    gitlab_project: str
    filter_date: datetime
    translator: Any
    milestones: List[Milestone] = field(default_factory=list)
    incident_mappings: List[DataMapping] = field(default_factory=list)
    release_mappings: List[DataMapping] = field(default_factory=list)
    new_incident_mappings: List[DataMapping] = field(default_factory=list)
    new_release_mappings: List[DataMapping] = field(default_factory=list)
    removed_release_mappings: List[DataMapping] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=new_stats)

    def all_incident_mappings(self) -> List[DataMapping]:
        return self.incident_mappings + self.new_incident_mappings

    def live_release_mappings(self) -> List[DataMapping]:
        """Stored and newly created release mappings, minus the ones queued for removal."""
        return [
            m
            for m in self.release_mappings + self.new_release_mappings
            if m not in self.removed_release_mappings
        ]

    def find_milestone(self, iid: Optional[int] = None, title: Optional[str] = None) -> Optional[Milestone]:
        for milestone in self.milestones:
            if iid is not None and milestone.iid == iid:
                return milestone
            if title is not None and milestone.title == title:
                return milestone
        return None

    def reset_pending(self):
        """Forget queued mapping changes once they have been persisted."""
        self.new_incident_mappings = []
        self.new_release_mappings = []
        self.removed_release_mappings = []
