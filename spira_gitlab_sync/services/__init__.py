"""Services"""

from spira_gitlab_sync.services.gitlab_client import GitLabClient
from spira_gitlab_sync.services.reconciler import ReconciliationEngine, RunResult, RunStatus
from spira_gitlab_sync.services.spira_client import SpiraClient

__all__ = ["GitLabClient", "SpiraClient", "ReconciliationEngine", "RunResult", "RunStatus"]
