"""Background scheduler for periodic sync"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from spira_gitlab_sync.config import settings
from spira_gitlab_sync.domain import utcnow
from spira_gitlab_sync.models import DataSyncSystem
from spira_gitlab_sync.models.base import SessionLocal
from spira_gitlab_sync.services.gitlab_client import GitLabClient
from spira_gitlab_sync.services.reconciler import ReconciliationEngine, RunStatus
from spira_gitlab_sync.services.spira_client import SpiraClient

logger = logging.getLogger(__name__)


def build_engine(db, data_sync: DataSyncSystem) -> ReconciliationEngine:
    """Engine wired to the real Spira and GitLab servers of a data-sync"""
    spira = SpiraClient(data_sync.spira_url, data_sync.spira_login, data_sync.spira_api_key)
    gitlab = GitLabClient(data_sync.gitlab_url or settings.gitlab_default_url, data_sync.gitlab_token)
    return ReconciliationEngine(db, data_sync, spira, gitlab)


class SyncScheduler:
    """Scheduler for periodic data-sync runs"""

    def __init__(self, session_factory=SessionLocal, engine_factory=build_engine):
        self.scheduler = BackgroundScheduler()
        self.session_factory = session_factory
        self.engine_factory = engine_factory

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Sync scheduler started")
        self.schedule_all()

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown()
        logger.info("Sync scheduler stopped")

    def schedule_all(self):
        """Schedule jobs for all enabled data-syncs"""
        db = self.session_factory()
        try:
            enabled = db.query(DataSyncSystem).filter(DataSyncSystem.sync_enabled == True).all()  # noqa: E712
            for data_sync in enabled:
                self.schedule(
                    data_sync.id, data_sync.sync_interval_minutes or settings.default_sync_interval_minutes
                )
        finally:
            db.close()

    def schedule(self, data_sync_id: int, interval_minutes: int):
        """Schedule (or reschedule) the job for one data-sync"""
        job_id = f"data_sync_{data_sync_id}"
        self.scheduler.add_job(
            func=self.run_data_sync,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=job_id,
            args=[data_sync_id],
            replace_existing=True,
        )
        logger.info(f"Scheduled data-sync {data_sync_id} every {interval_minutes} minutes")

    def unschedule(self, data_sync_id: int):
        job_id = f"data_sync_{data_sync_id}"
        if self.scheduler.get_job(job_id) is not None:
            self.scheduler.remove_job(job_id)
            logger.info(f"Unscheduled data-sync {data_sync_id}")

    def run_data_sync(self, data_sync_id: int):
        """Job function: one run, then advance last_sync_at unless the run failed"""
        db = self.session_factory()
        try:
            data_sync = db.query(DataSyncSystem).filter(DataSyncSystem.id == data_sync_id).first()
            if data_sync is None:
                logger.warning(f"Data-sync {data_sync_id} no longer exists; removing its job")
                self.unschedule(data_sync_id)
                return None
            if not data_sync.sync_enabled:
                logger.info(f"Sync disabled for data-sync {data_sync.name}")
                return None

            logger.info(f"Running scheduled sync for data-sync {data_sync.name}")
            server_time = utcnow()
            engine = self.engine_factory(db, data_sync)
            result = engine.run(data_sync.last_sync_at, server_time)

            if result.status != RunStatus.ERROR:
                data_sync.last_sync_at = result.server_time
                db.commit()
            logger.info(f"Scheduled sync completed for data-sync {data_sync.name}: {result.status.value}")
            return result
        except Exception as e:
            logger.error(f"Scheduled sync failed for data-sync {data_sync_id}: {e}")
            return None
        finally:
            db.close()


# Global scheduler instance
scheduler = SyncScheduler()
