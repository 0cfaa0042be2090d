"""Service entry point: run the sync scheduler until interrupted"""

import logging
import time

from spira_gitlab_sync.config import settings
from spira_gitlab_sync.models.base import init_db
from spira_gitlab_sync.scheduler import scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    logger.info("Starting Spira GitLab Data Sync")
    init_db()
    scheduler.start()
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Stopping Spira GitLab Data Sync")
    finally:
        scheduler.stop()


if __name__ == "__main__":
    main()
