"""
Celery tasks for crawl runs.
"""

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings

from apps.core.exceptions import NotFoundError

from .exceptions import CrawlFailed
from .queue import QueueStore

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=0)
def run_crawl(self, run_id: int):
    """Drive one run on a worker until it completes, pauses or fails."""
    from .services import execute_run

    try:
        stats = execute_run(run_id)
        return {"run_id": run_id, "status": "finished", "stats": stats}
    except NotFoundError:
        logger.error("Crawl run %s not found", run_id)
        return {"error": "not_found", "run_id": run_id}
    except CrawlFailed as exc:
        logger.warning("Crawl run %s failed: %s", run_id, exc)
        return {"run_id": run_id, "status": "failed", "failed_count": exc.failed_count}


@shared_task
def reap_stale_items():
    """Return items stuck in processing to pending across all active runs."""
    stale_after = getattr(settings, 'CRAWLER_STALE_PROCESSING_SECONDS', 900)
    released = QueueStore().reap_stale(older_than=timedelta(seconds=stale_after))
    if released:
        logger.info("Released %d stale queue items", released)
    return {"released": released}
