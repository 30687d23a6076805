"""
RQ task entry points. Each task opens its own DB session.

    rq worker --url $REDIS_URL
"""
import logging

from workloom.database import get_session
from workloom.logging_config import configure_logging

logger = logging.getLogger('workloom.tasks')

_logging_ready = False


def _setup():
    global _logging_ready
    if not _logging_ready:
        configure_logging()
        _logging_ready = True


def run_scraping_job(job_id: str):
    """Execute one ScrapingJob (enqueued by ScrapingJobScheduler.submit)."""
    from workloom.services import build_services

    _setup()
    session = get_session()
    try:
        job = build_services(session).scheduler.execute(job_id)
        if job is not None:
            logger.info("Job %s finished with status %s", job_id, job.status)
    finally:
        session.close()


def run_due_mappings():
    """Start every mapping whose next_run_at has passed. Returns the number of runs started."""
    from workloom.services import build_services

    _setup()
    session = get_session()
    try:
        started = build_services(session).runs.run_due()
        return len(started)
    finally:
        session.close()
