"""
Shared client instances — Redis and the RQ work queue.

redis.from_url() does not connect until first use, so importing this module is
always safe (even when Redis is unreachable during tests). The queue is built
lazily for the same reason.
"""
import logging
import redis

from workloom.config import REDIS_URL

logger = logging.getLogger('workloom.extensions')

# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# ── RQ ────────────────────────────────────────────────────────────────────────
_queue = None


def get_queue():
    """Return the shared RQ queue (created on first call)."""
    global _queue
    if _queue is None:
        from rq import Queue
        # RQ pickles job payloads, so it needs a client without decode_responses.
        _queue = Queue(connection=redis.from_url(REDIS_URL))
        logger.info("RQ queue initialized on %s", REDIS_URL.rsplit('@', 1)[-1])
    return _queue
