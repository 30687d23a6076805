"""
Admission slots — one holder per key at a time.

  slot:account:{id}   at most one job (or sync batch) per account
  slot:mapping:{id}   at most one in-progress run per mapping

A slot is a Redis key set with NX, so two submitters racing on the same
account can never both win, even from different processes. The expiry only
guards against a worker that died without releasing.
"""
import logging

from workloom.config import JOB_TIMEOUT_SECONDS

logger = logging.getLogger('services.slots')


class Slots:

    def __init__(self, redis_client, prefix='slot:account', ttl=JOB_TIMEOUT_SECONDS * 2):
        self.redis = redis_client
        self.prefix = prefix
        self.ttl = ttl

    def _key(self, owner_id):
        return f'{self.prefix}:{owner_id}'

    def acquire(self, owner_id, holder) -> bool:
        """Claim the slot for `holder` (a job, run or operation id). False if taken."""
        ok = bool(self.redis.set(self._key(owner_id), holder, nx=True, ex=self.ttl))
        if not ok:
            logger.info("%s busy (held by %s)", self._key(owner_id), self.holder(owner_id))
        return ok

    def release(self, owner_id, holder):
        """Release only if `holder` still owns the slot."""
        key = self._key(owner_id)
        if self.redis.get(key) == holder:
            self.redis.delete(key)

    def holder(self, owner_id):
        return self.redis.get(self._key(owner_id))

    def is_busy(self, owner_id) -> bool:
        return bool(self.redis.exists(self._key(owner_id)))

    def clear(self, owner_id):
        """Drop the slot regardless of holder (owner deleted)."""
        self.redis.delete(self._key(owner_id))


def account_slots(redis_client):
    return Slots(redis_client, prefix='slot:account')


def mapping_slots(redis_client):
    return Slots(redis_client, prefix='slot:mapping')
