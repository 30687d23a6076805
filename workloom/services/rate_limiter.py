"""
Per-account request spacing and daily discovery quota.

Counters live in Redis so every worker process shares them:

  rl:{account_id}:{YYYY-MM-DD}   units used on that provider-local day (INCR)
  rl:{account_id}:last           epoch seconds of the last granted acquisition
  rl:rotation:{pool_key}         account id served last in a rotation pool

The day key is computed in PROVIDER_TIMEZONE, so budgets roll over at the
provider's midnight rather than ours. An acquisition that would exceed the
budget is rolled back (DECR) before QuotaExceeded is raised, which keeps the
counter at most daily_limit even under concurrent callers.
"""
import logging
import time
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from workloom.config import PROVIDER_TIMEZONE
from workloom.errors import QuotaExceeded

logger = logging.getLogger('services.rate_limiter')

# One member of a rotation pool
Budget = namedtuple('Budget', ['account_id', 'daily_limit', 'request_delay_ms'])

# Day keys outlive the day so usage() can still be read right after rollover
DAY_KEY_TTL = 2 * 86400


class RateLimiter:

    def __init__(self, redis_client, clock=time.time, sleep=time.sleep, tz=PROVIDER_TIMEZONE):
        self.redis = redis_client
        self.clock = clock
        self.sleep = sleep
        self.tz = ZoneInfo(tz)

    # ── Calendar ──────────────────────────────────────────────────────

    def _local_now(self):
        return datetime.fromtimestamp(self.clock(), tz=timezone.utc).astimezone(self.tz)

    def provider_date(self):
        """Today's date in the provider's timezone."""
        return self._local_now().date()

    def seconds_until_rollover(self):
        now = self._local_now()
        midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=self.tz)
        return max(1, int((midnight - now).total_seconds()))

    def _day_key(self, account_id):
        return f'rl:{account_id}:{self.provider_date().isoformat()}'

    # ── Acquisition ───────────────────────────────────────────────────

    def acquire(self, account_id, daily_limit, request_delay_ms, units=1):
        """
        Block until spacing has elapsed, then take `units` from today's budget.

        units=0 enforces spacing only (e.g. a search page that costs no quota).
        Returns the remaining budget. Raises QuotaExceeded when exhausted.
        """
        self._wait_for_spacing(account_id, request_delay_ms)

        remaining = None
        if units > 0:
            key = self._day_key(account_id)
            used = self.redis.incr(key, units)
            if used == units:
                self.redis.expire(key, DAY_KEY_TTL)
            if used > daily_limit:
                self.redis.decr(key, units)
                retry_after = self.seconds_until_rollover()
                logger.info(
                    "Account %s quota exhausted (%d/day), resets in %ds",
                    account_id, daily_limit, retry_after,
                )
                raise QuotaExceeded(account_id, daily_limit, retry_after=retry_after)
            remaining = daily_limit - used

        self.redis.set(f'rl:{account_id}:last', repr(self.clock()), ex=DAY_KEY_TTL)
        return remaining

    def _wait_for_spacing(self, account_id, request_delay_ms):
        if not request_delay_ms:
            return
        last = self.redis.get(f'rl:{account_id}:last')
        if last is None:
            return
        wait = request_delay_ms / 1000.0 - (self.clock() - float(last))
        if wait > 0:
            self.sleep(wait)

    def acquire_rotating(self, pool_key, pool, units=1):
        """
        Serve one acquisition from a pool of equivalent accounts, round-robin.

        Starts after the account served last and skips exhausted ones. Returns
        the Budget that served. QuotaExceeded only when every member is out.
        """
        if not pool:
            raise ValueError('rotation pool is empty')

        pointer_key = f'rl:rotation:{pool_key}'
        last = self.redis.get(pointer_key)
        ids = [b.account_id for b in pool]
        start = (ids.index(last) + 1) if last in ids else 0
        ordered = pool[start:] + pool[:start]

        retry_after = None
        for budget in ordered:
            try:
                self.acquire(budget.account_id, budget.daily_limit, budget.request_delay_ms, units=units)
            except QuotaExceeded as e:
                retry_after = e.retry_after
                continue
            self.redis.set(pointer_key, budget.account_id)
            return budget

        raise QuotaExceeded(pool_key, sum(b.daily_limit for b in pool), retry_after=retry_after)

    # ── Reporting ─────────────────────────────────────────────────────

    def used(self, account_id):
        val = self.redis.get(self._day_key(account_id))
        return int(val) if val else 0

    def usage(self, account_id, daily_limit):
        used = self.used(account_id)
        return {
            'date': self.provider_date().isoformat(),
            'used': used,
            'limit': daily_limit,
            'remaining': max(0, daily_limit - used),
            'resets_in': self.seconds_until_rollover(),
        }
