"""
Per-account consecutive-failure tracking with Redis-backed state.

One breaker per account (name = account id). States:
  - CLOSED → connector calls are healthy
  - OPEN   → failure_threshold consecutive failures; the account goes to ERROR

There is no timed HALF_OPEN here: an OPEN breaker only closes through reset(),
which the connection validator calls after a successful check.

Health metrics are kept in a Redis hash so the account stats endpoint can show
the last error without a DB round trip.
"""
import logging
import time

from workloom.config import ACCOUNT_FAILURE_THRESHOLD

logger = logging.getLogger('services.circuit_breaker')

# State constants
CLOSED = 'closed'
OPEN = 'open'


class CircuitBreaker:
    """
    Redis-backed consecutive-failure counter.

    Usage:
        cb = CircuitBreaker(account.id, redis_client, failure_threshold=3)
        if cb.record_failure(err):
            ...  # threshold reached, flip the account to ERROR
    """

    # Redis key prefix
    PREFIX = 'cb:account'

    def __init__(self, name, redis_client, failure_threshold=ACCOUNT_FAILURE_THRESHOLD):
        self.name = name
        self.redis = redis_client
        self.failure_threshold = failure_threshold

    # ── Redis keys ────────────────────────────────────────────────────

    @property
    def _state_key(self):
        return f'{self.PREFIX}:{self.name}:state'

    @property
    def _failures_key(self):
        return f'{self.PREFIX}:{self.name}:failures'

    @property
    def _health_key(self):
        return f'{self.PREFIX}:{self.name}:health'

    # ── State ─────────────────────────────────────────────────────────

    @property
    def state(self):
        return self.redis.get(self._state_key) or CLOSED

    @property
    def failure_count(self):
        val = self.redis.get(self._failures_key)
        return int(val) if val else 0

    def record_success(self):
        """A successful connector call breaks the failure streak."""
        pipe = self.redis.pipeline()
        pipe.set(self._failures_key, 0)
        pipe.hincrby(self._health_key, 'success', 1)
        pipe.hset(self._health_key, 'last_success', str(time.time()))
        pipe.execute()

    def record_failure(self, error=''):
        """
        Count one more consecutive failure.

        Returns True once the streak has reached the threshold (breaker OPEN).
        """
        new_count = self.redis.incr(self._failures_key)

        pipe = self.redis.pipeline()
        pipe.hincrby(self._health_key, 'failure', 1)
        pipe.hset(self._health_key, 'last_failure', str(time.time()))
        if error:
            pipe.hset(self._health_key, 'last_error', str(error)[:200])
        pipe.execute()

        if new_count >= self.failure_threshold:
            if self.state != OPEN:
                self.redis.set(self._state_key, OPEN)
                logger.warning(
                    "Account %s breaker OPENED after %d consecutive failures (threshold=%d): %s",
                    self.name, new_count, self.failure_threshold, error,
                )
            return True

        logger.info(
            "Account %s failure %d/%d: %s",
            self.name, new_count, self.failure_threshold, error,
        )
        return False

    def reset(self):
        """Close the breaker and clear the streak."""
        pipe = self.redis.pipeline()
        pipe.set(self._state_key, CLOSED)
        pipe.set(self._failures_key, 0)
        pipe.execute()
        logger.info("Account %s breaker reset to CLOSED", self.name)

    def get_health(self):
        data = self.redis.hgetall(self._health_key) or {}
        return {
            'state': self.state,
            'consecutive_failures': self.failure_count,
            'failure_threshold': self.failure_threshold,
            'total_success': int(data.get('success', 0)),
            'total_failure': int(data.get('failure', 0)),
            'last_success': float(data['last_success']) if data.get('last_success') else None,
            'last_failure': float(data['last_failure']) if data.get('last_failure') else None,
            'last_error': data.get('last_error', ''),
        }
