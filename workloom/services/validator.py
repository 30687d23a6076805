"""
Connection validator — one timed round-trip per check, and the only path back to ACTIVE.
"""
import logging
import time

from workloom.config import LINKEDIN
from workloom.errors import WorkloomError

logger = logging.getLogger('services.validator')


class ConnectionValidator:

    def __init__(self, registry, limiter=None, timer=time.monotonic):
        self.registry = registry
        self.limiter = limiter
        self.timer = timer

    def test(self, user_id, account_id, provider=None):
        """
        Check the account's provider and move its status accordingly.

        Returns {success, message, details}. Never raises for provider-side
        failures; those become success=False and an ERROR status.
        """
        account = self.registry.get(user_id, account_id, provider=provider)
        started = self.timer()
        try:
            connector = self.registry.connector_for(account)
            result = connector.test_connection()
            success, message, details = result.success, result.message, dict(result.details or {})
        except WorkloomError as e:
            success, message, details = False, e.message, {}
        details['response_time'] = int(round((self.timer() - started) * 1000))

        if account.provider == LINKEDIN and self.limiter is not None:
            config = self.registry.config_for(account)
            details['remaining_quota'] = self.limiter.usage(account.id, config.daily_limit)['remaining']

        if success:
            self.registry.mark_active(account)
        else:
            self.registry.mark_error(account, message or 'Connection test failed')
        logger.info("Tested account %s (%s): %s in %dms",
                    account.id, account.provider, 'ok' if success else 'failed', details['response_time'])
        return {'success': success, 'message': message, 'details': details}

    def validate_session(self, user_id, account_id):
        result = self.test(user_id, account_id, provider=LINKEDIN)
        return {
            'valid': result['success'],
            'expires_at': result['details'].get('expires_at'),
        }
