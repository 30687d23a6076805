"""
Account registry — CRUD and the status machine for connected provider accounts.

Status transitions:
  create                    → TESTING
  TESTING                   → ACTIVE | ERROR       (validator check)
  ACTIVE                    → ERROR                (ACCOUNT_FAILURE_THRESHOLD consecutive connector failures)
  ERROR                     → ACTIVE               (successful validator check only)
  deactivate                → INACTIVE             (ERROR stays ERROR)
  reactivate INACTIVE       → ACTIVE
  credentials changed       → TESTING

Every credential write goes through the CredentialVault. Decrypted
credentials exist only as the parsed record handed to a connector.
"""
import logging
from typing import List, Optional

from sqlalchemy import select

from workloom import providers
from workloom.connectors import get_connector
from workloom.database import utcnow
from workloom.errors import ConflictError, NotFoundError, ValidationError
from workloom.models import Account, ScrapingJob
from workloom.services.circuit_breaker import CircuitBreaker
from workloom.services.slots import account_slots

logger = logging.getLogger('services.accounts')

UPDATABLE_FIELDS = {'account_name', 'credentials', 'config', 'is_active'}


class AccountRegistry:

    def __init__(self, session, vault, redis_client, connector_factory=get_connector):
        self.session = session
        self.vault = vault
        self.redis = redis_client
        self.connector_factory = connector_factory
        self.slots = account_slots(redis_client)

    # ── CRUD ──────────────────────────────────────────────────────────

    def create(self, user_id, provider, account_name, credentials, config=None) -> Account:
        variant = providers.get_variant(provider)
        if not (account_name or '').strip():
            raise ValidationError('account_name is required')

        creds = providers.parse_credentials(provider, credentials)
        cfg = providers.parse_config(provider, config)

        account = Account(
            user_id=user_id,
            provider=provider,
            account_name=account_name.strip(),
            username=providers.display_username(provider, creds),
            encrypted_credentials=self.vault.encrypt(providers.to_dict(creds)),
            is_active=True,
            status='TESTING',
            config=providers.to_dict(cfg),
            stats=variant.stats(),
        )
        self.session.add(account)
        self.session.commit()
        logger.info("Created %s account %s for user %s", provider, account.id, user_id)
        return account

    def get(self, user_id, account_id, provider=None) -> Account:
        account = self.session.execute(
            select(Account).where(Account.id == account_id, Account.user_id == user_id)
        ).scalar_one_or_none()
        if account is None or (provider and account.provider != provider):
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def list_for_user(self, user_id, provider=None) -> List[Account]:
        stmt = select(Account).where(Account.user_id == user_id)
        if provider:
            providers.get_variant(provider)
            stmt = stmt.where(Account.provider == provider)
        return list(self.session.execute(stmt.order_by(Account.created_at)).scalars())

    def update(self, user_id, account_id, data) -> Account:
        account = self.get(user_id, account_id)
        unknown = sorted(set(data) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown account field(s): {', '.join(unknown)}")

        if 'is_active' in data and not isinstance(data['is_active'], bool):
            raise ValidationError('is_active must be a boolean')

        if 'account_name' in data:
            if not (data['account_name'] or '').strip():
                raise ValidationError('account_name must not be empty')
            account.account_name = data['account_name'].strip()

        if 'config' in data:
            cfg = providers.parse_config(account.provider, data['config'], base=self.config_for(account))
            account.config = providers.to_dict(cfg)

        if 'credentials' in data:
            # Partial updates merge onto the stored bundle (e.g. rotate only the password)
            merged = {**self.vault.decrypt(account.encrypted_credentials), **(data['credentials'] or {})}
            creds = providers.parse_credentials(account.provider, merged)
            account.encrypted_credentials = self.vault.encrypt(providers.to_dict(creds))
            account.username = providers.display_username(account.provider, creds)
            account.status = 'TESTING'
            account.error_message = None
            self.breaker(account).reset()
            logger.info("Credentials replaced for account %s, status → TESTING", account.id)

        self.session.commit()

        if 'is_active' in data:
            account = self.set_active(user_id, account_id, data['is_active'])
        return account

    def delete(self, user_id, account_id):
        account = self.get(user_id, account_id)
        running = self.session.execute(
            select(ScrapingJob.id).where(
                ScrapingJob.account_id == account.id,
                ScrapingJob.status == 'RUNNING',
            )
        ).first()
        if running:
            raise ConflictError(f"Account {account_id} has a running job; cancel it first")

        self.session.delete(account)
        self.session.commit()
        self.slots.clear(account_id)
        logger.info("Deleted account %s", account_id)

    # ── Activation ────────────────────────────────────────────────────

    def set_active(self, user_id, account_id, active) -> Account:
        account = self.get(user_id, account_id)
        account.is_active = active
        if not active and account.status != 'ERROR':
            account.status = 'INACTIVE'
        elif active and account.status == 'INACTIVE':
            account.status = 'ACTIVE'
        self.session.commit()
        logger.info("Account %s %s (status=%s)", account.id,
                    'activated' if active else 'deactivated', account.status)
        return account

    def toggle(self, user_id, account_id) -> Account:
        account = self.get(user_id, account_id)
        return self.set_active(user_id, account_id, not account.is_active)

    # ── Provider access ───────────────────────────────────────────────

    def credentials_for(self, account):
        return providers.parse_credentials(account.provider, self.vault.decrypt(account.encrypted_credentials))

    def config_for(self, account):
        return providers.load_config(account.provider, account.config)

    def connector_for(self, account):
        return self.connector_factory(account.provider, self.credentials_for(account), self.config_for(account))

    # ── Health ────────────────────────────────────────────────────────

    def breaker(self, account) -> CircuitBreaker:
        return CircuitBreaker(account.id, self.redis)

    def record_success(self, account):
        self.breaker(account).record_success()
        account.last_used_at = utcnow()
        self.session.commit()

    def record_failure(self, account, error) -> bool:
        """
        Count a connector failure against the account.

        Returns True if this failure flipped the account to ERROR.
        """
        opened = self.breaker(account).record_failure(error)
        if opened and account.status == 'ACTIVE':
            self.mark_error(account, f"Disabled after repeated failures: {error}")
            return True
        return False

    def mark_error(self, account, message):
        if not message:
            raise ValueError('ERROR status requires a message')
        account.status = 'ERROR'
        account.error_message = str(message)
        self.session.commit()
        logger.warning("Account %s → ERROR: %s", account.id, message, extra={'account_id': account.id})

    def mark_active(self, account):
        """Healthy again. A deactivated account stays INACTIVE until reactivated."""
        account.status = 'ACTIVE' if account.is_active else 'INACTIVE'
        account.error_message = None
        self.breaker(account).reset()
        self.session.commit()
        logger.info("Account %s → %s", account.id, account.status)

    def update_stats(self, account, **changes):
        """Apply increments (ints/floats) and assignments to the stats JSON."""
        stats = dict(account.stats or providers.default_stats(account.provider))
        for key, value in changes.items():
            if isinstance(value, Increment):
                stats[key] = (stats.get(key) or 0) + value.amount
            else:
                stats[key] = value
        account.stats = stats
        self.session.commit()
        return stats

    def is_schedulable(self, account) -> Optional[str]:
        """None if the account may take a job, otherwise the reason it can't."""
        if not account.is_active:
            return 'account is deactivated'
        if account.status != 'ACTIVE':
            return f"account status is {account.status}"
        return None


class Increment:
    """Marker for update_stats: add `amount` instead of assigning."""

    def __init__(self, amount=1):
        self.amount = amount
