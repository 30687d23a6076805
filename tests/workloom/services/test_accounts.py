"""Tests for workloom.services.accounts — CRUD and the account status machine."""
import pytest

from workloom.config import HUBSPOT, LINKEDIN, SALESFORCE
from workloom.errors import ConflictError, NotFoundError, ValidationError
from workloom.models import ScrapingJob

from conftest import OTHER_USER_ID, USER_ID


class TestCreate:

    def test_new_account_is_testing_with_encrypted_credentials(self, services, credentials):
        account = services.registry.create(USER_ID, HUBSPOT, 'Main portal', credentials[HUBSPOT])
        assert account.status == 'TESTING'
        assert account.username == '998877'
        assert 'pat-na1-123' not in account.encrypted_credentials
        assert services.registry.credentials_for(account).api_key == 'pat-na1-123'

    def test_stats_start_from_provider_defaults(self, services, credentials):
        account = services.registry.create(USER_ID, SALESFORCE, 'Org', credentials[SALESFORCE])
        assert account.stats == {
            'records_imported': 0, 'records_exported': 0, 'last_sync_at': None, 'sync_errors': 0,
        }

    def test_config_validated_at_creation(self, services, credentials):
        with pytest.raises(ValidationError):
            services.registry.create(USER_ID, LINKEDIN, 'x', credentials[LINKEDIN], {'daily_limit': -5})

    def test_name_required(self, services, credentials):
        with pytest.raises(ValidationError, match='account_name'):
            services.registry.create(USER_ID, HUBSPOT, '  ', credentials[HUBSPOT])


class TestScoping:

    def test_other_users_account_is_not_found(self, services, make_account):
        account = make_account(HUBSPOT)
        with pytest.raises(NotFoundError):
            services.registry.get(OTHER_USER_ID, account.id)

    def test_provider_filter(self, services, make_account):
        make_account(HUBSPOT)
        make_account(LINKEDIN)
        assert [a.provider for a in services.registry.list_for_user(USER_ID, LINKEDIN)] == [LINKEDIN]


class TestStatusMachine:

    def test_failures_flip_active_to_error(self, services, make_account):
        account = make_account(HUBSPOT)
        assert services.registry.record_failure(account, 'HTTP 500') is False
        assert services.registry.record_failure(account, 'HTTP 500') is False
        assert services.registry.record_failure(account, 'HTTP 500') is True
        assert account.status == 'ERROR'
        assert 'HTTP 500' in account.error_message

    def test_error_does_not_recover_on_success(self, services, make_account):
        account = make_account(HUBSPOT, status='ERROR')
        services.registry.record_success(account)
        assert account.status == 'ERROR'

    def test_error_requires_message(self, services, make_account):
        account = make_account(HUBSPOT)
        with pytest.raises(ValueError):
            services.registry.mark_error(account, '')

    def test_deactivate_and_reactivate(self, services, make_account):
        account = make_account(LINKEDIN)
        services.registry.set_active(USER_ID, account.id, False)
        assert account.status == 'INACTIVE'
        services.registry.toggle(USER_ID, account.id)
        assert account.is_active is True
        assert account.status == 'ACTIVE'

    def test_deactivating_error_account_keeps_error(self, services, make_account):
        account = make_account(LINKEDIN, status='ERROR')
        services.registry.set_active(USER_ID, account.id, False)
        assert account.status == 'ERROR'
        assert account.is_active is False

    def test_schedulable_reasons(self, services, make_account):
        account = make_account(LINKEDIN, status='TESTING')
        assert services.registry.is_schedulable(account) == 'account status is TESTING'
        services.registry.mark_active(account)
        assert services.registry.is_schedulable(account) is None
        services.registry.set_active(USER_ID, account.id, False)
        assert services.registry.is_schedulable(account) == 'account is deactivated'


class TestUpdate:

    def test_credentials_change_returns_to_testing(self, services, make_account):
        account = make_account(SALESFORCE)
        services.registry.update(USER_ID, account.id, {'credentials': {'security_token': 'new'}})
        assert account.status == 'TESTING'
        creds = services.registry.credentials_for(account)
        assert creds.security_token == 'new'
        assert creds.username == 'ops@example.com'

    def test_config_partial_update(self, services, make_account):
        account = make_account(LINKEDIN)
        services.registry.update(USER_ID, account.id, {'config': {'daily_limit': 50}})
        cfg = services.registry.config_for(account)
        assert cfg.daily_limit == 50
        assert cfg.request_delay == 2000

    def test_unknown_field_rejected(self, services, make_account):
        account = make_account(LINKEDIN)
        with pytest.raises(ValidationError, match='provider'):
            services.registry.update(USER_ID, account.id, {'provider': HUBSPOT})

    def test_update_stats_increments(self, services, make_account):
        from workloom.services.accounts import Increment
        account = make_account(HUBSPOT)
        services.registry.update_stats(account, contacts_exported=Increment(3), last_sync_at='now')
        services.registry.update_stats(account, contacts_exported=Increment(2))
        assert account.stats['contacts_exported'] == 5
        assert account.stats['last_sync_at'] == 'now'


class TestDelete:

    def test_running_job_blocks_delete(self, services, make_account, db_session):
        account = make_account(LINKEDIN)
        db_session.add(ScrapingJob(account_id=account.id, type='PROFILE_SEARCH', status='RUNNING',
                                   config={}, results=[]))
        db_session.commit()
        with pytest.raises(ConflictError):
            services.registry.delete(USER_ID, account.id)

    def test_delete_clears_slot(self, services, make_account, fake_redis):
        account = make_account(LINKEDIN)
        services.registry.slots.acquire(account.id, 'job-x')
        services.registry.delete(USER_ID, account.id)
        assert not services.registry.slots.is_busy(account.id)
        with pytest.raises(NotFoundError):
            services.registry.get(USER_ID, account.id)
