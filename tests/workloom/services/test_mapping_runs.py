"""Tests for workloom.services.mapping_runs — run lifecycle and the profile diff."""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from workloom.config import JOB_TIMEOUT_SECONDS, LINKEDIN
from workloom.errors import AccountUnavailable, ConflictError
from workloom.models import MappingRun, Profile, ProfileChange
from workloom.services.mapping_runs import criteria_match, job_config_for

from conftest import USER_ID


@pytest.fixture
def linkedin(connectors):
    return connectors[LINKEDIN]


@pytest.fixture
def seed_profile(db_session):
    def _seed(mapping, ext, job_title=None, company='Acme', is_stale=False):
        profile = Profile(
            mapping_id=mapping.id, external_id=ext, name=ext.title(),
            job_title=job_title, company=company, is_stale=is_stale,
            profile_url=f'https://www.linkedin.com/in/{ext}', crm_refs={},
        )
        db_session.add(profile)
        db_session.commit()
        return profile
    return _seed


def _complete_run(services, enqueued, mapping):
    run = services.runs.run(USER_ID, mapping.id)
    services.scheduler.execute(enqueued[-1])
    return run


def _changes(db_session, run):
    rows = db_session.execute(select(ProfileChange).where(ProfileChange.run_id == run.id)).scalars()
    return sorted((c.change_type, c.profile_id) for c in rows)


class TestDiff:

    def test_new_departure_and_job_change(self, services, make_account, make_mapping, seed_profile, linkedin,
                                          person_record, enqueued, db_session):
        make_account(LINKEDIN)
        mapping = make_mapping()
        a = seed_profile(mapping, 'a')
        b = seed_profile(mapping, 'b', job_title='Engineer')
        c = seed_profile(mapping, 'c')
        linkedin.people = [
            person_record('b', job_title='Senior Engineer', company='Acme'),
            person_record('c', company='Acme'),
            person_record('d', company='Acme'),
        ]

        run = _complete_run(services, enqueued, mapping)

        assert run.status == 'COMPLETED'
        assert (run.total_found, run.new_profiles, run.departures, run.job_changes) == (3, 1, 1, 1)
        assert a.is_stale is True
        assert b.job_title == 'Senior Engineer'
        assert c.is_stale is False
        d = db_session.execute(
            select(Profile).where(Profile.mapping_id == mapping.id, Profile.external_id == 'd')
        ).scalar_one()
        assert sorted(_changes(db_session, run)) == sorted([
            ('DEPARTURE', a.id), ('JOB_CHANGE', b.id), ('NEW_ARRIVAL', d.id),
        ])
        assert mapping.status == 'COMPLETED'
        assert mapping.profiles_count == 3
        assert mapping.runs_count == 1
        assert mapping.next_run_at == mapping.last_run_at + timedelta(hours=24)

    def test_job_change_records_before_and_after(self, services, make_account, make_mapping, seed_profile,
                                                 linkedin, person_record, enqueued, db_session):
        make_account(LINKEDIN)
        mapping = make_mapping()
        seed_profile(mapping, 'b', job_title='Engineer')
        linkedin.people = [person_record('b', job_title='Staff Engineer', company='Acme')]

        run = _complete_run(services, enqueued, mapping)

        change = db_session.execute(select(ProfileChange).where(ProfileChange.run_id == run.id)).scalar_one()
        assert change.previous == {'job_title': 'Engineer', 'company': 'Acme'}
        assert change.current == {'job_title': 'Staff Engineer', 'company': 'Acme'}

    def test_missing_values_are_not_a_job_change(self, services, make_account, make_mapping, seed_profile,
                                                 linkedin, person_record, enqueued):
        make_account(LINKEDIN)
        mapping = make_mapping()
        b = seed_profile(mapping, 'b', job_title='Engineer')
        linkedin.people = [person_record('b', job_title=None, company='Acme')]

        run = _complete_run(services, enqueued, mapping)

        assert run.job_changes == 0
        assert b.job_title == 'Engineer'

    def test_filling_an_empty_value_is_not_a_job_change(self, services, make_account, make_mapping, seed_profile,
                                                        linkedin, person_record, enqueued):
        make_account(LINKEDIN)
        mapping = make_mapping()
        b = seed_profile(mapping, 'b', job_title=None)
        linkedin.people = [person_record('b', job_title='CTO', company='Acme')]

        run = _complete_run(services, enqueued, mapping)

        assert run.job_changes == 0
        assert b.job_title == 'CTO'

    def test_profile_that_no_longer_matches_is_not_a_departure(self, services, make_account, make_mapping,
                                                               seed_profile, enqueued):
        make_account(LINKEDIN)
        mapping = make_mapping()
        moved = seed_profile(mapping, 'moved', company='Globex')

        run = _complete_run(services, enqueued, mapping)

        assert run.departures == 0
        assert moved.is_stale is False

    def test_stale_profile_seen_again_is_new_arrival(self, services, make_account, make_mapping, seed_profile,
                                                     linkedin, person_record, enqueued):
        make_account(LINKEDIN)
        mapping = make_mapping()
        back = seed_profile(mapping, 'back', is_stale=True)
        linkedin.people = [person_record('back', company='Acme')]

        run = _complete_run(services, enqueued, mapping)

        assert run.new_profiles == 1
        assert back.is_stale is False

    def test_second_identical_run_reports_nothing(self, services, make_account, make_mapping, linkedin,
                                                  person_record, enqueued):
        make_account(LINKEDIN)
        mapping = make_mapping()
        linkedin.people = [person_record('a', company='Acme'), person_record('b', company='Acme')]

        first = _complete_run(services, enqueued, mapping)
        second = _complete_run(services, enqueued, mapping)

        assert first.new_profiles == 2
        assert (second.new_profiles, second.departures, second.job_changes) == (0, 0, 0)
        assert mapping.runs_count == 2


class TestRunLifecycle:

    def test_run_submits_search_job_for_run(self, services, make_account, make_mapping, enqueued):
        account = make_account(LINKEDIN)
        mapping = make_mapping(job_title='Engineer', country='Germany')

        run = services.runs.run(USER_ID, mapping.id)

        job = services.scheduler.get(USER_ID, enqueued[0])
        assert job.account_id == account.id
        assert job.mapping_run_id == run.id
        assert job.config['search_query'] == 'Engineer Acme'
        assert job.config['filters'] == {'location': 'Germany'}
        assert run.scraping_job_id == job.id
        assert mapping.status == 'IN_PROGRESS'

    def test_second_run_while_in_progress_conflicts(self, services, make_account, make_mapping):
        make_account(LINKEDIN)
        make_account(LINKEDIN)
        mapping = make_mapping()
        services.runs.run(USER_ID, mapping.id)
        with pytest.raises(ConflictError):
            services.runs.run(USER_ID, mapping.id)

    def test_paused_mapping_cannot_run(self, services, make_account, make_mapping):
        make_account(LINKEDIN)
        mapping = make_mapping()
        services.mappings.pause(USER_ID, mapping.id)
        with pytest.raises(ConflictError, match='paused'):
            services.runs.run(USER_ID, mapping.id)

    def test_no_account_fails_the_run(self, services, make_mapping, db_session):
        mapping = make_mapping()
        with pytest.raises(AccountUnavailable):
            services.runs.run(USER_ID, mapping.id)

        run = db_session.execute(select(MappingRun).where(MappingRun.mapping_id == mapping.id)).scalar_one()
        assert run.status == 'FAILED'
        assert 'LinkedIn account' in run.error_message
        assert mapping.status == 'FAILED'
        assert mapping.next_run_at is not None

    def test_busy_account_is_skipped(self, services, make_account, make_mapping, enqueued):
        busy = make_account(LINKEDIN)
        idle = make_account(LINKEDIN)
        services.scheduler.slots.acquire(busy.id, 'someone-else')
        mapping = make_mapping()

        services.runs.run(USER_ID, mapping.id)

        assert services.scheduler.get(USER_ID, enqueued[0]).account_id == idle.id

    def test_unhealthy_accounts_not_eligible(self, services, make_account):
        make_account(LINKEDIN, status='ERROR')
        make_account(LINKEDIN, status='TESTING')
        assert services.runs.eligible_accounts(USER_ID) == []

    def test_failed_job_fails_run(self, services, make_account, make_mapping, linkedin, enqueued):
        account = make_account(LINKEDIN)
        linkedin.failing_searches = 3
        mapping = make_mapping()

        run = _complete_run(services, enqueued, mapping)

        assert run.status == 'FAILED'
        assert account.status == 'ERROR'
        assert mapping.status == 'FAILED'
        assert not services.runs.locks.is_busy(mapping.id)

    def test_cancelled_job_fails_run(self, services, make_account, make_mapping, enqueued):
        make_account(LINKEDIN)
        mapping = make_mapping()
        run = services.runs.run(USER_ID, mapping.id)

        services.scheduler.cancel(USER_ID, enqueued[0])

        assert run.status == 'FAILED'
        assert 'cancelled' in run.error_message

    def test_pausing_mid_run_keeps_paused(self, services, make_account, make_mapping, enqueued):
        make_account(LINKEDIN)
        mapping = make_mapping()
        services.runs.run(USER_ID, mapping.id)
        services.mappings.pause(USER_ID, mapping.id)

        services.scheduler.execute(enqueued[0])

        assert mapping.status == 'PAUSED'
        assert mapping.runs_count == 1


class TestRunDue:

    def test_due_sweep_starts_idle_mappings(self, services, make_account, make_mapping):
        make_account(LINKEDIN)
        first = make_mapping(name='first')
        make_mapping(name='second')
        paused = make_mapping(name='paused')
        services.mappings.pause(USER_ID, paused.id)

        started = services.runs.run_due(now=first.next_run_at + timedelta(minutes=1))

        # one LinkedIn account, so only one run can be in flight
        assert len(started) == 1
        assert paused.status == 'PAUSED'

    def test_future_mapping_not_due(self, services, make_account, make_mapping):
        make_account(LINKEDIN)
        mapping = make_mapping()
        assert services.runs.run_due(now=mapping.next_run_at - timedelta(minutes=1)) == []


class TestRecovery:

    def test_run_of_dead_job_is_failed(self, services, make_account, make_mapping, enqueued):
        account = make_account(LINKEDIN)
        mapping = make_mapping()
        run = services.runs.run(USER_ID, mapping.id)
        job = services.scheduler.get(USER_ID, enqueued[0])

        recovered = services.runs.recover_stale(now=job.created_at + timedelta(seconds=JOB_TIMEOUT_SECONDS + 1))

        assert [r.id for r in recovered] == [run.id]
        assert run.status == 'FAILED'
        assert 'No worker finished' in run.error_message
        assert mapping.status == 'FAILED'
        assert not services.runs.locks.is_busy(mapping.id)
        assert not services.scheduler.slots.is_busy(account.id)

    def test_run_that_never_got_a_job_is_closed(self, services, make_mapping, db_session):
        mapping = make_mapping()
        run = MappingRun(id='run-1', mapping_id=mapping.id, run_date=datetime(2026, 3, 1), status='IN_PROGRESS')
        mapping.status = 'IN_PROGRESS'
        db_session.add(run)
        db_session.commit()
        services.runs.locks.acquire(mapping.id, run.id)

        recovered = services.runs.recover_stale(now=datetime(2026, 3, 2))

        assert recovered == [run]
        assert run.status == 'FAILED'
        assert 'interrupted' in run.error_message
        assert mapping.status == 'FAILED'
        assert not services.runs.locks.is_busy(mapping.id)

    def test_runs_in_flight_left_alone(self, services, make_account, make_mapping, enqueued):
        make_account(LINKEDIN)
        mapping = make_mapping()
        run = services.runs.run(USER_ID, mapping.id)
        job = services.scheduler.get(USER_ID, enqueued[0])

        assert services.runs.recover_stale(now=job.created_at + timedelta(minutes=5)) == []
        assert run.status == 'IN_PROGRESS'
        assert job.status == 'PENDING'

    def test_due_sweep_recovers_first(self, services):
        now = datetime(2026, 3, 2)
        with patch.object(services.runs, 'recover_stale') as recover:
            services.runs.run_due(now=now)
        recover.assert_called_once_with(now)


class TestCriteria:

    def test_criteria_match_is_case_insensitive_substring(self, make_mapping):
        mapping = make_mapping(job_title='engineer', company='ACME')
        assert criteria_match(mapping, Profile(job_title='Senior Engineer', company='Acme Corp'))
        assert not criteria_match(mapping, Profile(job_title='Designer', company='Acme Corp'))

    def test_job_config_without_query(self, make_mapping):
        mapping = make_mapping(company=None, country='Germany')
        assert job_config_for(mapping) == {'max_results': 200, 'filters': {'location': 'Germany'}}
