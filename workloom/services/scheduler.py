"""
Scraping job scheduler — admission, background execution, cancellation.

  submit()  → validate, claim the account slot, persist PENDING, enqueue on RQ
  execute() → (worker) PENDING → RUNNING → COMPLETED / FAILED / CANCELLED

Work is split into discovery units:
  - a search page costs no quota but still honors request spacing
  - each profile costs one quota unit

The cancellation flag, the quota and the account health are checked between
units. Counters only grow and profiles_scraped + profiles_failed never exceeds
profiles_found at any commit. When a job reaches a terminal status the account
slot is released, the account stats are updated and, if the job belongs to a
mapping run, on_finished(job) is called.
"""
import logging
import uuid
from dataclasses import asdict
from datetime import timedelta

from sqlalchemy import and_, or_, select, update

from workloom.config import LINKEDIN, JOB_TIMEOUT_SECONDS, JOB_TERMINAL_STATUSES, SEARCH_PAGE_SIZE
from workloom.connectors import FetchQuery
from workloom.database import utcnow
from workloom.errors import (
    AccountUnavailable, ConflictError, NotFoundError, QuotaExceeded, ValidationError, WorkloomError,
)
from workloom.extensions import get_queue
from workloom.models import Account, ScrapingJob
from workloom.providers import JobConfig, parse_job_config
from workloom.services.accounts import Increment
from workloom.services.rate_limiter import Budget
from workloom.services.slots import account_slots

logger = logging.getLogger('services.scheduler')


class AccountDisabled(Exception):
    """The account left ACTIVE mid-job (usually flipped to ERROR); stop issuing calls on it."""


def enqueue_job(job_id):
    from workloom.tasks import run_scraping_job
    get_queue().enqueue(run_scraping_job, job_id, job_timeout=JOB_TIMEOUT_SECONDS)


class ScrapingJobScheduler:

    def __init__(self, session, registry, limiter, enqueue=enqueue_job, on_finished=None):
        self.session = session
        self.registry = registry
        self.limiter = limiter
        self.redis = registry.redis
        self.slots = account_slots(registry.redis)
        self.enqueue = enqueue
        self.on_finished = on_finished

    # ── Admission ─────────────────────────────────────────────────────

    def _linkedin_account(self, user_id, account_id):
        account = self.registry.get(user_id, account_id)
        if account.provider != LINKEDIN:
            raise ValidationError('Scraping jobs need a LinkedIn account')
        return account

    def submit(self, user_id, account_id, job_type, config, mapping_run_id=None) -> ScrapingJob:
        account = self._linkedin_account(user_id, account_id)
        job_config = parse_job_config(job_type, config)

        reason = self.registry.is_schedulable(account)
        if reason:
            raise AccountUnavailable(account.id, reason)

        job = ScrapingJob(
            id=str(uuid.uuid4()),
            account_id=account.id,
            type=job_type,
            status='PENDING',
            config=asdict(job_config),
            mapping_run_id=mapping_run_id,
            results=[],
        )
        if not self.slots.acquire(account.id, job.id):
            raise AccountUnavailable(account.id, 'a job is already pending or running')

        try:
            self.session.add(job)
            self.session.commit()
            self.enqueue(job.id)
        except Exception as e:
            self.session.rollback()
            self.slots.release(account.id, job.id)
            logger.error("Failed to submit job for account %s: %s", account.id, e, exc_info=True)
            raise

        logger.info("Submitted %s job %s on account %s", job_type, job.id, account.id)
        return job

    # ── Queries ───────────────────────────────────────────────────────

    def get(self, user_id, job_id, account_id=None) -> ScrapingJob:
        stmt = (
            select(ScrapingJob)
            .join(Account, Account.id == ScrapingJob.account_id)
            .where(ScrapingJob.id == job_id, Account.user_id == user_id)
        )
        if account_id:
            stmt = stmt.where(ScrapingJob.account_id == account_id)
        job = self.session.execute(stmt).scalar_one_or_none()
        if job is None:
            raise NotFoundError(f"Scraping job {job_id} not found")
        return job

    def list_for_account(self, user_id, account_id, status=None, limit=50):
        self.registry.get(user_id, account_id)
        stmt = select(ScrapingJob).where(ScrapingJob.account_id == account_id)
        if status:
            stmt = stmt.where(ScrapingJob.status == status)
        stmt = stmt.order_by(ScrapingJob.created_at.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars())

    # ── Cancellation ──────────────────────────────────────────────────

    def _cancel_key(self, job_id):
        return f'job:{job_id}:cancel'

    def cancel(self, user_id, job_id, account_id=None) -> ScrapingJob:
        job = self.get(user_id, job_id, account_id=account_id)
        if job.status in JOB_TERMINAL_STATUSES:
            raise ConflictError(f"Job {job_id} is already {job.status}")

        if job.status == 'PENDING':
            if self._transition(job, 'PENDING', status='CANCELLED', completed_at=utcnow()):
                self._finish(job)
                logger.info("Cancelled pending job %s", job.id)
                return job
            # a worker claimed it first
            if job.status in JOB_TERMINAL_STATUSES:
                raise ConflictError(f"Job {job_id} is already {job.status}")

        # The worker polls this between units and releases the slot itself
        self.redis.set(self._cancel_key(job.id), '1', ex=JOB_TIMEOUT_SECONDS)
        logger.info("Cancellation requested for running job %s", job.id)
        return job

    def _transition(self, job, expected, **values) -> bool:
        """Compare-and-set on the job's status. False if another process moved it first."""
        result = self.session.execute(
            update(ScrapingJob)
            .where(ScrapingJob.id == job.id, ScrapingJob.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        if result.rowcount != 1:
            self.session.refresh(job)
            return False
        return True

    # ── Recovery ──────────────────────────────────────────────────────

    def reap_stale(self, now=None):
        """
        Fail jobs that no worker finished within JOB_TIMEOUT_SECONDS.

        Covers workers killed mid-job (RUNNING forever) and jobs lost from the
        queue (PENDING forever). Runs before the account slot's own expiry, so
        the slot is released here rather than by TTL.
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=JOB_TIMEOUT_SECONDS)
        stale = self.session.execute(
            select(ScrapingJob).where(or_(
                and_(ScrapingJob.status == 'PENDING', ScrapingJob.created_at < cutoff),
                and_(ScrapingJob.status == 'RUNNING', ScrapingJob.started_at < cutoff),
            )).order_by(ScrapingJob.created_at)
        ).scalars().all()

        reaped = []
        for job in stale:
            was = job.status
            message = f"No worker finished the job within {JOB_TIMEOUT_SECONDS}s (was {was})"
            if not self._transition(job, was, status='FAILED', retryable=True,
                                    error_message=message, completed_at=now):
                continue
            logger.warning("Reaped %s job %s: %s", was, job.id, message,
                           extra={'job_id': job.id, 'account_id': job.account_id})
            self._finish(job, self.session.get(Account, job.account_id))
            reaped.append(job)
        return reaped

    def _cancel_requested(self, job):
        return bool(self.redis.exists(self._cancel_key(job.id)))

    # ── Execution (RQ worker) ─────────────────────────────────────────

    def execute(self, job_id):
        job = self.session.get(ScrapingJob, job_id)
        if job is None:
            logger.error("Job %s not found", job_id)
            return None
        if not self._transition(job, 'PENDING', status='RUNNING', started_at=utcnow()):
            logger.info("Job %s is %s, nothing to execute", job_id, job.status)
            return job

        account = self.session.get(Account, job.account_id)
        logger.info("Starting %s job %s on account %s", job.type, job.id, account.id,
                    extra={'job_id': job.id, 'account_id': account.id})

        try:
            cancelled = self._run_units(job, account)
            job.status = 'CANCELLED' if cancelled else 'COMPLETED'
        except QuotaExceeded as e:
            job.status = 'FAILED'
            job.retryable = True
            job.error_message = e.message
            logger.warning("Job %s stopped on quota: %s", job.id, e.message)
        except AccountDisabled as e:
            job.status = 'FAILED'
            job.error_message = str(e)
            logger.warning("Job %s stopped: %s", job.id, e)
        except WorkloomError as e:
            job.status = 'FAILED'
            job.retryable = e.retryable
            job.error_message = e.message
            logger.error("Job %s failed: %s", job.id, e.message)
        except Exception as e:
            self.session.rollback()
            job.status = 'FAILED'
            job.error_message = str(e) or e.__class__.__name__
            logger.error("Job %s crashed: %s", job.id, e, exc_info=True)

        job.completed_at = utcnow()
        self.session.commit()
        logger.info(
            "Job %s %s: found=%d scraped=%d failed=%d",
            job.id, job.status, job.profiles_found, job.profiles_scraped, job.profiles_failed,
            extra={'job_id': job.id, 'account_id': job.account_id},
        )
        self._finish(job, account)
        return job

    def _finish(self, job, account=None):
        """Terminal bookkeeping: slot, cancel flag, stats, mapping run."""
        self.slots.release(job.account_id, job.id)
        self.redis.delete(self._cancel_key(job.id))

        if account is not None:
            attempted = job.profiles_scraped + job.profiles_failed
            changes = {
                'profiles_scraped': Increment(job.profiles_scraped),
                'daily_usage': self.limiter.used(account.id),
                'last_reset_date': self.limiter.provider_date().isoformat(),
            }
            if attempted:
                changes['success_rate'] = round(job.profiles_scraped / attempted, 3)
            self.registry.update_stats(account, **changes)

        if job.mapping_run_id and self.on_finished is not None:
            self.on_finished(job)

    def _run_units(self, job, account) -> bool:
        """Run the discovery loop. Returns True if the job was cancelled."""
        config = JobConfig(**job.config)
        settings = self.registry.config_for(account)
        delay = settings.request_delay if settings.respect_rate_limits else 0
        connectors = {account.id: self.registry.connector_for(account)}
        accounts = {account.id: account}

        # Phase 1: candidate discovery
        if job.type == 'SINGLE_PROFILE':
            candidates = [{'profile_url': config.profile_url}]
            job.profiles_found = 1
            self.session.commit()
        else:
            candidates = []
            seen = set()
            cursor = None
            while len(candidates) < config.max_results:
                if self._cancel_requested(job):
                    return True
                self.limiter.acquire(account.id, settings.daily_limit, delay, units=0)
                params = {
                    'search_query': config.search_query,
                    'company_url': config.company_url,
                    'filters': config.filters,
                    'page_size': min(SEARCH_PAGE_SIZE, config.max_results - len(candidates)),
                }
                page = self._call(account, connectors[account.id].fetch,
                                  FetchQuery('search', params, cursor))
                if page is None:
                    continue   # failed page, retried until it succeeds or the account flips

                fresh = []
                for record in page.records:
                    if record['external_id'] in seen:
                        continue
                    seen.add(record['external_id'])
                    fresh.append(record)
                fresh = fresh[:config.max_results - len(candidates)]
                candidates.extend(fresh)
                job.profiles_found += len(fresh)
                self.session.commit()

                cursor = page.next_cursor
                if not cursor:
                    break

        # Phase 2: one quota unit per profile
        pool = self._rotation_pool(account, settings) if settings.enable_rotation else None
        results = list(job.results or [])
        for candidate in candidates:
            if self._cancel_requested(job):
                return True

            serving = account
            if pool:
                budget = self.limiter.acquire_rotating(f'linkedin:{account.user_id}', pool)
                if budget.account_id not in accounts:
                    other = self.session.get(Account, budget.account_id)
                    accounts[other.id] = other
                    connectors[other.id] = self.registry.connector_for(other)
                serving = accounts[budget.account_id]
            else:
                self.limiter.acquire(account.id, settings.daily_limit, delay, units=1)

            record = self._scrape_profile(serving, connectors[serving.id], candidate)
            if record is None:
                job.profiles_failed += 1
            else:
                results.append(record)
                job.results = list(results)
                job.profiles_scraped += 1
            self.session.commit()
        return False

    def _scrape_profile(self, account, connector, candidate):
        url = candidate.get('profile_url')
        if not url:
            return None
        page = self._call(account, connector.fetch, FetchQuery('profile', {'profile_url': url}))
        if page is None or not page.records:
            return None
        # search data fills whatever the profile page didn't have
        merged = dict(candidate)
        merged.update({k: v for k, v in page.records[0].items() if v not in (None, '')})
        return merged

    def _call(self, account, func, *args):
        """
        One connector call with failure accounting.

        Returns None on a counted failure. Raises AccountDisabled once the
        account has flipped to ERROR.
        """
        try:
            result = func(*args)
        except QuotaExceeded:
            raise
        except Exception as e:
            message = e.message if isinstance(e, WorkloomError) else (str(e) or e.__class__.__name__)
            logger.warning("Account %s call failed: %s", account.id, message,
                           exc_info=not isinstance(e, WorkloomError))
            if self.registry.record_failure(account, message) or account.status != 'ACTIVE':
                raise AccountDisabled(account.error_message or message)
            return None
        self.registry.record_success(account)
        return result

    def _rotation_pool(self, account, settings):
        stmt = select(Account).where(
            Account.user_id == account.user_id,
            Account.provider == LINKEDIN,
            Account.is_active.is_(True),
            Account.status == 'ACTIVE',
        ).order_by(Account.created_at, Account.id)
        pool = []
        for other in self.session.execute(stmt).scalars():
            other_settings = self.registry.config_for(other)
            if other.id != account.id and not other_settings.enable_rotation:
                continue
            delay = other_settings.request_delay if other_settings.respect_rate_limits else 0
            pool.append(Budget(other.id, other_settings.daily_limit, delay))
        return pool

    # ── Ad-hoc calls (synchronous, same limiter) ──────────────────────

    def search(self, user_id, account_id, search_query=None, filters=None, limit=SEARCH_PAGE_SIZE, cursor=None):
        account = self._linkedin_account(user_id, account_id)
        reason = self.registry.is_schedulable(account)
        if reason:
            raise AccountUnavailable(account.id, reason)
        config = parse_job_config('PROFILE_SEARCH', {
            'search_query': search_query, 'filters': filters or {}, 'max_results': limit,
        })
        settings = self.registry.config_for(account)
        delay = settings.request_delay if settings.respect_rate_limits else 0

        self.limiter.acquire(account.id, settings.daily_limit, delay, units=0)
        connector = self.registry.connector_for(account)
        params = {
            'search_query': config.search_query,
            'filters': config.filters,
            'page_size': config.max_results,
        }
        try:
            page = connector.fetch(FetchQuery('search', params, cursor))
        except WorkloomError as e:
            self.registry.record_failure(account, e.message)
            raise
        self.registry.record_success(account)
        return {'profiles': page.records, 'next_cursor': page.next_cursor}

    def fetch_profile(self, user_id, account_id, profile_url):
        account = self._linkedin_account(user_id, account_id)
        reason = self.registry.is_schedulable(account)
        if reason:
            raise AccountUnavailable(account.id, reason)
        parse_job_config('SINGLE_PROFILE', {'profile_url': profile_url})
        settings = self.registry.config_for(account)
        delay = settings.request_delay if settings.respect_rate_limits else 0

        self.limiter.acquire(account.id, settings.daily_limit, delay, units=1)
        connector = self.registry.connector_for(account)
        try:
            page = connector.fetch(FetchQuery('profile', {'profile_url': profile_url}))
        except WorkloomError as e:
            self.registry.record_failure(account, e.message)
            raise
        self.registry.record_success(account)
        if not page.records:
            raise NotFoundError(f"No profile found at {profile_url}")
        return page.records[0]
