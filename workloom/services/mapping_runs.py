"""
Mapping run engine — turns a Mapping into a scraping job and diffs the result.

run()      → pick an eligible LinkedIn account, create the MappingRun, submit
             a PROFILE_SEARCH job that points back at the run
finalize() → called when that job is terminal; computes the delta against the
             mapping's current profiles and closes the run
run_due()  → periodic sweep: recover runs whose worker died, then start
             mappings whose next_run_at has passed

Diff rules (join key = external id):
  present now, unknown or stale before     → NEW_ARRIVAL  (inserted / revived)
  known before, absent now, criteria match → DEPARTURE    (marked stale)
  known before, absent now, no longer match→ excluded from the diff
  present in both, title/company changed   → JOB_CHANGE   (updated in place)
"""
import logging
import uuid
from datetime import timedelta

from sqlalchemy import func, select

from workloom.config import JOB_TIMEOUT_SECONDS, LINKEDIN, MAPPING_MAX_RESULTS, MAPPING_RUN_INTERVAL_HOURS
from workloom.database import utcnow
from workloom.errors import AccountUnavailable, ConflictError, NotFoundError, WorkloomError
from workloom.models import Account, Mapping, MappingRun, Profile, ProfileChange, ScrapingJob
from workloom.services.slots import mapping_slots

logger = logging.getLogger('services.mapping_runs')

TRACKED_FIELDS = ('job_title', 'company')
REFRESHED_FIELDS = ('name', 'job_title', 'company', 'location', 'profile_url', 'image_url', 'email')


def _norm(value):
    return (value or '').strip().casefold()


def criteria_match(mapping, profile) -> bool:
    """Would the mapping's search criteria still select this profile?"""
    pairs = (
        (mapping.job_title, profile.job_title),
        (mapping.company, profile.company),
        (mapping.country, profile.location),
    )
    return all(_norm(want) in _norm(have) for want, have in pairs if _norm(want))


def job_config_for(mapping) -> dict:
    query = ' '.join(p.strip() for p in (mapping.job_title, mapping.company) if p and p.strip())
    config = {'max_results': MAPPING_MAX_RESULTS}
    if query:
        config['search_query'] = query
    if mapping.country and mapping.country.strip():
        config['filters'] = {'location': mapping.country.strip()}
    return config


class MappingRunEngine:

    def __init__(self, session, registry, scheduler, clock=utcnow):
        self.session = session
        self.registry = registry
        self.scheduler = scheduler
        self.clock = clock
        self.locks = mapping_slots(registry.redis)

    def _mapping(self, user_id, mapping_id) -> Mapping:
        mapping = self.session.execute(
            select(Mapping).where(Mapping.id == mapping_id, Mapping.user_id == user_id)
        ).scalar_one_or_none()
        if mapping is None:
            raise NotFoundError(f"Mapping {mapping_id} not found")
        return mapping

    def _in_progress(self, mapping_id):
        return self.session.execute(
            select(MappingRun.id).where(
                MappingRun.mapping_id == mapping_id, MappingRun.status == 'IN_PROGRESS'
            )
        ).first()

    # ── Start ─────────────────────────────────────────────────────────

    def run(self, user_id, mapping_id) -> MappingRun:
        mapping = self._mapping(user_id, mapping_id)
        if mapping.status == 'PAUSED':
            raise ConflictError(f"Mapping {mapping_id} is paused")
        if self._in_progress(mapping.id):
            raise ConflictError(f"Mapping {mapping_id} already has a run in progress")

        run = MappingRun(id=str(uuid.uuid4()), mapping_id=mapping.id, run_date=self.clock(), status='IN_PROGRESS')
        if not self.locks.acquire(mapping.id, run.id):
            raise ConflictError(f"Mapping {mapping_id} already has a run in progress")

        self.session.add(run)
        mapping.status = 'IN_PROGRESS'
        self.session.commit()

        config = job_config_for(mapping)
        for account in self.eligible_accounts(user_id):
            try:
                job = self.scheduler.submit(user_id, account.id, 'PROFILE_SEARCH', config, mapping_run_id=run.id)
            except AccountUnavailable as e:
                logger.info("Skipping account %s for mapping %s: %s", account.id, mapping.id, e.reason)
                continue
            except WorkloomError as e:
                self._close_failed(run, mapping, e.message)
                raise
            # finalize() may already have closed the run if the queue runs jobs inline
            if run.status == 'IN_PROGRESS':
                run.scraping_job_id = job.id
                self.session.commit()
            logger.info("Mapping %s run %s started with job %s", mapping.id, run.id, job.id,
                        extra={'mapping_id': mapping.id, 'run_id': run.id})
            return run

        reason = 'no active, healthy and idle LinkedIn account'
        self._close_failed(run, mapping, f"Could not start run: {reason}")
        raise AccountUnavailable(None, reason)

    def eligible_accounts(self, user_id):
        """ACTIVE LinkedIn accounts with no job in flight, least recently used first."""
        stmt = select(Account).where(
            Account.user_id == user_id,
            Account.provider == LINKEDIN,
            Account.is_active.is_(True),
            Account.status == 'ACTIVE',
        ).order_by(Account.last_used_at.is_not(None), Account.last_used_at, Account.created_at)
        slots = self.scheduler.slots
        return [a for a in self.session.execute(stmt).scalars() if not slots.is_busy(a.id)]

    # ── Finish ────────────────────────────────────────────────────────

    def on_job_finished(self, job):
        if job.mapping_run_id:
            self.finalize(job.mapping_run_id)

    def finalize(self, run_id):
        run = self.session.get(MappingRun, run_id)
        if run is None:
            logger.warning("Run %s no longer exists", run_id)
            return None
        if run.status != 'IN_PROGRESS':
            return run
        mapping = self.session.get(Mapping, run.mapping_id)

        job = self._latest_job(run)
        if job is None or job.status in ('PENDING', 'RUNNING'):
            return run
        run.scraping_job_id = job.id

        if job.status == 'FAILED':
            self._close_failed(run, mapping, job.error_message or 'Scraping job failed')
        elif job.status == 'CANCELLED':
            self._close_failed(run, mapping, job.error_message or 'Scraping job was cancelled')
        else:
            self._apply_diff(run, mapping, job.results or [])
        return run

    def _latest_job(self, run):
        return self.session.execute(
            select(ScrapingJob)
            .where(ScrapingJob.mapping_run_id == run.id)
            .order_by(ScrapingJob.created_at.desc())
        ).scalars().first()

    def _close_failed(self, run, mapping, message):
        now = self.clock()
        run.status = 'FAILED'
        run.error_message = message
        run.finished_at = now
        self._close_mapping(mapping, now, 'FAILED')
        self.session.commit()
        self.locks.release(mapping.id, run.id)
        logger.warning("Mapping %s run %s FAILED: %s", mapping.id, run.id, message,
                       extra={'mapping_id': mapping.id, 'run_id': run.id})

    def _close_mapping(self, mapping, now, status):
        mapping.last_run_at = now
        mapping.next_run_at = now + timedelta(hours=MAPPING_RUN_INTERVAL_HOURS)
        mapping.runs_count = (mapping.runs_count or 0) + 1
        if mapping.status != 'PAUSED':
            mapping.status = status

    def _apply_diff(self, run, mapping, results):
        now = self.clock()

        # latest observation of an external id wins
        discovered = {}
        for record in results:
            ext = _norm(record.get('external_id'))
            if ext:
                discovered[ext] = record

        existing = {
            p.external_id: p
            for p in self.session.execute(select(Profile).where(Profile.mapping_id == mapping.id)).scalars()
        }
        known = {ext for ext, p in existing.items() if not p.is_stale}

        new_count = departed = changed = 0

        for ext in sorted(discovered):
            record = discovered[ext]
            profile = existing.get(ext)

            if profile is None or profile.is_stale:
                if profile is None:
                    profile = Profile(id=str(uuid.uuid4()), mapping_id=mapping.id, external_id=ext,
                                      first_seen_at=now, crm_refs={})
                    self.session.add(profile)
                profile.is_stale = False
                self._refresh(profile, record)
                self._change(run, profile, 'NEW_ARRIVAL', None, _snapshot(profile))
                new_count += 1
            else:
                before = _snapshot(profile)
                # filling in a value we never had is not a move
                moved = any(
                    _norm(record.get(f)) and _norm(getattr(profile, f))
                    and _norm(record.get(f)) != _norm(getattr(profile, f))
                    for f in TRACKED_FIELDS
                )
                self._refresh(profile, record)
                if moved:
                    self._change(run, profile, 'JOB_CHANGE', before, _snapshot(profile))
                    changed += 1
            profile.last_seen_at = now

        for ext in sorted(known - set(discovered)):
            profile = existing[ext]
            if not criteria_match(mapping, profile):
                continue
            profile.is_stale = True
            self._change(run, profile, 'DEPARTURE', _snapshot(profile), None)
            departed += 1

        run.total_found = len(discovered)
        run.new_profiles = new_count
        run.departures = departed
        run.job_changes = changed
        run.status = 'COMPLETED'
        run.finished_at = now

        self.session.flush()
        mapping.profiles_count = self.session.execute(
            select(func.count(Profile.id)).where(Profile.mapping_id == mapping.id, Profile.is_stale.is_(False))
        ).scalar_one()
        self._close_mapping(mapping, now, 'COMPLETED')
        self.session.commit()
        self.locks.release(mapping.id, run.id)

        logger.info(
            "Mapping %s run %s COMPLETED: found=%d new=%d departures=%d job_changes=%d",
            mapping.id, run.id, run.total_found, new_count, departed, changed,
        )

    @staticmethod
    def _refresh(profile, record):
        # never blank out a populated field with a missing value
        for field in REFRESHED_FIELDS:
            value = record.get(field)
            if value not in (None, ''):
                setattr(profile, field, value)

    def _change(self, run, profile, change_type, previous, current):
        self.session.add(ProfileChange(
            run_id=run.id, profile_id=profile.id, change_type=change_type,
            previous=previous, current=current,
        ))

    # ── Periodic sweep ────────────────────────────────────────────────

    def recover_stale(self, now=None):
        """
        Close runs left IN_PROGRESS by a dead worker.

        Stale jobs are failed first (which finalizes their runs); a run still
        open after that and older than JOB_TIMEOUT_SECONDS never got a job.
        """
        now = now or self.clock()
        reaped = self.scheduler.reap_stale(now)
        recovered = [self.session.get(MappingRun, job.mapping_run_id) for job in reaped if job.mapping_run_id]

        cutoff = now - timedelta(seconds=JOB_TIMEOUT_SECONDS)
        stale = self.session.execute(
            select(MappingRun).where(MappingRun.status == 'IN_PROGRESS', MappingRun.run_date < cutoff)
        ).scalars().all()
        for run in stale:
            self.finalize(run.id)
            if run.status == 'IN_PROGRESS' and self._latest_job(run) is None:
                self._close_failed(run, self.session.get(Mapping, run.mapping_id),
                                   'Run was interrupted before its scraping job was submitted')
            if run.status != 'IN_PROGRESS':
                recovered.append(run)
        return recovered

    def run_due(self, now=None):
        """Start every due, non-paused, idle mapping. Returns the runs started."""
        now = now or self.clock()
        self.recover_stale(now)
        due = self.session.execute(
            select(Mapping).where(
                Mapping.status.not_in(('PAUSED', 'IN_PROGRESS')),
                Mapping.next_run_at.is_not(None),
                Mapping.next_run_at <= now,
            ).order_by(Mapping.next_run_at)
        ).scalars().all()

        started = []
        for mapping in due:
            try:
                started.append(self.run(mapping.user_id, mapping.id))
            except (ConflictError, NotFoundError) as e:
                logger.info("Mapping %s not started: %s", mapping.id, e.message)
        logger.info("Due sweep: %d due, %d started", len(due), len(started))
        return started


def _snapshot(profile):
    return {f: getattr(profile, f) for f in TRACKED_FIELDS}
