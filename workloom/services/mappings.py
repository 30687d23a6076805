"""
Mapping lifecycle — CRUD, pause/resume, profile listing, run history, export.

Runs themselves are started and closed by the MappingRunEngine.
"""
import logging

from sqlalchemy import func, select

from workloom.database import utcnow
from workloom.errors import ConflictError, NotFoundError, ValidationError
from workloom.models import Mapping, MappingRun, Profile, ProfileChange
from workloom.services.export import export_profiles

logger = logging.getLogger('services.mappings')

CRITERIA_FIELDS = ('job_title', 'company', 'country')
EDITABLE_FIELDS = ('name',) + CRITERIA_FIELDS
MAX_PAGE_SIZE = 100


def _clean(value, field):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    return value.strip() or None


class MappingService:

    def __init__(self, session, clock=utcnow):
        self.session = session
        self.clock = clock

    def get(self, user_id, mapping_id) -> Mapping:
        mapping = self.session.execute(
            select(Mapping).where(Mapping.id == mapping_id, Mapping.user_id == user_id)
        ).scalar_one_or_none()
        if mapping is None:
            raise NotFoundError(f"Mapping {mapping_id} not found")
        return mapping

    def list_for_user(self, user_id):
        stmt = select(Mapping).where(Mapping.user_id == user_id).order_by(Mapping.created_at.desc())
        return list(self.session.execute(stmt).scalars())

    def create(self, user_id, data) -> Mapping:
        unknown = sorted(set(data) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown mapping field(s): {', '.join(unknown)}")
        name = _clean(data.get('name'), 'name')
        if not name:
            raise ValidationError('name is required')
        criteria = {f: _clean(data.get(f), f) for f in CRITERIA_FIELDS}
        if not any(criteria.values()):
            raise ValidationError('At least one of job_title, company or country is required')

        mapping = Mapping(
            user_id=user_id,
            name=name,
            status='CREATED',
            next_run_at=self.clock(),   # picked up by the next due sweep
            **criteria,
        )
        self.session.add(mapping)
        self.session.commit()
        logger.info("Created mapping %s for user %s", mapping.id, user_id)
        return mapping

    def update(self, user_id, mapping_id, data) -> Mapping:
        mapping = self.get(user_id, mapping_id)
        unknown = sorted(set(data) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown mapping field(s): {', '.join(unknown)}")

        if 'name' in data:
            name = _clean(data['name'], 'name')
            if not name:
                raise ValidationError('name must not be empty')
            mapping.name = name
        for field in CRITERIA_FIELDS:
            if field in data:
                setattr(mapping, field, _clean(data[field], field))
        if not any(getattr(mapping, f) for f in CRITERIA_FIELDS):
            self.session.rollback()
            raise ValidationError('At least one of job_title, company or country is required')

        self.session.commit()
        return mapping

    def delete(self, user_id, mapping_id):
        mapping = self.get(user_id, mapping_id)
        if self._in_progress(mapping.id):
            raise ConflictError(f"Mapping {mapping_id} has a run in progress")
        self.session.delete(mapping)
        self.session.commit()
        logger.info("Deleted mapping %s", mapping_id)

    def _in_progress(self, mapping_id):
        return self.session.execute(
            select(MappingRun.id).where(MappingRun.mapping_id == mapping_id, MappingRun.status == 'IN_PROGRESS')
        ).first() is not None

    # ── Scheduling eligibility ────────────────────────────────────────

    def pause(self, user_id, mapping_id) -> Mapping:
        mapping = self.get(user_id, mapping_id)
        mapping.status = 'PAUSED'
        self.session.commit()
        return mapping

    def resume(self, user_id, mapping_id) -> Mapping:
        mapping = self.get(user_id, mapping_id)
        if mapping.status != 'PAUSED':
            raise ConflictError(f"Mapping {mapping_id} is not paused")
        if self._in_progress(mapping.id):
            mapping.status = 'IN_PROGRESS'
        else:
            mapping.status = 'COMPLETED' if mapping.last_run_at else 'CREATED'
        self.session.commit()
        return mapping

    # ── Profiles and runs ─────────────────────────────────────────────

    def profiles(self, user_id, mapping_id, limit=20, offset=0, include_stale=True):
        mapping = self.get(user_id, mapping_id)
        if limit < 1 or offset < 0:
            raise ValidationError('limit must be positive and offset non-negative')
        limit = min(limit, MAX_PAGE_SIZE)

        where = [Profile.mapping_id == mapping.id]
        if not include_stale:
            where.append(Profile.is_stale.is_(False))
        total = self.session.execute(select(func.count(Profile.id)).where(*where)).scalar_one()
        rows = self.session.execute(
            select(Profile).where(*where)
            .order_by(Profile.is_stale, Profile.name, Profile.external_id)
            .limit(limit).offset(offset)
        ).scalars().all()

        return {
            'data': [p.to_dict() for p in rows],
            'pagination': {
                'total': total,
                'limit': limit,
                'offset': offset,
                'has_more': offset + len(rows) < total,
            },
        }

    def runs(self, user_id, mapping_id, limit=50):
        mapping = self.get(user_id, mapping_id)
        stmt = (
            select(MappingRun).where(MappingRun.mapping_id == mapping.id)
            .order_by(MappingRun.run_date.desc()).limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def run_detail(self, user_id, mapping_id, run_id):
        mapping = self.get(user_id, mapping_id)
        run = self.session.execute(
            select(MappingRun).where(MappingRun.id == run_id, MappingRun.mapping_id == mapping.id)
        ).scalar_one_or_none()
        if run is None:
            raise NotFoundError(f"Run {run_id} not found")
        changes = self.session.execute(
            select(ProfileChange).where(ProfileChange.run_id == run.id).order_by(ProfileChange.id)
        ).scalars().all()
        data = run.to_dict()
        data['changes'] = [c.to_dict() for c in changes]
        return data

    def export(self, user_id, mapping_id, fmt='csv'):
        """Returns (filename, payload bytes, content type)."""
        mapping = self.get(user_id, mapping_id)
        rows = self.session.execute(
            select(Profile).where(Profile.mapping_id == mapping.id).order_by(Profile.name, Profile.external_id)
        ).scalars().all()
        payload, content_type = export_profiles(rows, fmt, title=mapping.name)
        safe_name = ''.join(c if c.isalnum() or c in '-_' else '_' for c in mapping.name)
        filename = f"{safe_name}_{self.clock().strftime('%Y%m%d')}.{fmt}"
        return filename, payload, content_type
