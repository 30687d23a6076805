"""
Sync reconciler — moves Profiles into a CRM and CRM records into Mappings.

Export (profiles → CRM), per record:
  1. build the target record from the account's FieldMapping table
     (a missing required source value fails that record)
  2. find the existing CRM record by the natural key, else by the remote id
     remembered in Profile.crm_refs
  3. apply the duplicate policy
       SKIP        existing record → skipped
       UPDATE      push only non-empty values that differ from the target
       CREATE_NEW  always insert

Import (CRM → mapping) upserts Profiles; SKIP leaves existing ones alone.

A failed record is recorded as {record_id, error} and never aborts the batch.
Every operation leaves an append-only SyncOperation with
processed == successful + failed + skipped.
"""
import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, select

from workloom import providers
from workloom.config import HUBSPOT, LINKEDIN, SALESFORCE
from workloom.connectors import FetchQuery
from workloom.connectors.linkedin import public_identifier
from workloom.database import utcnow
from workloom.errors import AccountUnavailable, NotFoundError, ValidationError, WorkloomError
from workloom.models import FieldMapping, Mapping, Profile, SyncOperation
from workloom.models.profile import EXPORTABLE_FIELDS
from workloom.services.accounts import Increment
from workloom.services.slots import account_slots

logger = logging.getLogger('services.sync')

# Used when an account has no FieldMapping rows yet
DEFAULT_FIELD_MAPPINGS = {
    SALESFORCE: [
        ('first_name', 'FirstName', False),
        ('last_name', 'LastName', True),
        ('email', 'Email', False),
        ('job_title', 'Title', False),
        ('company', 'Company', True),
        ('location', 'City', False),
    ],
    HUBSPOT: [
        ('first_name', 'firstname', False),
        ('last_name', 'lastname', False),
        ('email', 'email', True),
        ('job_title', 'jobtitle', False),
        ('company', 'company', False),
        ('location', 'city', False),
    ],
}

# Field that holds the remote record id, for lookups by id
ID_FIELDS = {SALESFORCE: 'Id', HUBSPOT: 'hs_object_id'}

IMPORT_FILTER_KEYS = ('created_after', 'modified_after', 'properties', 'limit')
MAX_IMPORT = 1000
DEFAULT_IMPORT = 100


class SyncReconciler:

    def __init__(self, session, registry, clock=utcnow):
        self.session = session
        self.registry = registry
        self.clock = clock
        self.slots = account_slots(registry.redis)

    # ── Accounts and field mappings ───────────────────────────────────

    def _crm_account(self, user_id, account_id, provider=None):
        account = self.registry.get(user_id, account_id, provider=provider)
        if account.provider == LINKEDIN:
            raise ValidationError('Sync operations need a Salesforce or HubSpot account')
        return account

    def _usable_account(self, user_id, account_id, provider=None):
        account = self._crm_account(user_id, account_id, provider)
        reason = self.registry.is_schedulable(account)
        if reason:
            raise AccountUnavailable(account.id, reason)
        return account

    def _stored_mappings(self, account):
        return list(self.session.execute(
            select(FieldMapping).where(FieldMapping.account_id == account.id).order_by(FieldMapping.position)
        ).scalars())

    def effective_mappings(self, account, override=None):
        """[(source_field, target_field, is_required)] for this account."""
        if override is not None:
            return [(m['source_field'], m['target_field'], bool(m.get('is_required')))
                    for m in validate_field_mappings(override)]
        stored = self._stored_mappings(account)
        if stored:
            return [(m.source_field, m.target_field, m.is_required) for m in stored]
        return list(DEFAULT_FIELD_MAPPINGS[account.provider])

    def get_field_mappings(self, user_id, account_id):
        account = self._crm_account(user_id, account_id)
        return {
            'available': list(EXPORTABLE_FIELDS),
            'current': [
                {'source_field': s, 'target_field': t, 'is_required': r}
                for s, t, r in self.effective_mappings(account)
            ],
        }

    def update_field_mappings(self, user_id, account_id, mappings):
        account = self._crm_account(user_id, account_id)
        rows = validate_field_mappings(mappings)

        self.session.execute(delete(FieldMapping).where(FieldMapping.account_id == account.id))
        for position, row in enumerate(rows):
            self.session.add(FieldMapping(
                account_id=account.id,
                position=position,
                source_field=row['source_field'],
                target_field=row['target_field'],
                is_required=bool(row.get('is_required')),
            ))
        self.session.commit()
        logger.info("Replaced %d field mapping(s) on account %s", len(rows), account.id)
        return self.get_field_mappings(user_id, account_id)

    # ── Export ────────────────────────────────────────────────────────

    def profile_ids_for_mapping(self, user_id, mapping_id):
        mapping = self.session.execute(
            select(Mapping).where(Mapping.id == mapping_id, Mapping.user_id == user_id)
        ).scalar_one_or_none()
        if mapping is None:
            raise NotFoundError(f"Mapping {mapping_id} not found")
        return list(self.session.execute(
            select(Profile.id).where(Profile.mapping_id == mapping.id, Profile.is_stale.is_(False))
            .order_by(Profile.external_id)
        ).scalars())

    def _owned_profiles(self, user_id, profile_ids):
        rows = self.session.execute(
            select(Profile).join(Mapping, Mapping.id == Profile.mapping_id)
            .where(Profile.id.in_(profile_ids), Mapping.user_id == user_id)
        ).scalars()
        return {p.id: p for p in rows}

    def export_data(self, user_id, account_id, profile_ids, field_mappings=None, provider=None) -> SyncOperation:
        account = self._usable_account(user_id, account_id, provider)
        if not isinstance(profile_ids, list) or not profile_ids:
            raise ValidationError('profile_ids must be a non-empty list')
        ordered = list(dict.fromkeys(str(pid) for pid in profile_ids))
        mappings = self.effective_mappings(account, field_mappings)
        config = self.registry.config_for(account)

        op = _new_operation(account, 'EXPORT')
        with self._holding(account, op):
            connector = self.registry.connector_for(account)
            profiles = self._owned_profiles(user_id, ordered)
            errors = []
            disabled = None

            for pid in ordered:
                op.processed += 1
                profile = profiles.get(pid)
                if profile is None:
                    op.failed += 1
                    errors.append({'record_id': pid, 'error': 'Profile not found'})
                    continue
                if disabled:
                    op.failed += 1
                    errors.append({'record_id': pid, 'error': disabled})
                    continue
                try:
                    outcome = self._export_one(connector, account, config, mappings, profile)
                except WorkloomError as e:
                    op.failed += 1
                    errors.append({'record_id': pid, 'error': e.message})
                    if not isinstance(e, ValidationError):
                        if self.registry.record_failure(account, e.message):
                            disabled = f"Account disabled: {account.error_message}"
                    continue
                except Exception as e:
                    logger.error("Export of profile %s to account %s failed: %s", pid, account.id, e, exc_info=True)
                    message = str(e) or e.__class__.__name__
                    op.failed += 1
                    errors.append({'record_id': pid, 'error': message})
                    if self.registry.record_failure(account, message):
                        disabled = f"Account disabled: {account.error_message}"
                    continue
                if outcome == 'skipped':
                    op.skipped += 1
                else:
                    op.successful += 1

            self._close(op, errors, account, 'Exported', exported=op.successful)
        return op

    def _export_one(self, connector, account, config, mappings, profile):
        properties = build_record(profile, mappings)
        object_type = config.target_object
        policy = config.duplicate_handling

        existing = None
        if policy != 'CREATE_NEW':
            existing = self._find_existing(connector, account, config, mappings, profile, properties)

        if existing and policy == 'SKIP':
            return 'skipped'

        if existing:
            current = existing.get('properties') or {}
            changes = {
                k: v for k, v in properties.items()
                if v != '' and str(current.get(k) if current.get(k) is not None else '') != v
            }
            remote_id = existing['id']
            if changes:
                connector.push(changes, object_type=object_type, record_id=remote_id)
            outcome = 'updated'
        else:
            remote_id = connector.push(
                {k: v for k, v in properties.items() if v != ''}, object_type=object_type,
            )
            outcome = 'created'

        self.registry.record_success(account)
        profile.crm_refs = {**(profile.crm_refs or {}), account.id: remote_id}
        logger.debug("Profile %s %s as %s %s", profile.id, outcome, object_type, remote_id)
        return outcome

    def _find_existing(self, connector, account, config, mappings, profile, properties):
        object_type = config.target_object
        wanted = list(properties)

        key_target = next((t for s, t, _ in mappings if s == config.natural_key), None)
        key_value = profile.field_value(config.natural_key)
        if key_target and key_value:
            found = connector.fetch(FetchQuery('lookup', {
                'object_type': object_type, 'field': key_target, 'value': key_value, 'properties': wanted,
            }))
            if found.records:
                return found.records[0]

        remote_id = (profile.crm_refs or {}).get(account.id)
        if remote_id:
            found = connector.fetch(FetchQuery('lookup', {
                'object_type': object_type, 'field': ID_FIELDS[account.provider],
                'value': remote_id, 'properties': wanted,
            }))
            if found.records:
                return found.records[0]
        return None

    # ── Import ────────────────────────────────────────────────────────

    def _pull(self, connector, config, filters):
        params = {'object_type': config.target_object, **filters}
        limit = filters['limit']
        records, total, cursor = [], None, None
        while len(records) < limit:
            page = connector.fetch(FetchQuery('records', params, cursor))
            if total is None:
                total = page.total
            records.extend(page.records)
            cursor = page.next_cursor
            if not cursor or not page.records:
                break
        return records[:limit], total

    def preview_import(self, user_id, account_id, filters=None, field_mappings=None):
        account = self._usable_account(user_id, account_id)
        filters = parse_import_filters(filters)
        filters['limit'] = min(filters['limit'], 25)
        mappings = self.effective_mappings(account, field_mappings)
        connector = self.registry.connector_for(account)
        config = self.registry.config_for(account)

        records, total = self._pull(connector, config, filters)
        preview = []
        for record in records:
            values = reverse_map(record, mappings)
            values['external_id'] = external_key(values, config.natural_key)
            values['remote_id'] = record['id']
            preview.append(values)
        return {'records': preview, 'total': total if total is not None else len(preview)}

    def import_data(self, user_id, account_id, mapping_id, filters=None, field_mappings=None) -> SyncOperation:
        account = self._usable_account(user_id, account_id)
        mapping = self.session.execute(
            select(Mapping).where(Mapping.id == mapping_id, Mapping.user_id == user_id)
        ).scalar_one_or_none()
        if mapping is None:
            raise NotFoundError(f"Mapping {mapping_id} not found")
        filters = parse_import_filters(filters)
        mappings = self.effective_mappings(account, field_mappings)
        config = self.registry.config_for(account)

        op = _new_operation(account, 'IMPORT')
        with self._holding(account, op):
            connector = self.registry.connector_for(account)
            try:
                records, _ = self._pull(connector, config, filters)
            except WorkloomError as e:
                self.registry.record_failure(account, e.message)
                raise
            self.registry.record_success(account)

            existing = {
                p.external_id: p for p in self.session.execute(
                    select(Profile).where(Profile.mapping_id == mapping.id)
                ).scalars()
            }
            now = self.clock()
            errors = []
            for record in records:
                op.processed += 1
                values = reverse_map(record, mappings)
                key = external_key(values, config.natural_key)
                if not key:
                    op.failed += 1
                    errors.append({'record_id': record['id'], 'error': 'Record has no external key'})
                    continue

                profile = existing.get(key)
                if profile is not None and config.duplicate_handling == 'SKIP':
                    op.skipped += 1
                    continue
                if profile is None:
                    profile = Profile(id=str(uuid.uuid4()), mapping_id=mapping.id, external_id=key,
                                      first_seen_at=now, crm_refs={})
                    self.session.add(profile)
                    existing[key] = profile
                for field, value in values.items():
                    if value:
                        setattr(profile, field, value)
                profile.last_seen_at = now
                profile.is_stale = False
                profile.crm_refs = {**(profile.crm_refs or {}), account.id: record['id']}
                op.successful += 1

            self.session.flush()
            mapping.profiles_count = sum(1 for p in existing.values() if not p.is_stale)
            self._close(op, errors, account, 'Imported', imported=op.successful)
        return op

    # ── HubSpot workflows ─────────────────────────────────────────────

    def trigger_workflow(self, user_id, account_id, workflow_id, profile_ids) -> SyncOperation:
        account = self._usable_account(user_id, account_id, provider=HUBSPOT)
        if not self.registry.config_for(account).enable_workflows:
            raise ValidationError('Workflows are disabled for this account (config.enable_workflows)')
        if not isinstance(profile_ids, list) or not profile_ids:
            raise ValidationError('profile_ids must be a non-empty list')
        ordered = list(dict.fromkeys(str(pid) for pid in profile_ids))

        op = _new_operation(account, 'WORKFLOW')
        with self._holding(account, op):
            connector = self.registry.connector_for(account)
            profiles = self._owned_profiles(user_id, ordered)
            errors = []
            for pid in ordered:
                op.processed += 1
                profile = profiles.get(pid)
                if profile is None or not profile.email:
                    op.failed += 1
                    errors.append({'record_id': pid,
                                   'error': 'Profile not found' if profile is None else 'Profile has no email'})
                    continue
                try:
                    connector.enroll_in_workflow(workflow_id, profile.email)
                except WorkloomError as e:
                    op.failed += 1
                    errors.append({'record_id': pid, 'error': e.message})
                    self.registry.record_failure(account, e.message)
                    continue
                except Exception as e:
                    logger.error("Workflow %s enrollment of profile %s failed: %s", workflow_id, pid, e, exc_info=True)
                    message = str(e) or e.__class__.__name__
                    op.failed += 1
                    errors.append({'record_id': pid, 'error': message})
                    self.registry.record_failure(account, message)
                    continue
                op.successful += 1
            self._close(op, errors, account, f"Enrolled in workflow {workflow_id}:")
        return op

    # ── History ───────────────────────────────────────────────────────

    def operation_history(self, user_id, account_id, limit=50):
        account = self._crm_account(user_id, account_id)
        return list(self.session.execute(
            select(SyncOperation).where(SyncOperation.account_id == account.id)
            .order_by(SyncOperation.created_at.desc()).limit(limit)
        ).scalars())

    # ── Internals ─────────────────────────────────────────────────────

    def _holding(self, account, op):
        return _SlotHold(self.slots, account.id, op.id)

    def _close(self, op, errors, account, verb, imported=0, exported=0):
        if op.processed != op.successful + op.failed + op.skipped:
            raise RuntimeError(f"Sync operation {op.id} counters do not add up")
        op.errors = errors
        op.success = not (op.processed and op.failed == op.processed)
        op.message = f"{verb} {op.successful} of {op.processed} record(s)"
        if op.skipped:
            op.message += f", {op.skipped} skipped"
        if op.failed:
            op.message += f", {op.failed} failed"
        self.session.add(op)

        variant = providers.get_variant(account.provider)
        changes = {'last_sync_at': self.clock().isoformat(), 'sync_errors': Increment(op.failed)}
        if imported:
            changes[variant.imported_stat] = Increment(imported)
        if exported:
            changes[variant.exported_stat] = Increment(exported)
        self.registry.update_stats(account, **changes)   # commits
        logger.info("Account %s %s: %s", account.id, op.kind, op.message)


class _SlotHold:
    """Hold the account slot for the duration of a sync batch."""

    def __init__(self, slots, account_id, holder):
        self.slots = slots
        self.account_id = account_id
        self.holder = holder

    def __enter__(self):
        if not self.slots.acquire(self.account_id, self.holder):
            raise AccountUnavailable(self.account_id, 'another job or sync is using this account')
        return self

    def __exit__(self, exc_type, exc, tb):
        self.slots.release(self.account_id, self.holder)
        return False


# ── Pure helpers ──────────────────────────────────────────────────────────────

def _new_operation(account, kind):
    return SyncOperation(
        id=str(uuid.uuid4()), account_id=account.id, kind=kind,
        processed=0, successful=0, failed=0, skipped=0, errors=[],
    )


def validate_field_mappings(mappings):
    if not isinstance(mappings, list):
        raise ValidationError('field mappings must be a list')
    seen = set()
    rows = []
    for m in mappings:
        if not isinstance(m, dict):
            raise ValidationError('each field mapping must be an object')
        unknown = sorted(set(m) - {'source_field', 'target_field', 'is_required'})
        if unknown:
            raise ValidationError(f"Unknown field mapping key(s): {', '.join(unknown)}")
        source = m.get('source_field')
        target = (m.get('target_field') or '').strip() if isinstance(m.get('target_field'), str) else ''
        if source not in EXPORTABLE_FIELDS:
            raise ValidationError(f"Unknown source field '{source}'. Available: {EXPORTABLE_FIELDS}")
        if not target:
            raise ValidationError('target_field must be a non-empty string')
        if target in seen:
            raise ValidationError(f"Duplicate target field '{target}'")
        seen.add(target)
        rows.append({'source_field': source, 'target_field': target, 'is_required': bool(m.get('is_required'))})
    return rows


def build_record(profile, mappings):
    """Target properties for one profile. ValidationError if a required value is missing."""
    record = {}
    for source, target, required in mappings:
        value = profile.field_value(source).strip()
        if required and not value:
            raise ValidationError(f"Required field '{source}' is empty")
        record[target] = value
    return record


def reverse_map(record, mappings):
    """CRM record → profile attribute dict (first/last name folded into name)."""
    props = record.get('properties') or {}
    values = {}
    first = last = ''
    for source, target, _ in mappings:
        raw = props.get(target)
        value = '' if raw is None else str(raw).strip()
        if source == 'first_name':
            first = value
        elif source == 'last_name':
            last = value
        elif source != 'external_id' and value:
            values[source] = value
    name = ' '.join(p for p in (first, last) if p)
    if name:
        values['name'] = name
    return values


def external_key(values, natural_key):
    """LinkedIn public id when the record carries a profile URL, else the natural key value."""
    ident = public_identifier(values.get('profile_url', ''))
    if ident:
        return ident
    value = values.get(natural_key) or ''
    return value.strip().lower() or None


def parse_import_filters(filters):
    filters = dict(filters or {})
    unknown = sorted(set(filters) - set(IMPORT_FILTER_KEYS))
    if unknown:
        raise ValidationError(f"Unknown import filter(s): {', '.join(unknown)}")

    parsed = {}
    for key in ('created_after', 'modified_after'):
        if filters.get(key):
            try:
                value = datetime.fromisoformat(str(filters[key]).replace('Z', '+00:00'))
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 timestamp")
            if value.tzinfo is not None:
                value = value.astimezone(timezone.utc).replace(tzinfo=None)
            parsed[key] = value

    props = filters.get('properties')
    if props is not None:
        if not isinstance(props, list) or not all(isinstance(p, str) and p for p in props):
            raise ValidationError('properties must be a list of field names')
        parsed['properties'] = props

    limit = filters.get('limit', DEFAULT_IMPORT)
    if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= MAX_IMPORT:
        raise ValidationError(f"limit must be an integer between 1 and {MAX_IMPORT}")
    parsed['limit'] = limit
    return parsed
