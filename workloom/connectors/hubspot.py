"""
HubSpot connector — CRM v3 objects/search, properties, and workflows.
"""
import logging
from datetime import datetime
from typing import Dict, List

from workloom.config import HUBSPOT, HUBSPOT_API_URL
from workloom.connectors.base import ConnectionTestResult, FetchQuery, FetchResult, HttpClient
from workloom.errors import CredentialError, ValidationError

logger = logging.getLogger('connectors.hubspot')

DEFAULT_PROPERTIES = ['email', 'firstname', 'lastname', 'jobtitle', 'company', 'city', 'country']
MAX_PAGE_SIZE = 100


def epoch_ms(value: datetime) -> str:
    # naive datetimes are UTC throughout
    return str(int((value - datetime(1970, 1, 1)).total_seconds() * 1000))


class HubSpotConnector:
    provider = HUBSPOT

    def __init__(self, credentials, config=None, http=None):
        self.credentials = credentials
        self.config = config
        self.http = http or HttpClient(HUBSPOT)

    def _api(self, method, path, **kwargs):
        token = self.credentials.access_token or self.credentials.api_key
        headers = {'Authorization': f"Bearer {token}", 'Content-Type': 'application/json'}
        return self.http.request_json(method, f"{HUBSPOT_API_URL}{path}", headers=headers, **kwargs)

    # ── Capability ────────────────────────────────────────────────────

    def test_connection(self) -> ConnectionTestResult:
        try:
            info = self._api('GET', '/account-info/v3/details')
        except CredentialError as e:
            return ConnectionTestResult(False, e.message)
        return ConnectionTestResult(True, 'Connected to HubSpot', {
            'api_version': 'v3',
            'portal_id': info.get('portalId'),
            'time_zone': info.get('timeZone'),
        })

    def fetch(self, query: FetchQuery) -> FetchResult:
        if query.kind == 'records':
            return self._records(query.params, query.cursor)
        if query.kind == 'lookup':
            return self._lookup(query.params)
        raise ValidationError(f"HubSpot cannot fetch '{query.kind}'")

    def push(self, properties, *, object_type, record_id=None) -> str:
        if record_id:
            self._api('PATCH', f"/crm/v3/objects/{object_type}/{record_id}", json={'properties': properties})
            return record_id
        created = self._api('POST', f"/crm/v3/objects/{object_type}", json={'properties': properties})
        return str(created['id'])

    # ── Extras ────────────────────────────────────────────────────────

    def list_properties(self, object_type='contacts') -> List[Dict]:
        body = self._api('GET', f"/crm/v3/properties/{object_type}")
        return [
            {
                'name': p['name'],
                'label': p.get('label', p['name']),
                'type': p.get('type'),
                'read_only': bool((p.get('modificationMetadata') or {}).get('readOnlyValue')),
            }
            for p in body.get('results', [])
            if not p.get('hidden')
        ]

    def list_workflows(self) -> List[Dict]:
        body = self._api('GET', '/automation/v3/workflows')
        return [
            {'id': str(w['id']), 'name': w.get('name', ''), 'enabled': bool(w.get('enabled'))}
            for w in body.get('workflows', [])
        ]

    def enroll_in_workflow(self, workflow_id, email):
        """Enroll a contact (by email) into a contact-based workflow."""
        self._api('POST', f"/automation/v2/workflows/{workflow_id}/enrollments/contacts/{email}")

    # ── Internals ─────────────────────────────────────────────────────

    def _records(self, params, cursor) -> FetchResult:
        object_type = params.get('object_type', 'contacts')
        filters = []
        if params.get('created_after'):
            filters.append({'propertyName': 'createdate', 'operator': 'GTE',
                            'value': epoch_ms(params['created_after'])})
        if params.get('modified_after'):
            filters.append({'propertyName': 'lastmodifieddate', 'operator': 'GTE',
                            'value': epoch_ms(params['modified_after'])})

        body = {
            'properties': params.get('properties') or DEFAULT_PROPERTIES,
            'limit': min(int(params.get('limit') or MAX_PAGE_SIZE), MAX_PAGE_SIZE),
            'sorts': [{'propertyName': 'createdate', 'direction': 'ASCENDING'}],
        }
        if filters:
            body['filterGroups'] = [{'filters': filters}]
        if cursor:
            body['after'] = cursor

        result = self._api('POST', f"/crm/v3/objects/{object_type}/search", json=body)
        records = [{'id': str(r['id']), 'properties': r.get('properties') or {}} for r in result.get('results', [])]
        next_cursor = ((result.get('paging') or {}).get('next') or {}).get('after')
        return FetchResult(records=records, next_cursor=next_cursor, total=result.get('total'))

    def _lookup(self, params) -> FetchResult:
        object_type = params['object_type']
        body = {
            'filterGroups': [{'filters': [
                {'propertyName': params['field'], 'operator': 'EQ', 'value': str(params['value'])},
            ]}],
            'properties': sorted(set([params['field']] + list(params.get('properties') or []))),
            'limit': 1,
        }
        result = self._api('POST', f"/crm/v3/objects/{object_type}/search", json=body)
        records = [{'id': str(r['id']), 'properties': r.get('properties') or {}} for r in result.get('results', [])]
        return FetchResult(records=records, total=len(records))
