"""
Salesforce connector — REST API (sObjects + SOQL).

Authentication, in order of preference:
  1. stored access_token + instance_url
  2. OAuth password flow   (client_id, client_secret, password + security_token)
  3. OAuth refresh flow    (client_id, refresh_token)

A 401 on a stored token triggers one re-authentication when a flow is available.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional

from workloom.config import SALESFORCE, SALESFORCE_LOGIN_URL, SALESFORCE_API_VERSION
from workloom.connectors.base import ConnectionTestResult, FetchQuery, FetchResult, HttpClient
from workloom.errors import CredentialError, ValidationError

logger = logging.getLogger('connectors.salesforce')

DEFAULT_FIELDS = ['Id', 'FirstName', 'LastName', 'Email', 'Title', 'Company', 'City', 'Country']
OBJECT_FIELDS = {
    'Lead': DEFAULT_FIELDS,
    'Contact': ['Id', 'FirstName', 'LastName', 'Email', 'Title', 'MailingCity', 'MailingCountry'],
    'Account': ['Id', 'Name', 'Website', 'BillingCountry'],
}


def soql_literal(value) -> str:
    """Quote a value for a SOQL WHERE clause."""
    text = str(value).replace('\\', '\\\\').replace("'", "\\'")
    return f"'{text}'"


def soql_datetime(value: datetime) -> str:
    return value.strftime('%Y-%m-%dT%H:%M:%SZ')


class SalesforceConnector:
    provider = SALESFORCE

    def __init__(self, credentials, config=None, http=None):
        self.credentials = credentials
        self.config = config
        self.http = http or HttpClient(SALESFORCE)
        self.access_token = credentials.access_token
        self.instance_url = (credentials.instance_url or '').rstrip('/') or None

    # ── Auth ──────────────────────────────────────────────────────────

    def _can_reauthenticate(self):
        c = self.credentials
        return bool(c.client_id and ((c.client_secret and c.password) or c.refresh_token))

    def authenticate(self):
        c = self.credentials
        if c.client_id and c.client_secret and c.password:
            data = {
                'grant_type': 'password',
                'client_id': c.client_id,
                'client_secret': c.client_secret,
                'username': c.username,
                'password': f"{c.password}{c.security_token}",
            }
        elif c.client_id and c.refresh_token:
            data = {
                'grant_type': 'refresh_token',
                'client_id': c.client_id,
                'refresh_token': c.refresh_token,
            }
            if c.client_secret:
                data['client_secret'] = c.client_secret
        else:
            raise CredentialError(
                'Salesforce account needs an access token and instance URL, '
                'or a connected app (client_id) to sign in with'
            )

        try:
            token = self.http.request_json('POST', f"{SALESFORCE_LOGIN_URL}/services/oauth2/token", data=data)
        except CredentialError:
            raise CredentialError('Salesforce rejected the username, password or security token')
        self.access_token = token['access_token']
        self.instance_url = token['instance_url'].rstrip('/')
        logger.info("Authenticated %s against %s", c.username, self.instance_url)

    def _api(self, method, path, **kwargs):
        if not (self.access_token and self.instance_url):
            self.authenticate()
        url = f"{self.instance_url}/services/data/{SALESFORCE_API_VERSION}{path}"
        try:
            return self.http.request_json(method, url, headers=self._headers(), **kwargs)
        except CredentialError:
            if not self._can_reauthenticate():
                raise
            logger.info("Salesforce token rejected, re-authenticating")
            self.authenticate()
            return self.http.request_json(method, url, headers=self._headers(), **kwargs)

    def _headers(self):
        return {'Authorization': f"Bearer {self.access_token}", 'Content-Type': 'application/json'}

    # ── Capability ────────────────────────────────────────────────────

    def test_connection(self) -> ConnectionTestResult:
        try:
            limits = self._api('GET', '/limits')
        except CredentialError as e:
            return ConnectionTestResult(False, e.message)
        daily = limits.get('DailyApiRequests') or {}
        return ConnectionTestResult(True, 'Connected to Salesforce', {
            'api_version': SALESFORCE_API_VERSION,
            'instance_url': self.instance_url,
            'daily_api_requests_remaining': daily.get('Remaining'),
        })

    def fetch(self, query: FetchQuery) -> FetchResult:
        if query.kind == 'records':
            return self._records(query.params, query.cursor)
        if query.kind == 'lookup':
            return self._lookup(query.params)
        raise ValidationError(f"Salesforce cannot fetch '{query.kind}'")

    def push(self, properties, *, object_type, record_id=None) -> str:
        if record_id:
            self._api('PATCH', f"/sobjects/{object_type}/{record_id}", json=properties)
            return record_id
        created = self._api('POST', f"/sobjects/{object_type}", json=properties)
        return created['id']

    # ── Extras ────────────────────────────────────────────────────────

    def list_objects(self) -> List[Dict]:
        body = self._api('GET', '/sobjects')
        return [
            {'name': o['name'], 'label': o.get('label', o['name']), 'createable': o.get('createable', False)}
            for o in body.get('sobjects', [])
            if o.get('queryable')
        ]

    def list_fields(self, object_type) -> List[Dict]:
        body = self._api('GET', f"/sobjects/{object_type}/describe")
        return [
            {
                'name': f['name'],
                'label': f.get('label', f['name']),
                'type': f.get('type'),
                'required': bool(f.get('createable') and not f.get('nillable') and not f.get('defaultedOnCreate')),
            }
            for f in body.get('fields', [])
        ]

    # ── Internals ─────────────────────────────────────────────────────

    def _records(self, params, cursor) -> FetchResult:
        if cursor:
            # nextRecordsUrl already carries the version prefix
            body = self._api('GET', cursor.split(f"/services/data/{SALESFORCE_API_VERSION}", 1)[-1])
        else:
            object_type = params.get('object_type', 'Lead')
            field_list = params.get('properties') or OBJECT_FIELDS.get(object_type, ['Id'])
            if 'Id' not in field_list:
                field_list = ['Id'] + list(field_list)

            clauses = []
            if params.get('created_after'):
                clauses.append(f"CreatedDate > {soql_datetime(params['created_after'])}")
            if params.get('modified_after'):
                clauses.append(f"LastModifiedDate > {soql_datetime(params['modified_after'])}")
            soql = f"SELECT {', '.join(field_list)} FROM {object_type}"
            if clauses:
                soql += ' WHERE ' + ' AND '.join(clauses)
            soql += ' ORDER BY CreatedDate'
            if params.get('limit'):
                soql += f" LIMIT {int(params['limit'])}"
            body = self._api('GET', '/query', params={'q': soql})

        records = [_record(r) for r in body.get('records', [])]
        next_url = None if body.get('done', True) else body.get('nextRecordsUrl')
        return FetchResult(records=records, next_cursor=next_url, total=body.get('totalSize'))

    def _lookup(self, params) -> FetchResult:
        object_type = params['object_type']
        field = params['field']
        wanted = ['Id'] + [f for f in (params.get('properties') or []) if f != 'Id']
        soql = (
            f"SELECT {', '.join(wanted)} FROM {object_type} "
            f"WHERE {field} = {soql_literal(params['value'])} ORDER BY CreatedDate LIMIT 1"
        )
        body = self._api('GET', '/query', params={'q': soql})
        records = [_record(r) for r in body.get('records', [])]
        return FetchResult(records=records, total=len(records))


def _record(raw: Dict) -> Dict:
    properties = {k: v for k, v in raw.items() if k not in ('attributes', 'Id')}
    return {'id': raw.get('Id'), 'properties': properties}
