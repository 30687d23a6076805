"""Tests for workloom.connectors.salesforce — auth flows, SOQL and record normalization."""
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from workloom.connectors import FetchQuery
from workloom.connectors.salesforce import SalesforceConnector, soql_literal
from workloom.errors import CredentialError
from workloom.providers import SalesforceCredentials


@pytest.fixture
def http():
    return MagicMock()


def _connector(http, **creds):
    data = {'username': 'ops@example.com', 'security_token': 'tok'}
    data.update(creds)
    return SalesforceConnector(SalesforceCredentials(**data), http=http)


@pytest.fixture
def connector(http):
    return _connector(http, access_token='sf-access', instance_url='https://example.my.salesforce.com/')


class TestAuth:

    def test_stored_token_used_directly(self, connector, http):
        http.request_json.return_value = {'DailyApiRequests': {'Remaining': 14000}}

        result = connector.test_connection()

        assert result.success is True
        assert result.details['daily_api_requests_remaining'] == 14000
        args, kwargs = http.request_json.call_args
        assert args[1] == 'https://example.my.salesforce.com/services/data/v59.0/limits'
        assert kwargs['headers']['Authorization'] == 'Bearer sf-access'

    def test_password_flow_when_no_token(self, http):
        connector = _connector(http, password='pw', client_id='cid', client_secret='secret')
        http.request_json.side_effect = [
            {'access_token': 'fresh', 'instance_url': 'https://na1.salesforce.com'},
            {},
        ]

        connector.test_connection()

        token_call, api_call = http.request_json.call_args_list
        assert token_call.kwargs['data']['grant_type'] == 'password'
        assert token_call.kwargs['data']['password'] == 'pwtok'
        assert api_call.args[1].startswith('https://na1.salesforce.com/services/data/')
        assert api_call.kwargs['headers']['Authorization'] == 'Bearer fresh'

    def test_rejected_token_reauthenticates_once(self, http):
        connector = _connector(http, access_token='stale', instance_url='https://na1.salesforce.com',
                               client_id='cid', refresh_token='rt')
        http.request_json.side_effect = [
            CredentialError('expired'),
            {'access_token': 'fresh', 'instance_url': 'https://na1.salesforce.com'},
            {'sobjects': []},
        ]

        assert connector.list_objects() == []
        assert connector.access_token == 'fresh'
        assert http.request_json.call_args_list[1].kwargs['data']['grant_type'] == 'refresh_token'

    def test_rejected_token_without_flow_fails_check(self, connector, http):
        http.request_json.side_effect = CredentialError('SALESFORCE rejected the stored credentials (HTTP 401)')
        result = connector.test_connection()
        assert result.success is False

    def test_no_way_to_sign_in(self, http):
        connector = _connector(http)
        with pytest.raises(CredentialError, match='connected app'):
            connector.authenticate()


class TestFetch:

    def test_records_builds_soql(self, connector, http):
        http.request_json.return_value = {
            'totalSize': 3, 'done': False, 'nextRecordsUrl': '/services/data/v59.0/query/01g-2000',
            'records': [{'attributes': {'type': 'Lead'}, 'Id': '00Q1', 'Email': 'a@x.com'}],
        }

        page = connector.fetch(FetchQuery('records', {
            'object_type': 'Lead', 'limit': 10, 'created_after': datetime(2026, 3, 1, 8, 0),
        }))

        soql = http.request_json.call_args.kwargs['params']['q']
        assert soql.startswith('SELECT Id, FirstName, LastName, Email')
        assert 'WHERE CreatedDate > 2026-03-01T08:00:00Z' in soql
        assert soql.endswith('LIMIT 10')
        assert page.records == [{'id': '00Q1', 'properties': {'Email': 'a@x.com'}}]
        assert page.total == 3
        assert page.next_cursor == '/services/data/v59.0/query/01g-2000'

    def test_records_follow_cursor(self, connector, http):
        http.request_json.return_value = {'done': True, 'records': []}
        page = connector.fetch(FetchQuery('records', {}, cursor='/services/data/v59.0/query/01g-2000'))
        assert http.request_json.call_args.args[1].endswith('/services/data/v59.0/query/01g-2000')
        assert page.next_cursor is None

    def test_lookup_quotes_value(self, connector, http):
        http.request_json.return_value = {'records': []}
        connector.fetch(FetchQuery('lookup', {
            'object_type': 'Contact', 'field': 'Email', 'value': "o'brien@x.com", 'properties': ['Title'],
        }))
        soql = http.request_json.call_args.kwargs['params']['q']
        assert soql.startswith('SELECT Id, Title FROM Contact')
        assert "WHERE Email = 'o\\'brien@x.com'" in soql

    def test_soql_literal_escapes_backslash(self):
        assert soql_literal('a\\b') == "'a\\\\b'"


class TestPushAndDescribe:

    def test_create_and_update(self, connector, http):
        http.request_json.return_value = {'id': '00Q9', 'success': True}
        assert connector.push({'LastName': 'Lee'}, object_type='Lead') == '00Q9'
        assert http.request_json.call_args.args[:2] == (
            'POST', 'https://example.my.salesforce.com/services/data/v59.0/sobjects/Lead')

        http.request_json.return_value = {}
        assert connector.push({'Title': 'CTO'}, object_type='Lead', record_id='00Q9') == '00Q9'
        assert http.request_json.call_args.args[0] == 'PATCH'

    def test_list_fields_required_flag(self, connector, http):
        http.request_json.return_value = {'fields': [
            {'name': 'LastName', 'createable': True, 'nillable': False, 'defaultedOnCreate': False},
            {'name': 'OwnerId', 'createable': True, 'nillable': False, 'defaultedOnCreate': True},
            {'name': 'Title', 'createable': True, 'nillable': True},
        ]}
        fields = {f['name']: f['required'] for f in connector.list_fields('Lead')}
        assert fields == {'LastName': True, 'OwnerId': False, 'Title': False}

    def test_list_objects_queryable_only(self, connector, http):
        http.request_json.return_value = {'sobjects': [
            {'name': 'Lead', 'label': 'Lead', 'queryable': True, 'createable': True},
            {'name': 'LeadShare', 'queryable': False},
        ]}
        assert connector.list_objects() == [{'name': 'Lead', 'label': 'Lead', 'createable': True}]
