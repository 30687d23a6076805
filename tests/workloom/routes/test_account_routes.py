"""Tests for /api/accounts — CRUD, toggle and connection test."""
from workloom.config import HUBSPOT, LINKEDIN
from workloom.connectors import ConnectionTestResult

from conftest import OTHER_USER_ID


class TestCreateAccount:

    def test_create_returns_201_without_credentials(self, client, credentials):
        resp = client.post('/api/accounts', json={
            'provider': 'hubspot', 'account_name': 'Main portal', 'credentials': credentials[HUBSPOT],
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data['provider'] == HUBSPOT
        assert data['status'] == 'TESTING'
        assert data['username'] == '998877'
        assert 'credentials' not in data
        assert 'encrypted_credentials' not in data
        assert 'pat-na1-123' not in resp.get_data(as_text=True)

    def test_missing_credential_field_is_400(self, client):
        resp = client.post('/api/accounts', json={
            'provider': 'LINKEDIN', 'account_name': 'x', 'credentials': {'username': 'a'},
        })
        assert resp.status_code == 400
        assert 'password' in resp.get_json()['error']

    def test_unknown_provider_is_400(self, client):
        resp = client.post('/api/accounts', json={'provider': 'pipedrive', 'account_name': 'x'})
        assert resp.status_code == 400


class TestReadUpdateDelete:

    def test_list_filters_by_provider(self, client, make_account):
        make_account(HUBSPOT)
        make_account(LINKEDIN)
        resp = client.get('/api/accounts?provider=linkedin')
        assert [a['provider'] for a in resp.get_json()] == [LINKEDIN]

    def test_other_users_account_is_404(self, client, make_account):
        account = make_account(HUBSPOT, user_id=OTHER_USER_ID)
        assert client.get(f'/api/accounts/{account.id}').status_code == 404

    def test_update_config(self, client, make_account):
        account = make_account(LINKEDIN)
        resp = client.put(f'/api/accounts/{account.id}', json={'config': {'daily_limit': 50}})
        assert resp.status_code == 200
        assert resp.get_json()['config']['daily_limit'] == 50

    def test_update_rejects_bad_config(self, client, make_account):
        account = make_account(LINKEDIN)
        resp = client.put(f'/api/accounts/{account.id}', json={'config': {'daily_limit': 'lots'}})
        assert resp.status_code == 400

    def test_toggle(self, client, make_account):
        account = make_account(LINKEDIN)
        resp = client.post(f'/api/accounts/{account.id}/toggle')
        assert resp.get_json()['is_active'] is False
        assert resp.get_json()['status'] == 'INACTIVE'

    def test_delete(self, client, make_account):
        account = make_account(HUBSPOT)
        assert client.delete(f'/api/accounts/{account.id}').get_json() == {'ok': True}
        assert client.get(f'/api/accounts/{account.id}').status_code == 404


class TestConnectionTest:

    def test_successful_check_activates(self, client, make_account):
        account = make_account(HUBSPOT, status='TESTING')
        resp = client.post(f'/api/accounts/{account.id}/test')
        data = resp.get_json()
        assert resp.status_code == 200
        assert data['success'] is True
        assert 'response_time' in data['details']
        assert client.get(f'/api/accounts/{account.id}').get_json()['status'] == 'ACTIVE'

    def test_failed_check_is_still_200(self, client, make_account, connectors):
        connectors[HUBSPOT].test_result = ConnectionTestResult(False, 'Invalid API key')
        account = make_account(HUBSPOT)
        resp = client.post(f'/api/accounts/{account.id}/test')
        assert resp.status_code == 200
        assert resp.get_json()['success'] is False
        assert client.get(f'/api/accounts/{account.id}').get_json()['status'] == 'ERROR'
