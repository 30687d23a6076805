"""Tests for /api/mappings — CRUD, runs, profiles and export."""
from workloom.config import LINKEDIN

from conftest import OTHER_USER_ID


def _create(client, **body):
    payload = {'name': 'Acme engineers', 'company': 'Acme'}
    payload.update(body)
    return client.post('/api/mappings', json=payload)


class TestCrud:

    def test_create_and_list(self, client):
        resp = _create(client)
        assert resp.status_code == 201
        assert resp.get_json()['status'] == 'CREATED'
        assert [m['name'] for m in client.get('/api/mappings').get_json()] == ['Acme engineers']

    def test_create_without_criteria_is_400(self, client):
        assert client.post('/api/mappings', json={'name': 'Everyone'}).status_code == 400

    def test_update_and_delete(self, client):
        mapping_id = _create(client).get_json()['id']
        resp = client.put(f'/api/mappings/{mapping_id}', json={'country': 'Germany'})
        assert resp.get_json()['country'] == 'Germany'
        assert client.delete(f'/api/mappings/{mapping_id}').get_json() == {'ok': True}
        assert client.get(f'/api/mappings/{mapping_id}').status_code == 404

    def test_other_users_mapping_is_404(self, client, make_mapping):
        mapping = make_mapping(user_id=OTHER_USER_ID)
        assert client.get(f'/api/mappings/{mapping.id}').status_code == 404


class TestRuns:

    def test_run_returns_202_and_history(self, client, make_account, services, enqueued, connectors,
                                         person_record):
        make_account(LINKEDIN)
        connectors[LINKEDIN].people = [person_record('jane', company='Acme')]
        mapping_id = _create(client).get_json()['id']

        resp = client.post(f'/api/mappings/{mapping_id}/run')
        assert resp.status_code == 202
        run_id = resp.get_json()['id']
        services.scheduler.execute(enqueued[0])

        runs = client.get(f'/api/mappings/{mapping_id}/runs').get_json()
        assert [(r['id'], r['status'], r['new_profiles']) for r in runs] == [(run_id, 'COMPLETED', 1)]
        detail = client.get(f'/api/mappings/{mapping_id}/runs/{run_id}').get_json()
        assert detail['changes'][0]['change_type'] == 'NEW_ARRIVAL'

        profiles = client.get(f'/api/mappings/{mapping_id}/profiles?limit=10').get_json()
        assert profiles['pagination']['total'] == 1
        assert profiles['data'][0]['external_id'] == 'jane'

    def test_run_without_account_is_409(self, client):
        mapping_id = _create(client).get_json()['id']
        resp = client.post(f'/api/mappings/{mapping_id}/run')
        assert resp.status_code == 409
        assert client.get(f'/api/mappings/{mapping_id}').get_json()['status'] == 'FAILED'

    def test_pause_blocks_run_until_resumed(self, client, make_account):
        make_account(LINKEDIN)
        mapping_id = _create(client).get_json()['id']
        assert client.post(f'/api/mappings/{mapping_id}/pause').get_json()['status'] == 'PAUSED'
        assert client.post(f'/api/mappings/{mapping_id}/run').status_code == 409
        assert client.post(f'/api/mappings/{mapping_id}/resume').get_json()['status'] == 'CREATED'
        assert client.post(f'/api/mappings/{mapping_id}/run').status_code == 202


class TestExport:

    def test_csv_download(self, client):
        mapping_id = _create(client).get_json()['id']
        resp = client.get(f'/api/mappings/{mapping_id}/export')
        assert resp.status_code == 200
        assert resp.mimetype == 'text/csv'
        assert 'attachment; filename="Acme_engineers_' in resp.headers['Content-Disposition']

    def test_xlsx_download(self, client):
        mapping_id = _create(client).get_json()['id']
        resp = client.get(f'/api/mappings/{mapping_id}/export?format=XLSX')
        assert resp.status_code == 200
        assert resp.data[:2] == b'PK'

    def test_unknown_format_is_400(self, client):
        mapping_id = _create(client).get_json()['id']
        assert client.get(f'/api/mappings/{mapping_id}/export?format=pdf').status_code == 400

    def test_bad_paging_arg_is_400(self, client):
        mapping_id = _create(client).get_json()['id']
        assert client.get(f'/api/mappings/{mapping_id}/profiles?limit=ten').status_code == 400
