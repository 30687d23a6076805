"""Shared test fixtures."""
import copy
from datetime import datetime, timezone

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from workloom.config import HUBSPOT, LINKEDIN, SALESFORCE
from workloom.connectors import ConnectionTestResult, FetchResult
from workloom.database import Base
from workloom.errors import ProviderError
from workloom.services import build_services
from workloom.services.rate_limiter import RateLimiter
from workloom.services.vault import CredentialVault

USER_ID = 'user-1'
OTHER_USER_ID = 'user-2'

# 2026-03-10 18:00 UTC = 11:00 in America/Los_Angeles (PDT)
START_TIME = datetime(2026, 3, 10, 18, 0, tzinfo=timezone.utc).timestamp()

CREDENTIALS = {
    LINKEDIN: {'username': 'sales@example.com', 'password': 'pw', 'cookies': 'li_at=AQEDAT; JSESSIONID="ajax:42"'},
    SALESFORCE: {
        'username': 'ops@example.com', 'security_token': 'tok',
        'access_token': 'sf-access', 'instance_url': 'https://example.my.salesforce.com',
    },
    HUBSPOT: {'api_key': 'pat-na1-123', 'portal_id': '998877'},
}


# ── Redis ────────────────────────────────────────────────────────────────────

class FakeRedis:
    """Minimal in-memory Redis fake (string values, like decode_responses=True)."""

    def __init__(self):
        self.get_store = {}
        self.hash_store = {}
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.get_store.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.get_store:
            return None
        self.get_store[key] = str(value)
        if ex is not None:
            self.ttls[key] = ex
        return True

    def incr(self, key, amount=1):
        val = int(self.get_store.get(key, 0)) + amount
        self.get_store[key] = str(val)
        return val

    def decr(self, key, amount=1):
        return self.incr(key, -amount)

    def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    def exists(self, *keys):
        return sum(1 for k in keys if k in self.get_store or k in self.hash_store)

    def delete(self, *keys):
        for k in keys:
            self.get_store.pop(k, None)
            self.hash_store.pop(k, None)
            self.ttls.pop(k, None)

    def hset(self, key, field, value):
        self.hash_store.setdefault(key, {})[field] = str(value)

    def hincrby(self, key, field, amount):
        h = self.hash_store.setdefault(key, {})
        h[field] = str(int(h.get(field, 0)) + amount)

    def hgetall(self, key):
        return dict(self.hash_store.get(key, {}))

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    """Fake Redis pipeline that replays queued calls on execute()."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self._ops.append((name, args, kwargs))
            return self
        return queue

    def execute(self):
        results = [getattr(self._redis, name)(*args, **kwargs) for name, args, kwargs in self._ops]
        self._ops = []
        return results


class FakeClock:
    """Controllable epoch clock; sleep() advances it instead of blocking."""

    def __init__(self, start=START_TIME):
        self.now = start
        self.slept = []

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.slept.append(seconds)
        self.now += seconds

    def advance(self, seconds):
        self.now += seconds


# ── Connectors ───────────────────────────────────────────────────────────────

def person(ext, name='', job_title=None, company=None, location=None, **extra):
    """A discovered LinkedIn record as the connector returns it."""
    record = {
        'external_id': ext,
        'name': name or ext.replace('-', ' ').title(),
        'job_title': job_title,
        'company': company,
        'location': location,
        'profile_url': f'https://www.linkedin.com/in/{ext}',
        'image_url': None,
        'email': None,
    }
    record.update(extra)
    return record


class FakeLinkedIn:
    """Scripted people search. Cursor is the offset into `people`."""
    provider = LINKEDIN

    def __init__(self):
        self.people = []
        self.failing_profiles = set()
        self.failing_searches = 0
        self.test_result = ConnectionTestResult(True, 'LinkedIn session is valid', {'public_identifier': 'me'})
        self.queries = []

    def test_connection(self):
        return self.test_result

    def fetch(self, query):
        self.queries.append(query)
        if query.kind == 'search':
            if self.failing_searches:
                self.failing_searches -= 1
                raise ProviderError(LINKEDIN, 'search actor failed')
            offset = int(query.cursor or 0)
            size = int(query.params.get('page_size') or 25)
            page = [dict(p) for p in self.people[offset:offset + size]]
            more = offset + size < len(self.people)
            return FetchResult(records=page, next_cursor=str(offset + size) if more else None)
        url = query.params['profile_url']
        for p in self.people:
            if p['profile_url'] == url:
                if p['external_id'] in self.failing_profiles:
                    raise ProviderError(LINKEDIN, f"profile {p['external_id']} unavailable")
                return FetchResult(records=[dict(p)], total=1)
        return FetchResult(records=[], total=0)

    def push(self, properties, *, object_type, record_id=None):
        raise AssertionError('LinkedIn is read-only')


class FakeCRM:
    """In-memory CRM store keyed by remote id."""

    def __init__(self, provider, id_field):
        self.provider = provider
        self.id_field = id_field
        self.records = {}
        self.inserts = []
        self.updates = []
        self.enrollments = []
        self.rejected_values = set()
        self.test_result = ConnectionTestResult(True, f'Connected to {provider}', {'api_version': 'v1'})

    def seed(self, properties):
        record_id = f'{self.provider.lower()}-{len(self.records) + 1}'
        self.records[record_id] = dict(properties)
        return record_id

    def test_connection(self):
        return self.test_result

    def fetch(self, query):
        if query.kind == 'lookup':
            field, value = query.params['field'], str(query.params['value'])
            for record_id, props in self.records.items():
                if (field == self.id_field and record_id == value) or str(props.get(field)) == value:
                    return FetchResult(records=[{'id': record_id, 'properties': dict(props)}], total=1)
            return FetchResult(records=[], total=0)
        rows = [{'id': rid, 'properties': dict(props)} for rid, props in self.records.items()]
        limit = query.params.get('limit') or len(rows)
        return FetchResult(records=rows[:limit], total=len(rows))

    def push(self, properties, *, object_type, record_id=None):
        if any(v in self.rejected_values for v in properties.values()):
            raise ProviderError(self.provider, 'record rejected by validation rule')
        if record_id:
            self.records[record_id].update(properties)
            self.updates.append((record_id, dict(properties)))
            return record_id
        record_id = self.seed(properties)
        self.inserts.append((record_id, dict(properties)))
        return record_id

    def list_objects(self):
        return [{'name': 'Lead', 'label': 'Lead', 'createable': True}]

    def list_fields(self, object_type):
        return [{'name': 'Email', 'label': 'Email', 'type': 'email', 'required': False}]

    def list_properties(self, object_type='contacts'):
        return [{'name': 'email', 'label': 'Email', 'type': 'string', 'read_only': False}]

    def list_workflows(self):
        return [{'id': '77', 'name': 'Nurture', 'enabled': True}]

    def enroll_in_workflow(self, workflow_id, email):
        self.enrollments.append((workflow_id, email))


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine('sqlite:///:memory:')
    import workloom.models  # noqa: F401
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def credentials():
    """Valid credential bundle per provider (fresh copy per test)."""
    return copy.deepcopy(CREDENTIALS)


@pytest.fixture
def person_record():
    return person


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(fake_redis, clock):
    return RateLimiter(fake_redis, clock=clock.time, sleep=clock.sleep)


@pytest.fixture
def vault():
    return CredentialVault(Fernet.generate_key().decode())


@pytest.fixture
def connectors():
    return {
        LINKEDIN: FakeLinkedIn(),
        SALESFORCE: FakeCRM(SALESFORCE, 'Id'),
        HUBSPOT: FakeCRM(HUBSPOT, 'hs_object_id'),
    }


@pytest.fixture
def connector_factory(connectors):
    def _factory(provider, credentials, config=None):
        return connectors[provider]
    return _factory


@pytest.fixture
def enqueued():
    """Job ids handed to the queue (nothing runs until a test calls execute())."""
    return []


@pytest.fixture
def services(db_session, fake_redis, vault, enqueued, connector_factory, limiter):
    return build_services(
        db_session,
        redis_client=fake_redis,
        vault=vault,
        enqueue=enqueued.append,
        connector_factory=connector_factory,
        limiter=limiter,
    )


@pytest.fixture
def make_account(services):
    """Factory fixture — creates an account and brings it to ACTIVE (unless told otherwise)."""
    def _make(provider=LINKEDIN, name=None, config=None, status='ACTIVE', user_id=USER_ID, credentials=None):
        account = services.registry.create(
            user_id, provider, name or f'{provider.title()} account',
            dict(credentials or CREDENTIALS[provider]), config,
        )
        if status == 'ACTIVE':
            services.registry.mark_active(account)
        elif status == 'ERROR':
            services.registry.mark_error(account, 'seeded error')
        return account
    return _make


@pytest.fixture
def make_mapping(services):
    def _make(user_id=USER_ID, **fields):
        data = {'name': 'Acme engineers', 'company': 'Acme'}
        data.update(fields)
        return services.mappings.create(user_id, data)
    return _make


@pytest.fixture
def app(db_session, fake_redis, vault, enqueued, connector_factory, limiter):
    """Flask test app sharing the test session and fakes.

    close() is disabled so the per-request teardown doesn't invalidate the
    shared test session.
    """
    from workloom import create_app

    _real_close = db_session.close
    db_session.close = lambda: None
    app = create_app({
        'TESTING': True,
        'SESSION_FACTORY': lambda: db_session,
        'REDIS_CLIENT': fake_redis,
        'VAULT': vault,
        'ENQUEUE': enqueued.append,
        'CONNECTOR_FACTORY': connector_factory,
        'LIMITER': limiter,
    })
    yield app
    db_session.close = _real_close


@pytest.fixture
def client(app):
    """Flask test client that sends X-User-Id on every request."""
    with app.test_client() as c:
        c.environ_base['HTTP_X_USER_ID'] = USER_ID
        yield c
