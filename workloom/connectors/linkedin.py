"""
LinkedIn connector — people search and profile scraping through Apify actors.

The account's own session (li_at cookie, optional proxy) is handed to the actor
so each scrape runs as that account. The connection check hits the voyager
/me endpoint with the same cookie.
"""
import logging
import re
from typing import Dict, List, Optional

from apify_client import ApifyClient

from workloom.config import (
    LINKEDIN,
    APIFY_API_TOKEN,
    LINKEDIN_SEARCH_ACTOR,
    LINKEDIN_PROFILE_ACTOR,
    LINKEDIN_API_URL,
    SEARCH_PAGE_SIZE,
)
from workloom.connectors.base import ConnectionTestResult, FetchQuery, FetchResult, HttpClient
from workloom.errors import ConnectionTimeout, CredentialError, ProviderError, ValidationError, WorkloomError

logger = logging.getLogger('connectors.linkedin')

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/124.0 Safari/537.36'
)
ACTOR_TIMEOUT_SECS = 300


def parse_cookies(raw: Optional[str]) -> Dict[str, str]:
    """'li_at=AQE...; JSESSIONID="ajax:123"' → {'li_at': 'AQE...', 'JSESSIONID': 'ajax:123'}"""
    cookies = {}
    for part in (raw or '').split(';'):
        if '=' not in part:
            continue
        name, value = part.split('=', 1)
        cookies[name.strip()] = value.strip().strip('"')
    return cookies


def public_identifier(url: str) -> Optional[str]:
    match = re.search(r'linkedin\.com/in/([^/?#]+)', url or '')
    return match.group(1).lower() if match else None


def normalize_profile(item: Dict) -> Optional[Dict]:
    """Map an actor dataset item onto the discovered-record shape; None if it has no identity."""
    url = item.get('profileUrl') or item.get('url') or item.get('linkedinUrl') or ''
    external_id = item.get('publicIdentifier') or public_identifier(url) or item.get('urn')
    if not external_id:
        return None

    name = item.get('fullName') or ' '.join(
        p for p in (item.get('firstName'), item.get('lastName')) if p
    )
    current = (item.get('positions') or item.get('experience') or [{}])[0] or {}

    return {
        'external_id': str(external_id).lower(),
        'name': (name or '').strip(),
        'job_title': item.get('jobTitle') or current.get('title') or item.get('headline'),
        'company': item.get('companyName') or current.get('companyName') or current.get('company'),
        'location': item.get('location') or item.get('geoLocationName'),
        'profile_url': url or f"https://www.linkedin.com/in/{external_id}",
        'image_url': item.get('pictureUrl') or item.get('profilePicture'),
        'email': item.get('email'),
    }


class LinkedInConnector:
    provider = LINKEDIN

    def __init__(self, credentials, config=None, apify=None, http=None):
        self.credentials = credentials
        self.config = config
        self.cookies = parse_cookies(credentials.cookies)
        if credentials.session_token and 'li_at' not in self.cookies:
            self.cookies['li_at'] = credentials.session_token
        self._apify = apify
        self.http = http or HttpClient(LINKEDIN)

    @property
    def apify(self):
        if self._apify is None:
            if not APIFY_API_TOKEN:
                raise ProviderError(LINKEDIN, 'APIFY_API_TOKEN is not configured')
            self._apify = ApifyClient(APIFY_API_TOKEN)
        return self._apify

    # ── Capability ────────────────────────────────────────────────────

    def test_connection(self) -> ConnectionTestResult:
        if 'li_at' not in self.cookies:
            return ConnectionTestResult(False, 'No LinkedIn session cookie (li_at) stored for this account')

        try:
            me = self.http.request_json(
                'GET', f"{LINKEDIN_API_URL}/me",
                headers=self._voyager_headers(), proxies=self._http_proxies(),
            )
        except CredentialError:
            return ConnectionTestResult(False, 'LinkedIn session expired or was rejected')

        mini = me.get('miniProfile') or {}
        return ConnectionTestResult(True, 'LinkedIn session is valid', {
            'public_identifier': mini.get('publicIdentifier'),
            'name': ' '.join(p for p in (mini.get('firstName'), mini.get('lastName')) if p),
        })

    def fetch(self, query: FetchQuery) -> FetchResult:
        if query.kind == 'search':
            return self._search(query.params, query.cursor)
        if query.kind == 'profile':
            return self._profile(query.params)
        raise ValidationError(f"LinkedIn cannot fetch '{query.kind}'")

    def push(self, properties, *, object_type, record_id=None):
        raise ValidationError('LinkedIn accounts are read-only; records cannot be pushed')

    # ── Internals ─────────────────────────────────────────────────────

    def _search(self, params, cursor) -> FetchResult:
        page = int(cursor or 1)
        page_size = int(params.get('page_size') or SEARCH_PAGE_SIZE)
        filters = params.get('filters') or {}

        run_input = {
            'startPage': page,
            'maxItems': page_size,
            'cookie': self._actor_cookies(),
            'userAgent': self.credentials.user_agent or DEFAULT_USER_AGENT,
        }
        if params.get('search_query'):
            run_input['keywords'] = params['search_query']
        if params.get('company_url'):
            run_input['currentCompanyUrls'] = [params['company_url']]
        if filters.get('location'):
            run_input['location'] = filters['location']
        if filters.get('industry'):
            run_input['industry'] = filters['industry']
        if filters.get('experience'):
            run_input['yearsOfExperience'] = filters['experience']
        proxy = self._actor_proxy()
        if proxy:
            run_input['proxy'] = proxy

        items = self._run_actor(LINKEDIN_SEARCH_ACTOR, run_input)
        records = [r for r in (normalize_profile(i) for i in items) if r]
        logger.info("Search page %d returned %d profile(s)", page, len(records))

        next_cursor = str(page + 1) if len(items) >= page_size else None
        return FetchResult(records=records, next_cursor=next_cursor)

    def _profile(self, params) -> FetchResult:
        url = params.get('profile_url')
        if not url:
            raise ValidationError('profile_url is required')
        run_input = {
            'profileUrls': [url],
            'cookie': self._actor_cookies(),
            'userAgent': self.credentials.user_agent or DEFAULT_USER_AGENT,
        }
        proxy = self._actor_proxy()
        if proxy:
            run_input['proxy'] = proxy

        items = self._run_actor(LINKEDIN_PROFILE_ACTOR, run_input)
        records = [r for r in (normalize_profile(i) for i in items) if r]
        return FetchResult(records=records[:1], total=len(records[:1]))

    def _run_actor(self, actor_id, run_input) -> List[Dict]:
        if 'li_at' not in self.cookies:
            raise CredentialError('No LinkedIn session cookie (li_at) stored for this account')
        apify = self.apify
        try:
            run = apify.actor(actor_id).call(run_input=run_input, timeout_secs=ACTOR_TIMEOUT_SECS)
            if not run:
                raise ProviderError(LINKEDIN, f"actor {actor_id} did not return a run")
            status = run.get('status')
            if status in ('TIMED-OUT', 'TIMED_OUT'):
                raise ConnectionTimeout(LINKEDIN, 1)
            if status not in (None, 'SUCCEEDED'):
                raise ProviderError(LINKEDIN, f"actor {actor_id} finished with status {status}")
            return list(apify.dataset(run['defaultDatasetId']).iterate_items())
        except WorkloomError:
            raise
        except TimeoutError as e:
            logger.warning("Actor %s timed out: %s", actor_id, e)
            raise ConnectionTimeout(LINKEDIN, 1) from e
        except Exception as e:
            # ApifyApiError / ApifyClientError and transport errors from the client
            logger.warning("Actor %s failed: %s", actor_id, e)
            raise ProviderError(LINKEDIN, f"actor {actor_id} failed: {e}") from e

    def _actor_cookies(self):
        return [{'name': k, 'value': v, 'domain': '.linkedin.com'} for k, v in self.cookies.items()]

    def _actor_proxy(self):
        proxy = self.credentials.proxy
        if not proxy:
            return None
        auth = ''
        if proxy.get('username'):
            auth = f"{proxy['username']}:{proxy.get('password', '')}@"
        return {'useApifyProxy': False, 'proxyUrls': [f"http://{auth}{proxy['host']}:{proxy['port']}"]}

    def _http_proxies(self):
        actor_proxy = self._actor_proxy()
        if not actor_proxy:
            return None
        url = actor_proxy['proxyUrls'][0]
        return {'http': url, 'https': url}

    def _voyager_headers(self):
        jsession = self.cookies.get('JSESSIONID', '')
        return {
            'User-Agent': self.credentials.user_agent or DEFAULT_USER_AGENT,
            'Cookie': '; '.join(f'{k}="{v}"' if k == 'JSESSIONID' else f'{k}={v}'
                                for k, v in self.cookies.items()),
            'csrf-token': self.credentials.csrf_token or jsession,
            'Accept': 'application/vnd.linkedin.normalized+json+2.1',
            'x-restli-protocol-version': '2.0.0',
        }
