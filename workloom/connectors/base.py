"""
Connector capability shared by every provider.

A connector is anything that satisfies ProviderConnector; the provider tag
picks the factory from CONNECTORS (see workloom.connectors). Connectors never
touch the database. They talk to the provider and translate transport
failures into the error taxonomy:

  - requests.Timeout / ConnectionError → retried with exponential backoff,
    then ConnectionTimeout
  - HTTP 401 / 403                    → CredentialError
  - any other HTTP error              → ProviderError
  - any other requests failure        → ProviderError (not retried)
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import requests

from workloom.config import (
    CONNECTOR_TIMEOUT_SECONDS,
    CONNECTOR_MAX_ATTEMPTS,
    CONNECTOR_BACKOFF_SECONDS,
)
from workloom.errors import ConnectionTimeout, CredentialError, ProviderError

logger = logging.getLogger('connectors.base')


@dataclass
class ConnectionTestResult:
    success: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FetchQuery:
    kind: str                                   # search / profile (LinkedIn), records / lookup (CRMs)
    params: Dict[str, Any] = field(default_factory=dict)
    cursor: Optional[str] = None


@dataclass
class FetchResult:
    records: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None
    total: Optional[int] = None


class ProviderConnector(Protocol):
    """What the services need from a provider."""

    provider: str

    def test_connection(self) -> ConnectionTestResult: ...

    def fetch(self, query: FetchQuery) -> FetchResult: ...

    def push(self, properties: Dict[str, Any], *, object_type: str, record_id: Optional[str] = None) -> str: ...


class HttpClient:
    """
    Thin requests wrapper with a fixed timeout and timeout-only retries.

    Composed into each connector; `sleep` is injectable so tests don't wait.
    """

    def __init__(self, provider, session=None, sleep=time.sleep,
                 timeout=CONNECTOR_TIMEOUT_SECONDS,
                 max_attempts=CONNECTOR_MAX_ATTEMPTS,
                 backoff=CONNECTOR_BACKOFF_SECONDS):
        self.provider = provider
        self.session = session or requests.Session()
        self.sleep = sleep
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff = backoff

    def request(self, method, url, **kwargs) -> requests.Response:
        kwargs.setdefault('timeout', self.timeout)
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self.session.request(method, url, **kwargs)
            except (requests.Timeout, requests.ConnectionError) as e:
                if attempt >= self.max_attempts:
                    logger.error("%s %s gave up after %d attempt(s): %s", method, url, attempt, e)
                    raise ConnectionTimeout(self.provider, attempt) from e
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning(
                    "%s %s timed out (attempt %d/%d), retrying in %.1fs",
                    method, url, attempt, self.max_attempts, delay,
                )
                self.sleep(delay)
                continue
            except requests.RequestException as e:
                logger.error("%s %s failed: %s", method, url, e)
                raise ProviderError(self.provider, f"request failed: {e.__class__.__name__}: {e}") from e

            self._raise_for_status(response)
            return response

    def request_json(self, method, url, **kwargs):
        response = self.request(method, url, **kwargs)
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(self.provider, 'response was not valid JSON', response.status_code) from e

    def _raise_for_status(self, response):
        status = response.status_code
        if status in (401, 403):
            raise CredentialError(f"{self.provider} rejected the stored credentials (HTTP {status})")
        if status >= 400:
            raise ProviderError(self.provider, _error_text(response), status)


def _error_text(response):
    """Best-effort error message out of a provider error body."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"
    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict):
        message = body.get('message') or body.get('error_description') or body.get('error')
        if message:
            return f"HTTP {response.status_code}: {message}"
    return f"HTTP {response.status_code}"
