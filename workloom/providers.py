"""
Provider variants — a closed union tagged by Account.provider.

Each tag owns exactly one credential shape, one config shape and one stats
shape. Dicts coming from the API are turned into these records at the boundary;
unknown keys and missing required fields raise ValidationError there, so the
services never pass opaque maps around.
"""
from dataclasses import dataclass, field, fields, asdict, replace
from typing import Any, Dict, Optional, Type

from workloom.config import (
    LINKEDIN, SALESFORCE, HUBSPOT,
    DEFAULT_DAILY_LIMIT, DEFAULT_REQUEST_DELAY_MS,
    DUPLICATE_POLICIES, JOB_TYPES,
)
from workloom.errors import ValidationError


# ── Credentials ──────────────────────────────────────────────────────────────

@dataclass
class LinkedInCredentials:
    username: str
    password: str
    cookies: Optional[str] = None          # serialized session cookies (li_at=...; JSESSIONID=...)
    session_token: Optional[str] = None
    csrf_token: Optional[str] = None
    user_agent: Optional[str] = None
    proxy: Optional[Dict[str, Any]] = None  # {host, port, username?, password?}


@dataclass
class SalesforceCredentials:
    username: str
    security_token: str
    password: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    instance_url: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None


@dataclass
class HubSpotCredentials:
    api_key: str
    portal_id: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None


# ── Config ───────────────────────────────────────────────────────────────────

@dataclass
class ScrapingConfig:
    daily_limit: int = DEFAULT_DAILY_LIMIT
    request_delay: int = DEFAULT_REQUEST_DELAY_MS   # milliseconds between outbound calls
    enable_rotation: bool = False
    respect_rate_limits: bool = True


@dataclass
class SalesforceConfig:
    object_mappings: Dict[str, bool] = field(
        default_factory=lambda: {'lead': True, 'contact': True, 'account': False})
    duplicate_handling: str = 'UPDATE'
    natural_key: str = 'email'

    @property
    def target_object(self):
        for key, name in (('lead', 'Lead'), ('contact', 'Contact'), ('account', 'Account')):
            if self.object_mappings.get(key):
                return name
        return 'Lead'


@dataclass
class HubSpotConfig:
    object_mappings: Dict[str, bool] = field(
        default_factory=lambda: {'contacts': True, 'companies': False, 'deals': False})
    duplicate_handling: str = 'UPDATE'
    natural_key: str = 'email'
    enable_workflows: bool = False

    @property
    def target_object(self):
        for key in ('contacts', 'companies', 'deals'):
            if self.object_mappings.get(key):
                return key
        return 'contacts'


# ── Stats ────────────────────────────────────────────────────────────────────

def _linkedin_stats():
    return {'profiles_scraped': 0, 'daily_usage': 0, 'last_reset_date': None, 'success_rate': 0.0}


def _salesforce_stats():
    return {'records_imported': 0, 'records_exported': 0, 'last_sync_at': None, 'sync_errors': 0}


def _hubspot_stats():
    return {'contacts_imported': 0, 'contacts_exported': 0, 'last_sync_at': None, 'sync_errors': 0}


# ── Registry ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProviderVariant:
    name: str
    credentials: Type
    config: Type
    stats: Any
    display_field: Optional[str]              # non-secret credential shown as Account.username
    imported_stat: Optional[str] = None
    exported_stat: Optional[str] = None
    object_keys: tuple = ()


PROVIDER_VARIANTS = {
    LINKEDIN: ProviderVariant(
        name='LinkedIn',
        credentials=LinkedInCredentials,
        config=ScrapingConfig,
        stats=_linkedin_stats,
        display_field='username',
    ),
    SALESFORCE: ProviderVariant(
        name='Salesforce',
        credentials=SalesforceCredentials,
        config=SalesforceConfig,
        stats=_salesforce_stats,
        display_field='username',
        imported_stat='records_imported',
        exported_stat='records_exported',
        object_keys=('lead', 'contact', 'account'),
    ),
    HUBSPOT: ProviderVariant(
        name='HubSpot',
        credentials=HubSpotCredentials,
        config=HubSpotConfig,
        stats=_hubspot_stats,
        display_field='portal_id',
        imported_stat='contacts_imported',
        exported_stat='contacts_exported',
        object_keys=('contacts', 'companies', 'deals'),
    ),
}


def get_variant(provider: str) -> ProviderVariant:
    variant = PROVIDER_VARIANTS.get(provider)
    if variant is None:
        raise ValidationError(f"Unsupported provider '{provider}'. Available: {sorted(PROVIDER_VARIANTS)}")
    return variant


# ── Boundary parsing ─────────────────────────────────────────────────────────

def _check_keys(cls, data, what):
    if not isinstance(data, dict):
        raise ValidationError(f"{what} must be an object")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValidationError(f"Unknown {what} field(s): {', '.join(unknown)}")


def parse_credentials(provider: str, data: Dict[str, Any]):
    """Build the provider's credential record; required fields must be non-empty strings."""
    cls = get_variant(provider).credentials
    _check_keys(cls, data, 'credential')

    missing = [
        f.name for f in fields(cls)
        if f.default is f.default_factory and not _non_empty(data.get(f.name))
    ]
    if missing:
        raise ValidationError(f"Missing required credential field(s) for {provider}: {', '.join(missing)}")

    for key, value in data.items():
        if key == 'proxy':
            continue
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"Credential field '{key}' must be a string")

    if data.get('proxy') is not None:
        _validate_proxy(data['proxy'])

    return cls(**data)


def _non_empty(value):
    return isinstance(value, str) and value.strip() != ''


def _validate_proxy(proxy):
    if not isinstance(proxy, dict):
        raise ValidationError("proxy must be an object")
    unknown = sorted(set(proxy) - {'host', 'port', 'username', 'password'})
    if unknown:
        raise ValidationError(f"Unknown proxy field(s): {', '.join(unknown)}")
    if not _non_empty(proxy.get('host')):
        raise ValidationError("proxy.host is required")
    port = proxy.get('port')
    if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
        raise ValidationError("proxy.port must be an integer between 1 and 65535")


def parse_config(provider: str, data: Optional[Dict[str, Any]], base=None):
    """
    Merge a (partial) config dict onto `base` (or the provider defaults).

    Raises ValidationError for unknown keys, wrong types or out-of-range values.
    """
    variant = get_variant(provider)
    cls = variant.config
    current = base if base is not None else cls()
    data = data or {}
    _check_keys(cls, data, 'config')

    updates = {}
    for key, value in data.items():
        if key in ('daily_limit', 'request_delay'):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ValidationError(f"{key} must be an integer")
            if key == 'daily_limit' and value < 1:
                raise ValidationError("daily_limit must be at least 1")
            if key == 'request_delay' and value < 0:
                raise ValidationError("request_delay must not be negative")
        elif key in ('enable_rotation', 'respect_rate_limits', 'enable_workflows'):
            if not isinstance(value, bool):
                raise ValidationError(f"{key} must be a boolean")
        elif key == 'duplicate_handling':
            if value not in DUPLICATE_POLICIES:
                raise ValidationError(f"duplicate_handling must be one of {DUPLICATE_POLICIES}")
        elif key == 'natural_key':
            if not _non_empty(value):
                raise ValidationError("natural_key must be a non-empty string")
        elif key == 'object_mappings':
            value = _merge_object_mappings(variant, current.object_mappings, value)
        updates[key] = value

    return replace(current, **updates)


def _merge_object_mappings(variant, current, value):
    if not isinstance(value, dict):
        raise ValidationError("object_mappings must be an object")
    unknown = sorted(set(value) - set(variant.object_keys))
    if unknown:
        raise ValidationError(f"Unknown object mapping(s) for {variant.name}: {', '.join(unknown)}")
    if any(not isinstance(v, bool) for v in value.values()):
        raise ValidationError("object_mappings values must be booleans")
    merged = {**current, **value}
    if not any(merged.values()):
        raise ValidationError("At least one object mapping must be enabled")
    return merged


def load_config(provider: str, stored: Optional[Dict[str, Any]]):
    """Rehydrate a config record from the JSON column (already validated)."""
    cls = get_variant(provider).config
    return cls(**(stored or {}))


def default_stats(provider: str) -> Dict[str, Any]:
    return get_variant(provider).stats()


def to_dict(record) -> Dict[str, Any]:
    """Dataclass → dict, dropping unset optional fields."""
    return {k: v for k, v in asdict(record).items() if v is not None}


def display_username(provider: str, credentials) -> Optional[str]:
    attr = get_variant(provider).display_field
    return getattr(credentials, attr, None) if attr else None


# ── Scraping job config ──────────────────────────────────────────────────────

JOB_FILTER_KEYS = ('location', 'industry', 'experience')
MAX_JOB_RESULTS = 1000


@dataclass
class JobConfig:
    search_query: Optional[str] = None
    company_url: Optional[str] = None
    profile_url: Optional[str] = None
    max_results: int = 100
    filters: Dict[str, str] = field(default_factory=dict)


def parse_job_config(job_type: str, data: Optional[Dict[str, Any]]) -> JobConfig:
    """Validate a scraping job request; each job type has its own required field."""
    if job_type not in JOB_TYPES:
        raise ValidationError(f"Unknown job type '{job_type}'. Available: {JOB_TYPES}")
    data = data or {}
    _check_keys(JobConfig, data, 'job config')

    for key in ('search_query', 'company_url', 'profile_url'):
        if data.get(key) is not None and not isinstance(data[key], str):
            raise ValidationError(f"{key} must be a string")

    max_results = data.get('max_results', 100)
    if not isinstance(max_results, int) or isinstance(max_results, bool) or not 1 <= max_results <= MAX_JOB_RESULTS:
        raise ValidationError(f"max_results must be an integer between 1 and {MAX_JOB_RESULTS}")

    filters = data.get('filters') or {}
    if not isinstance(filters, dict):
        raise ValidationError("filters must be an object")
    unknown = sorted(set(filters) - set(JOB_FILTER_KEYS))
    if unknown:
        raise ValidationError(f"Unknown filter(s): {', '.join(unknown)}")
    filters = {k: v.strip() for k, v in filters.items() if isinstance(v, str) and v.strip()}

    config = JobConfig(
        search_query=(data.get('search_query') or '').strip() or None,
        company_url=(data.get('company_url') or '').strip() or None,
        profile_url=(data.get('profile_url') or '').strip() or None,
        max_results=max_results,
        filters=filters,
    )

    if job_type == 'PROFILE_SEARCH' and not (config.search_query or config.filters):
        raise ValidationError("PROFILE_SEARCH requires search_query or filters")
    if job_type == 'COMPANY_EMPLOYEES' and not config.company_url:
        raise ValidationError("COMPANY_EMPLOYEES requires company_url")
    if job_type == 'SINGLE_PROFILE':
        if not config.profile_url:
            raise ValidationError("SINGLE_PROFILE requires profile_url")
        config.max_results = 1
    return config
