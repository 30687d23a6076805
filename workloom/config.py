"""
Centralized configuration — env vars, provider constants, status enums.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Credential encryption ────────────────────────────────────────────────────
# Fernet key (urlsafe base64, 32 bytes). Generate with Fernet.generate_key().
CREDENTIAL_ENCRYPTION_KEY = os.getenv('CREDENTIAL_ENCRYPTION_KEY')

# ── LinkedIn (scraped through Apify actors) ──────────────────────────────────
APIFY_API_TOKEN = os.getenv('APIFY_API_TOKEN')
LINKEDIN_SEARCH_ACTOR = os.getenv('LINKEDIN_SEARCH_ACTOR', 'curious_coder/linkedin-people-search-scraper')
LINKEDIN_PROFILE_ACTOR = os.getenv('LINKEDIN_PROFILE_ACTOR', 'curious_coder/linkedin-profile-scraper')
LINKEDIN_API_URL = 'https://www.linkedin.com/voyager/api'

# ── HubSpot ───────────────────────────────────────────────────────────────────
HUBSPOT_API_URL = os.getenv('HUBSPOT_API_URL', 'https://api.hubapi.com')

# ── Salesforce ────────────────────────────────────────────────────────────────
SALESFORCE_LOGIN_URL = os.getenv('SALESFORCE_LOGIN_URL', 'https://login.salesforce.com')
SALESFORCE_API_VERSION = os.getenv('SALESFORCE_API_VERSION', 'v59.0')

# ── Connector call policy ────────────────────────────────────────────────────
CONNECTOR_TIMEOUT_SECONDS = float(os.getenv('CONNECTOR_TIMEOUT_SECONDS', '30'))
CONNECTOR_MAX_ATTEMPTS = int(os.getenv('CONNECTOR_MAX_ATTEMPTS', '3'))
CONNECTOR_BACKOFF_SECONDS = float(os.getenv('CONNECTOR_BACKOFF_SECONDS', '1.0'))
ACCOUNT_FAILURE_THRESHOLD = int(os.getenv('ACCOUNT_FAILURE_THRESHOLD', '3'))

# ── Rate limiting ────────────────────────────────────────────────────────────
# Daily quotas reset at midnight in the provider's timezone.
PROVIDER_TIMEZONE = os.getenv('PROVIDER_TIMEZONE', 'America/Los_Angeles')
DEFAULT_DAILY_LIMIT = 500
DEFAULT_REQUEST_DELAY_MS = 2000

# ── Background jobs ──────────────────────────────────────────────────────────
JOB_TIMEOUT_SECONDS = int(os.getenv('JOB_TIMEOUT_SECONDS', '3600'))
SEARCH_PAGE_SIZE = int(os.getenv('SEARCH_PAGE_SIZE', '25'))
MAPPING_RUN_INTERVAL_HOURS = int(os.getenv('MAPPING_RUN_INTERVAL_HOURS', '24'))
MAPPING_MAX_RESULTS = int(os.getenv('MAPPING_MAX_RESULTS', '200'))

# ── Providers ────────────────────────────────────────────────────────────────
LINKEDIN = 'LINKEDIN'
SALESFORCE = 'SALESFORCE'
HUBSPOT = 'HUBSPOT'
PROVIDERS = [LINKEDIN, SALESFORCE, HUBSPOT]
CRM_PROVIDERS = [SALESFORCE, HUBSPOT]

# ── Status values ────────────────────────────────────────────────────────────
ACCOUNT_STATUSES = ['ACTIVE', 'INACTIVE', 'ERROR', 'TESTING']
MAPPING_STATUSES = ['CREATED', 'IN_PROGRESS', 'PAUSED', 'FAILED', 'COMPLETED']
RUN_STATUSES = ['IN_PROGRESS', 'COMPLETED', 'FAILED']
JOB_TYPES = ['PROFILE_SEARCH', 'COMPANY_EMPLOYEES', 'SINGLE_PROFILE']
JOB_STATUSES = ['PENDING', 'RUNNING', 'COMPLETED', 'FAILED', 'CANCELLED']
JOB_TERMINAL_STATUSES = ['COMPLETED', 'FAILED', 'CANCELLED']
DUPLICATE_POLICIES = ['SKIP', 'UPDATE', 'CREATE_NEW']
EXPORT_FORMATS = ['csv', 'xlsx']
