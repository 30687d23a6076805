"""
Connector registry — provider tag → connector factory.

Each factory takes the parsed credential record (workloom.providers) and the
parsed config record.
"""
from typing import Callable, Dict

from workloom.config import LINKEDIN, SALESFORCE, HUBSPOT
from workloom.connectors.base import (
    ConnectionTestResult,
    FetchQuery,
    FetchResult,
    HttpClient,
    ProviderConnector,
)
from workloom.connectors.hubspot import HubSpotConnector
from workloom.connectors.linkedin import LinkedInConnector
from workloom.connectors.salesforce import SalesforceConnector
from workloom.errors import ValidationError

CONNECTORS: Dict[str, Callable] = {
    LINKEDIN: LinkedInConnector,
    SALESFORCE: SalesforceConnector,
    HUBSPOT: HubSpotConnector,
}


def get_connector(provider, credentials, config=None) -> ProviderConnector:
    factory = CONNECTORS.get(provider)
    if factory is None:
        raise ValidationError(f"No connector for provider '{provider}'")
    return factory(credentials, config)


__all__ = [
    'CONNECTORS',
    'ConnectionTestResult',
    'FetchQuery',
    'FetchResult',
    'HttpClient',
    'ProviderConnector',
    'get_connector',
]
