"""SQLAlchemy models — importing this package registers every table on Base.metadata."""
from workloom.models.account import Account
from workloom.models.field_mapping import FieldMapping
from workloom.models.mapping import Mapping
from workloom.models.mapping_run import MappingRun
from workloom.models.profile import Profile
from workloom.models.profile_change import ProfileChange
from workloom.models.scraping_job import ScrapingJob
from workloom.models.sync_operation import SyncOperation

__all__ = [
    'Account',
    'FieldMapping',
    'Mapping',
    'MappingRun',
    'Profile',
    'ProfileChange',
    'ScrapingJob',
    'SyncOperation',
]
