"""
ScrapingJob model — one bounded unit of discovery work against a LinkedIn account.
"""
import uuid

from sqlalchemy import Column, Integer, Text, Boolean, DateTime, JSON, ForeignKey

from workloom.database import Base, utcnow


class ScrapingJob(Base):
    __tablename__ = 'scraping_jobs'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(Text, ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    type = Column(Text, nullable=False)              # PROFILE_SEARCH / COMPANY_EMPLOYEES / SINGLE_PROFILE
    status = Column(Text, nullable=False, default='PENDING')
    config = Column(JSON, nullable=False, default=dict)
    # Monotonic counters: profiles_scraped + profiles_failed <= profiles_found
    profiles_found = Column(Integer, nullable=False, default=0)
    profiles_scraped = Column(Integer, nullable=False, default=0)
    profiles_failed = Column(Integer, nullable=False, default=0)
    results = Column(JSON, nullable=False, default=list)   # scraped profile records
    retryable = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    mapping_run_id = Column(Text, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    def to_dict(self, include_results=False):
        data = {
            'id': self.id,
            'account_id': self.account_id,
            'type': self.type,
            'status': self.status,
            'config': self.config or {},
            'results': {
                'profiles_found': self.profiles_found,
                'profiles_scraped': self.profiles_scraped,
                'profiles_failed': self.profiles_failed,
            },
            'retryable': self.retryable,
            'error_message': self.error_message,
            'mapping_run_id': self.mapping_run_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }
        if include_results:
            data['profiles'] = self.results or []
        return data
