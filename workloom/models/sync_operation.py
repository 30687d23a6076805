"""
SyncOperation model — append-only record of one import/export against a CRM account.
"""
import uuid

from sqlalchemy import Column, Integer, Text, Boolean, DateTime, JSON, ForeignKey

from workloom.database import Base, utcnow
from workloom.errors import PartialSyncFailure


class SyncOperation(Base):
    __tablename__ = 'sync_operations'

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = Column(Text, ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    kind = Column(Text, nullable=False)            # IMPORT / EXPORT / WORKFLOW
    success = Column(Boolean, nullable=False, default=False)
    message = Column(Text, default='')
    processed = Column(Integer, nullable=False, default=0)
    successful = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)   # [{record_id, error}]
    created_at = Column(DateTime, default=utcnow)

    def raise_for_failures(self):
        """Raise PartialSyncFailure if any record in the batch failed."""
        if self.failed:
            raise PartialSyncFailure(self.id, list(self.errors or []))

    def to_dict(self):
        return {
            'id': self.id,
            'account_id': self.account_id,
            'kind': self.kind,
            'success': self.success,
            'message': self.message,
            'stats': {
                'processed': self.processed,
                'successful': self.successful,
                'failed': self.failed,
                'skipped': self.skipped,
            },
            'errors': self.errors or [],
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
