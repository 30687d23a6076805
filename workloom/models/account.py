"""
Account model — one row per connected provider account (LinkedIn / Salesforce / HubSpot).

The provider column is the tag of a closed union: credentials, config and stats
are JSON shaped by workloom.providers for that tag. Credentials are stored only
as a Fernet token.
"""
import uuid

from sqlalchemy import Column, Text, Boolean, DateTime, JSON, Index

from workloom.database import Base, utcnow


class Account(Base):
    __tablename__ = 'accounts'
    __table_args__ = (
        Index('ix_accounts_user_provider', 'user_id', 'provider'),
    )

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Text, nullable=False, index=True)
    provider = Column(Text, nullable=False)            # LINKEDIN / SALESFORCE / HUBSPOT
    account_name = Column(Text, nullable=False)
    username = Column(Text, nullable=True)             # display only, never a secret
    encrypted_credentials = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    status = Column(Text, nullable=False, default='TESTING')
    error_message = Column(Text, nullable=True)
    config = Column(JSON, nullable=False, default=dict)
    stats = Column(JSON, nullable=False, default=dict)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        # Credentials never leave the registry, not even encrypted.
        return {
            'id': self.id,
            'provider': self.provider,
            'account_name': self.account_name,
            'username': self.username,
            'status': self.status,
            'is_active': self.is_active,
            'user_id': self.user_id,
            'error_message': self.error_message,
            'config': self.config or {},
            'stats': self.stats or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None,
        }
